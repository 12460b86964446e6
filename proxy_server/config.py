"""
Proxy server configuration. Credentials come from env (optionally a .env file), never from code.
Required values are validated once at startup by load_settings().
"""
import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

# Spotify Accounts service: token endpoint for refresh_token grant
TOKEN_URL = os.environ.get("SPOTIFY_TOKEN_URL", "https://accounts.spotify.com/api/token")

# Spotify Web API base; forwarded sub-paths are appended to this
API_BASE = os.environ.get("SPOTIFY_API_BASE", "https://api.spotify.com/v1").rstrip("/")

# Token exchange is kept shorter than forwarded calls
REFRESH_TIMEOUT_SECONDS = 10.0
UPSTREAM_TIMEOUT_SECONDS = 15.0

# Treat a token as expired this many seconds before expires_in runs out
EXPIRY_MARGIN_SECONDS = 10

REQUIRED_VARS = (
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "SPOTIFY_REFRESH_TOKEN",
    "FRONTEND_URL",
)


class ConfigError(Exception):
    """Required configuration is missing or malformed."""

    def __init__(self, missing: list[str], message: str | None = None):
        self.missing = missing
        super().__init__(message or f"Missing required environment variables: {', '.join(missing)}")


@dataclass(frozen=True)
class Settings:
    client_id: str
    client_secret: str
    refresh_token: str
    frontend_url: str
    port: int = 8000
    host: str = "0.0.0.0"
    mount_prefix: str = "/api/spotify"
    log_level: str = "INFO"


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from the environment. When environ is None the process env is used,
    after loading .env (real env vars take precedence). Raises ConfigError listing every
    missing required value.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    missing = [name for name in REQUIRED_VARS if not environ.get(name, "").strip()]
    if missing:
        raise ConfigError(missing)

    port_value = environ.get("PORT", "").strip() or "8000"
    try:
        port = int(port_value)
    except ValueError:
        raise ConfigError(["PORT"], f"PORT must be an integer, got {port_value!r}")

    # "" mounts the gateway at the root
    stripped = environ.get("PROXY_MOUNT_PREFIX", "/api/spotify").strip().strip("/")
    prefix = f"/{stripped}" if stripped else ""

    return Settings(
        client_id=environ["SPOTIFY_CLIENT_ID"].strip(),
        client_secret=environ["SPOTIFY_CLIENT_SECRET"].strip(),
        refresh_token=environ["SPOTIFY_REFRESH_TOKEN"].strip(),
        frontend_url=environ["FRONTEND_URL"].strip().rstrip("/"),
        port=port,
        host=environ.get("HOST", "0.0.0.0").strip() or "0.0.0.0",
        mount_prefix=prefix,
        log_level=environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
