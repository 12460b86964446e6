"""
Bootstrap utility configuration. Client credentials come from env or .env; validated by load_config().
"""
import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

# Spotify Accounts service
AUTHORIZE_URL = os.environ.get("SPOTIFY_AUTHORIZE_URL", "https://accounts.spotify.com/authorize")
TOKEN_URL = os.environ.get("SPOTIFY_TOKEN_URL", "https://accounts.spotify.com/api/token")

TOKEN_TIMEOUT_SECONDS = 10.0

REQUIRED_VARS = (
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "TEMP_REDIRECT_URI",
    "SPOTIFY_SCOPES",
)


class ConfigError(Exception):
    def __init__(self, missing: list[str], message: str | None = None):
        self.missing = missing
        super().__init__(message or f"Missing required environment variables: {', '.join(missing)}")


@dataclass(frozen=True)
class BootstrapConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    scope: str
    port: int = 8888
    # Force the consent screen; Spotify may skip issuing a refresh token without it
    show_dialog: bool = False


def load_config(environ: Mapping[str, str] | None = None) -> BootstrapConfig:
    if environ is None:
        load_dotenv()
        environ = os.environ

    missing = [name for name in REQUIRED_VARS if not environ.get(name, "").strip()]
    if missing:
        raise ConfigError(missing)

    port_value = environ.get("TEMP_PORT", "").strip() or "8888"
    try:
        port = int(port_value)
    except ValueError:
        raise ConfigError(["TEMP_PORT"], f"TEMP_PORT must be an integer, got {port_value!r}")

    return BootstrapConfig(
        client_id=environ["SPOTIFY_CLIENT_ID"].strip(),
        client_secret=environ["SPOTIFY_CLIENT_SECRET"].strip(),
        redirect_uri=environ["TEMP_REDIRECT_URI"].strip(),
        scope=environ["SPOTIFY_SCOPES"].strip(),
        port=port,
        show_dialog=environ.get("SPOTIFY_SHOW_DIALOG", "").strip().lower() in ("1", "true", "yes"),
    )
