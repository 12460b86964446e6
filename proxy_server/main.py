"""
Spotify proxy service. Holds the refresh token, keeps an access token in memory and forwards
requests under the mount prefix (default /api/spotify) to the Spotify Web API.
Port from PORT (default 8000).
"""
import logging
import sys
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from proxy_server.config import ConfigError, Settings, load_settings
from proxy_server.credential_store import CredentialStore
from proxy_server.gateway import router as gateway_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared outbound client (unless injected) and obtain the first access token."""
    owns_client = app.state.http_client is None
    if owns_client:
        app.state.http_client = httpx.AsyncClient()
        app.state.credentials.bind_client(app.state.http_client)

    logger.info("[Startup] Attempting initial Spotify token refresh")
    if await app.state.credentials.refresh():
        logger.info("[Startup] Initial token obtained")
    else:
        logger.warning("[Startup] FAILED to obtain initial Spotify token")
        logger.warning("[Startup] Requests will retry the refresh; check SPOTIFY_REFRESH_TOKEN if this persists")
    try:
        yield
    finally:
        if owns_client:
            await app.state.http_client.aclose()
            app.state.http_client = None


def create_app(
    settings: Settings,
    store: CredentialStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """
    Build the proxy app. store and http_client may be injected (tests); otherwise the store is
    built from settings and the client is opened in the lifespan.
    """
    app = FastAPI(title="Spotify Proxy", version="1.0.0", lifespan=lifespan)
    if store is None:
        store = CredentialStore(
            settings.client_id,
            settings.client_secret,
            settings.refresh_token,
            http_client=http_client,
        )
    app.state.settings = settings
    app.state.credentials = store
    app.state.http_client = http_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("Allowing cross-origin requests from %s", settings.frontend_url)

    @app.get("/health")
    def health(request: Request):
        """Health check endpoint. No token values are exposed."""
        return {
            "status": "ok",
            "service": "proxy_server",
            "credentials_available": request.app.state.credentials.has_refresh_token,
        }

    app.include_router(gateway_router, prefix=settings.mount_prefix, tags=["proxy"])
    return app


def main() -> None:
    """Validate config, then serve. Exits 1 on missing config or when the port cannot be bound."""
    try:
        settings = load_settings()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logger.critical("FATAL: %s", e)
        sys.exit(1)

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    import uvicorn

    try:
        uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
    except OSError as e:
        logger.critical("[Server] Could not listen on port %s: %s", settings.port, e)
        sys.exit(1)


if __name__ == "__main__":
    main()
