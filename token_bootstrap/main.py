"""
One-shot helper that obtains a Spotify refresh token for the proxy via the Authorization Code flow.
GET /login redirects to Spotify; GET /callback exchanges the code and prints the refresh token.
The server stops after the callback; exit status 0 only when a refresh token was obtained.

Usage:
  1. Register TEMP_REDIRECT_URI (e.g. http://127.0.0.1:8888/callback) in the Spotify dashboard
  2. python -m token_bootstrap.main
  3. Copy the printed token into the proxy's SPOTIFY_REFRESH_TOKEN
"""
import html
import logging
import sys
import webbrowser

import httpx
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from token_bootstrap.auth_request import build_authorize_url, generate_state
from token_bootstrap.config import TOKEN_TIMEOUT_SECONDS, TOKEN_URL, BootstrapConfig, ConfigError, load_config
from token_bootstrap.state_store import consume_state, store_state

logger = logging.getLogger(__name__)


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body style="font-family: sans-serif; padding: 20px;">
  {body}
</body>
</html>""",
        status_code=status_code,
    )


def _finish(request: Request, success: bool) -> None:
    """Record the outcome; main() turns it into the exit status."""
    request.app.state.outcome = success


def _stop_server(app: FastAPI) -> None:
    server = app.state.server
    if server is not None:
        logger.info("Stopping temporary server")
        server.should_exit = True


def print_refresh_token(refresh_token: str) -> None:
    """The one thing the proxy needs from this tool: printed for manual copy."""
    print("\n>>> REFRESH TOKEN (copy this into the proxy's .env as SPOTIFY_REFRESH_TOKEN):")
    print("------------------------------------------------------------------")
    print(refresh_token)
    print("------------------------------------------------------------------\n", flush=True)


def create_app(config: BootstrapConfig) -> FastAPI:
    app = FastAPI(title="Spotify Token Bootstrap", version="1.0.0")
    app.state.config = config
    app.state.outcome = None
    app.state.server = None

    @app.get("/login")
    def login():
        """Generate and remember a state value; redirect to Spotify's consent page."""
        state = generate_state()
        store_state(state)
        url = build_authorize_url(
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            scope=config.scope,
            state=state,
            show_dialog=config.show_dialog,
        )
        logger.info("Redirecting to Spotify authorization")
        return RedirectResponse(url=url, status_code=302)

    @app.get("/callback", response_class=HTMLResponse)
    def callback(
        request: Request,
        background_tasks: BackgroundTasks,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
    ):
        """Validate state, exchange code for tokens, show the refresh token."""
        logger.info(
            "Received callback: code=%s state_present=%s error=%s",
            (code[:10] + "...") if code else None,
            bool(state),
            error,
        )
        if error:
            if state:
                consume_state(state)
            _finish(request, False)
            background_tasks.add_task(_stop_server, request.app)
            return _page(
                "Authorization error",
                f"<h1>Error during authorization</h1><p>{html.escape(error)}</p><p>Check the script console.</p>",
                status_code=400,
            )

        if not state:
            return _page("Error", "<h1>Error</h1><p>Missing state parameter.</p>", status_code=400)
        if not consume_state(state):
            logger.warning("Callback with unknown or expired state rejected")
            return _page(
                "Error",
                '<h1>Error</h1><p>Invalid or expired state. <a href="/login">Start again</a>.</p>',
                status_code=400,
            )
        if not code:
            return _page("Error", "<h1>Error</h1><p>Authorization code not found in callback.</p>", status_code=400)

        logger.info("Exchanging authorization code for tokens")
        background_tasks.add_task(_stop_server, request.app)
        try:
            r = httpx.post(
                TOKEN_URL,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": config.redirect_uri,
                },
                auth=(config.client_id, config.client_secret),
                headers={"Accept": "application/json"},
                timeout=TOKEN_TIMEOUT_SECONDS,
            )
        except httpx.RequestError as e:
            logger.error("No response from Spotify token endpoint: %s: %s", type(e).__name__, e)
            _finish(request, False)
            return _page(
                "Token error",
                f"<h1>Error Exchanging Token</h1><p>{html.escape(str(e))}</p>",
                status_code=502,
            )

        if r.status_code != 200:
            logger.error("Spotify token endpoint returned %s: %s", r.status_code, r.text[:500])
            _finish(request, False)
            return _page(
                "Token error",
                "<h1>Error Exchanging Token</h1><p>Failed to get tokens from Spotify. Check the script console.</p>",
                status_code=400,
            )

        try:
            data = r.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error("Spotify token endpoint returned an unreadable body: %s", r.text[:500])
            _finish(request, False)
            return _page(
                "Token error",
                "<h1>Error Exchanging Token</h1><p>Unexpected response from Spotify. Check the script console.</p>",
                status_code=502,
            )

        refresh_token = data.get("refresh_token")
        if not refresh_token:
            logger.error(
                "No refresh token in response. Set SPOTIFY_SHOW_DIALOG=true or revoke the app's access "
                "in your Spotify account settings, then retry."
            )
            _finish(request, False)
            return _page(
                "Token error",
                "<h1>Error</h1><p>Did not receive a refresh token from Spotify. Check the script console.</p>",
                status_code=500,
            )

        logger.info("Tokens received (access token expires in %s seconds)", data.get("expires_in"))
        print_refresh_token(refresh_token)
        _finish(request, True)
        return _page(
            "Spotify Token Acquired",
            f"""<h1>Success!</h1>
  <p>Refresh token has been printed to the script's console.</p>
  <p><strong>Your Refresh Token:</strong></p>
  <p style="font-family: monospace; background: #eee; padding: 15px; word-break: break-all;">{html.escape(refresh_token)}</p>
  <p style="font-size: 0.8em; color: #555;">(Do not share this token)</p>""",
        )

    return app


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        config = load_config()
    except ConfigError as e:
        logger.critical("%s", e)
        sys.exit(1)

    import uvicorn

    app = create_app(config)
    server = uvicorn.Server(uvicorn.Config(app, host="127.0.0.1", port=config.port))
    app.state.server = server

    login_url = f"http://127.0.0.1:{config.port}/login"
    logger.info("Ensure %s is an allowed Redirect URI for this Spotify app", config.redirect_uri)
    print(f"\n>>> Open this URL in your browser and authorize the application:\n{login_url}\n", flush=True)
    try:
        webbrowser.open(login_url)
    except webbrowser.Error as e:
        logger.info("Could not open a browser (%s); open the URL manually", e)

    try:
        server.run()
    except OSError as e:
        logger.critical("Could not listen on port %s: %s", config.port, e)
        sys.exit(1)
    if not server.started:
        # uvicorn logs bind failures itself and returns without serving
        sys.exit(1)
    sys.exit(0 if app.state.outcome else 1)


if __name__ == "__main__":
    main()
