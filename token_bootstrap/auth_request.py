"""
Authorization request helpers: anti-forgery state and the Spotify /authorize URL.
"""
import secrets
from urllib.parse import urlencode

from token_bootstrap.config import AUTHORIZE_URL


def generate_state() -> str:
    """Opaque value for CSRF protection; returned in callback."""
    return secrets.token_urlsafe(32)


def build_authorize_url(
    *,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    show_dialog: bool = False,
    authorize_url: str = AUTHORIZE_URL,
) -> str:
    """Build the authorization-code request URL."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "scope": scope,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    if show_dialog:
        params["show_dialog"] = "true"
    return f"{authorize_url}?{urlencode(params)}"
