"""
In-memory credential store for the single upstream account.
Holds the current access_token and refresh_token; refresh() exchanges the refresh token at
the Spotify token endpoint. Nothing is persisted: state starts from config and dies with the process.
"""
import asyncio
import logging
import time
from typing import Callable

import httpx

from proxy_server.config import EXPIRY_MARGIN_SECONDS, REFRESH_TIMEOUT_SECONDS, TOKEN_URL

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Owns the access/refresh token pair. refresh_token becomes None once the upstream
    reports invalid_grant; after that every refresh() fails without a network call.
    Concurrent refresh() callers share one in-flight token request.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str | None,
        *,
        http_client: httpx.AsyncClient | None = None,
        token_url: str = TOKEN_URL,
        timeout: float = REFRESH_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token or None
        self._access_token = ""
        self._expires_at: float | None = None
        self._http_client = http_client
        self._token_url = token_url
        self._timeout = timeout
        self._clock = clock
        self._inflight: asyncio.Future | None = None

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    @property
    def has_refresh_token(self) -> bool:
        return self._refresh_token is not None

    def bind_client(self, http_client: httpx.AsyncClient) -> None:
        """Attach the shared outbound client (created in the app lifespan)."""
        self._http_client = http_client

    def get(self) -> str:
        """Current access token, or "" if none is held or its known expiry has passed."""
        if self._access_token and self._expires_at is not None and self._clock() >= self._expires_at:
            logger.info("Access token reached its expiry; treating as absent")
            self.clear()
        return self._access_token

    def set(self, access_token: str, refresh_token: str | None = None, expires_in: int | None = None) -> None:
        """Store a new access token. refresh_token is rotated only when given."""
        expires_at = None
        if expires_in:
            lifetime = int(expires_in)
            # Margin only applies when the lifetime is longer than the margin itself
            if lifetime > EXPIRY_MARGIN_SECONDS:
                lifetime -= EXPIRY_MARGIN_SECONDS
            expires_at = self._clock() + lifetime
        self._access_token = access_token
        self._expires_at = expires_at
        if refresh_token:
            self._refresh_token = refresh_token

    def clear(self) -> None:
        """Drop the access token; the refresh token is kept."""
        self._access_token = ""
        self._expires_at = None

    async def refresh(self) -> bool:
        """
        Exchange the refresh token for a new access token. Returns True on success.
        A caller arriving while a refresh is pending awaits that one instead of starting another.
        """
        if self._refresh_token is None:
            logger.error("Cannot refresh: no refresh token available")
            return False
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._exchange())
            self._inflight.add_done_callback(self._clear_inflight)
        else:
            logger.debug("Refresh already in flight; waiting for it")
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, _future: asyncio.Future) -> None:
        self._inflight = None

    async def _exchange(self) -> bool:
        if self._http_client is None:
            raise RuntimeError("CredentialStore has no HTTP client bound")
        logger.info("Attempting to refresh Spotify access token")
        try:
            r = await self._http_client.post(
                self._token_url,
                data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.RequestError as e:
            self.clear()
            logger.warning("Token refresh failed (no response): %s: %s", type(e).__name__, e)
            return False

        if not r.is_success:
            self.clear()
            data = _json_or_empty(r)
            logger.warning("Token refresh failed: status=%s body=%s", r.status_code, data or r.text[:200])
            if r.status_code == 400 and data.get("error") == "invalid_grant":
                logger.error(
                    "Refresh token rejected (invalid_grant); it may be expired or revoked. "
                    "Run token_bootstrap to obtain a new one."
                )
                self._refresh_token = None
            return False

        data = _json_or_empty(r)
        access_token = data.get("access_token")
        if not access_token:
            self.clear()
            logger.warning("Token refresh response had no access_token")
            return False

        new_refresh = data.get("refresh_token")
        if new_refresh and new_refresh != self._refresh_token:
            # In-memory only; restart falls back to the configured token
            logger.info("Received rotated refresh token from Spotify")
        expires_in = _parse_expires_in(data.get("expires_in"))
        self.set(access_token, refresh_token=new_refresh, expires_in=expires_in)
        logger.info("Access token refreshed (expires_in=%s)", expires_in)
        return True


def _parse_expires_in(value) -> int | None:
    """Lifetime in seconds, or None when absent or unusable (expiry then found via 401)."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed expires_in in token response: %r", value)
        return None


def _json_or_empty(r: httpx.Response) -> dict:
    try:
        data = r.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
