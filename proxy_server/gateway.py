"""
Forwarding gateway: every request under the mount prefix is replayed against the Spotify Web API
with the current access token. On a 401 the token is refreshed and the request retried exactly once.
"""
import logging

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from proxy_server.config import API_BASE, UPSTREAM_TIMEOUT_SECONDS
from proxy_server.credential_store import CredentialStore
from proxy_server.errors import (
    REAUTH_FAILED,
    RETRY_UNREACHABLE,
    internal_error,
    service_unavailable,
)

logger = logging.getLogger(__name__)
router = APIRouter()

FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def get_credential_store(request: Request) -> CredentialStore:
    """Dependency: the app's credential store (set in create_app)."""
    return request.app.state.credentials


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Dependency: shared outbound client (set in create_app or the lifespan)."""
    return request.app.state.http_client


def upstream_url(request: Request, mount_prefix: str, api_base: str = API_BASE) -> str:
    """
    API base + sub-path + query, both taken raw from the inbound request so that
    encoding and parameter order reach Spotify exactly as the client sent them.
    """
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    path = path.split("?", 1)[0]
    # Behind a path-stripping proxy raw_path may already lack root_path
    root_path = request.scope.get("root_path", "")
    if root_path and path.startswith(root_path):
        path = path[len(root_path):]
    if mount_prefix and path.startswith(mount_prefix):
        path = path[len(mount_prefix):]
    sub_path = path.lstrip("/")
    query = request.url.query
    return f"{api_base}/{sub_path}" + (f"?{query}" if query else "")


def _relay(r: httpx.Response) -> Response:
    """Upstream status, body and content type, unchanged."""
    return Response(
        content=r.content,
        status_code=r.status_code,
        media_type=r.headers.get("content-type"),
    )


async def _send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    access_token: str,
    content_type: str | None,
    body: bytes,
) -> httpx.Response:
    headers = {"Authorization": f"Bearer {access_token}"}
    if content_type:
        headers["Content-Type"] = content_type
    return await client.request(
        method,
        url,
        headers=headers,
        content=body or None,
        timeout=UPSTREAM_TIMEOUT_SECONDS,
    )


@router.api_route("/{sub_path:path}", methods=FORWARDED_METHODS)
async def forward(
    request: Request,
    sub_path: str,
    store: CredentialStore = Depends(get_credential_store),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Proxy one request to Spotify; relay its response or a translated error."""
    mount_prefix = request.app.state.settings.mount_prefix
    logger.info("[Proxy] %s %s/%s", request.method, mount_prefix, sub_path)

    if not store.get():
        logger.info("No access token held; refreshing before forwarding")
        if not await store.refresh():
            return service_unavailable()

    url = upstream_url(request, mount_prefix)
    content_type = request.headers.get("content-type")
    body = await request.body()

    try:
        r = await _send(client, request.method, url, store.get(), content_type, body)
    except httpx.RequestError as e:
        logger.error("Request to %s failed: %s: %s", url, type(e).__name__, e)
        return internal_error()

    if r.status_code != 401:
        if r.is_error:
            logger.warning("Spotify returned %s for %s %s", r.status_code, request.method, url)
        return _relay(r)

    logger.info("Received 401 from Spotify; refreshing token and retrying once")
    store.clear()
    if not await store.refresh() or not store.get():
        logger.error("Failed to refresh token after 401")
        return service_unavailable(REAUTH_FAILED)

    # Retry carries the same content type and body as the first attempt
    try:
        retry = await _send(client, request.method, url, store.get(), content_type, body)
    except httpx.RequestError as e:
        logger.error("Retry to %s failed: %s: %s", url, type(e).__name__, e)
        return internal_error(RETRY_UNREACHABLE)

    if retry.is_error:
        logger.warning("Spotify returned %s on retry for %s %s", retry.status_code, request.method, url)
    return _relay(retry)
