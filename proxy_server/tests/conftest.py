"""
Pytest fixtures for proxy_server. The Spotify side is an httpx.MockTransport that records every
outbound request, so tests can count token and API calls without touching the network.
"""
import json

import httpx
import pytest

from proxy_server.config import API_BASE, TOKEN_URL, Settings
from proxy_server.credential_store import CredentialStore
from proxy_server.main import create_app


class FakeSpotify:
    """Scripted upstream: queue responses for the token endpoint and for the Web API."""

    def __init__(self):
        self.token_responses: list = []
        self.api_responses: list = []
        self.token_calls: list[httpx.Request] = []
        self.api_calls: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            self.token_calls.append(request)
            queue = self.token_responses
        else:
            self.api_calls.append(request)
            queue = self.api_responses
        if not queue:
            raise AssertionError(f"unexpected upstream call: {request.method} {request.url}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def token_ok(self, access_token="new-at", refresh_token=None, expires_in=3600):
        data = {"access_token": access_token, "token_type": "Bearer", "expires_in": expires_in}
        if refresh_token:
            data["refresh_token"] = refresh_token
        self.token_responses.append(httpx.Response(200, json=data))

    def token_error(self, status_code=400, error="invalid_grant"):
        self.token_responses.append(
            httpx.Response(status_code, json={"error": error, "error_description": "Invalid refresh token"})
        )

    def api(self, status_code, body=None, content=None, content_type="application/json"):
        if content is None:
            content = json.dumps(body).encode() if body is not None else b""
        headers = {"content-type": content_type} if content_type else {}
        self.api_responses.append(httpx.Response(status_code, content=content, headers=headers))


@pytest.fixture
def settings():
    return Settings(
        client_id="cid",
        client_secret="csecret",
        refresh_token="rt-initial",
        frontend_url="http://localhost:3000",
    )


@pytest.fixture
def spotify():
    return FakeSpotify()


@pytest.fixture
def http_client(spotify):
    return httpx.AsyncClient(transport=httpx.MockTransport(spotify.handler))


@pytest.fixture
def store(settings, http_client):
    return CredentialStore(
        settings.client_id,
        settings.client_secret,
        settings.refresh_token,
        http_client=http_client,
    )


@pytest.fixture
def app(settings, store, http_client):
    return create_app(settings, store=store, http_client=http_client)


@pytest.fixture
def api_url():
    return API_BASE


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def clocked_store(settings, http_client, clock):
    return CredentialStore(
        settings.client_id,
        settings.client_secret,
        settings.refresh_token,
        http_client=http_client,
        clock=clock,
    )
