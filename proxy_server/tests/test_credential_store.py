"""Tests for CredentialStore: refresh, rotation, invalid_grant, single-flight, expiry."""
import asyncio
import base64
from urllib.parse import parse_qs

import httpx

from proxy_server.credential_store import CredentialStore


def test_refresh_success_stores_access_token(store, spotify):
    spotify.token_ok(access_token="at-1")
    assert asyncio.run(store.refresh()) is True
    assert store.get() == "at-1"
    assert len(spotify.token_calls) == 1


def test_refresh_request_uses_basic_auth_and_form_body(store, spotify):
    spotify.token_ok()
    asyncio.run(store.refresh())
    req = spotify.token_calls[0]
    assert req.method == "POST"
    expected = base64.b64encode(b"cid:csecret").decode()
    assert req.headers["authorization"] == f"Basic {expected}"
    assert req.headers["content-type"] == "application/x-www-form-urlencoded"
    form = parse_qs(req.content.decode())
    assert form == {"grant_type": ["refresh_token"], "refresh_token": ["rt-initial"]}


def test_refresh_without_new_refresh_token_keeps_old_one(store, spotify):
    spotify.token_ok(refresh_token=None)
    asyncio.run(store.refresh())
    assert store.refresh_token == "rt-initial"


def test_refresh_with_new_refresh_token_rotates(store, spotify):
    spotify.token_ok(refresh_token="rt-rotated")
    asyncio.run(store.refresh())
    assert store.refresh_token == "rt-rotated"

    spotify.token_ok()
    asyncio.run(store.refresh())
    form = parse_qs(spotify.token_calls[1].content.decode())
    assert form["refresh_token"] == ["rt-rotated"]


def test_invalid_grant_clears_refresh_token_permanently(store, spotify):
    store.set("stale-at")
    spotify.token_error(400, "invalid_grant")
    assert asyncio.run(store.refresh()) is False
    assert store.refresh_token is None
    assert store.has_refresh_token is False
    assert store.get() == ""

    # No queued token response: a network call here would fail the test
    assert asyncio.run(store.refresh()) is False
    assert len(spotify.token_calls) == 1


def test_other_400_is_transient(store, spotify):
    spotify.token_error(400, "invalid_request")
    assert asyncio.run(store.refresh()) is False
    assert store.refresh_token == "rt-initial"


def test_server_error_is_transient_and_clears_access_token(store, spotify):
    store.set("old-at")
    spotify.token_responses.append(httpx.Response(503, text="unavailable"))
    assert asyncio.run(store.refresh()) is False
    assert store.get() == ""
    assert store.refresh_token == "rt-initial"

    spotify.token_ok(access_token="at-2")
    assert asyncio.run(store.refresh()) is True
    assert store.get() == "at-2"


def test_timeout_is_transient(store, spotify):
    spotify.token_responses.append(httpx.ReadTimeout("timed out"))
    assert asyncio.run(store.refresh()) is False
    assert store.refresh_token == "rt-initial"
    assert store.get() == ""


def test_success_without_access_token_is_failure(store, spotify):
    spotify.token_responses.append(httpx.Response(200, json={"token_type": "Bearer"}))
    assert asyncio.run(store.refresh()) is False
    assert store.get() == ""
    assert store.refresh_token == "rt-initial"


def test_missing_refresh_token_fails_without_network(http_client, spotify):
    s = CredentialStore("cid", "csecret", None, http_client=http_client)
    assert asyncio.run(s.refresh()) is False
    assert spotify.token_calls == []


def test_concurrent_refreshes_share_one_request(store, spotify):
    spotify.token_ok(access_token="shared-at")

    async def both():
        return await asyncio.gather(store.refresh(), store.refresh(), store.refresh())

    results = asyncio.run(both())
    assert results == [True, True, True]
    assert len(spotify.token_calls) == 1
    assert store.get() == "shared-at"


def test_set_and_clear(store):
    store.set("at", refresh_token="rt-2")
    assert store.get() == "at"
    assert store.refresh_token == "rt-2"
    store.clear()
    assert store.get() == ""
    assert store.refresh_token == "rt-2"


def test_known_expiry_makes_token_absent(clock, clocked_store):
    clocked_store.set("at", expires_in=3600)
    clock.advance(3600 - 11)
    assert clocked_store.get() == "at"
    # 10 s margin before the upstream deadline
    clock.advance(1)
    assert clocked_store.get() == ""


def test_short_lifetime_has_no_margin(clock, clocked_store):
    clocked_store.set("at", expires_in=5)
    clock.advance(4)
    assert clocked_store.get() == "at"
    clock.advance(1)
    assert clocked_store.get() == ""


def test_malformed_expires_in_is_ignored(clock, clocked_store, spotify):
    spotify.token_responses.append(httpx.Response(200, json={"access_token": "at", "expires_in": "soon"}))
    assert asyncio.run(clocked_store.refresh()) is True
    assert clocked_store.get() == "at"
    # No usable lifetime: expiry is left to the upstream's 401
    clock.advance(10**6)
    assert clocked_store.get() == "at"


def test_numeric_string_expires_in_is_accepted(clock, clocked_store, spotify):
    spotify.token_responses.append(httpx.Response(200, json={"access_token": "at", "expires_in": "3600"}))
    assert asyncio.run(clocked_store.refresh()) is True
    clock.advance(3600)
    assert clocked_store.get() == ""
