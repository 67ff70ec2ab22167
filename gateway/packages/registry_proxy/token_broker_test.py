import httpx
import pytest

from gateway.packages.registry_proxy.token_broker import extract_token
from gateway.packages.registry_proxy.token_cache import InMemoryTokenCache, cache_key
from gateway.packages.registry_proxy.types import TokenCacheEntry
from gateway.tests.fixtures_registry import AUTH_URL, token_response

SCOPE = "repository:library/alpine:pull"


async def test_fetches_token_with_service_and_scope(token_broker, fake_upstream):
    fake_upstream.token(token_response("abc"))

    token = await token_broker.get_token(SCOPE)

    assert token == "abc"
    (request,) = fake_upstream.requests_to(AUTH_URL)
    assert request.url.params["service"] == "registry.docker.io"
    assert request.url.params["scope"] == SCOPE
    assert "authorization" not in request.headers


async def test_unscoped_request_omits_scope_param(token_broker, fake_upstream):
    fake_upstream.token(token_response("anon"))

    assert await token_broker.get_token("") == "anon"

    (request,) = fake_upstream.requests_to(AUTH_URL)
    assert "scope" not in request.url.params


async def test_presented_credential_is_forwarded(token_broker, fake_upstream):
    fake_upstream.token(token_response("user-token"))

    await token_broker.get_token(SCOPE, "Basic dXNlcjpwYXNz")

    (request,) = fake_upstream.requests_to(AUTH_URL)
    assert request.headers["authorization"] == "Basic dXNlcjpwYXNz"


async def test_cache_hit_within_ttl(token_broker, fake_upstream, fake_clock):
    fake_upstream.token(token_response("first"), token_response("second"))

    assert await token_broker.get_token(SCOPE) == "first"
    fake_clock.advance(239.9)
    assert await token_broker.get_token(SCOPE) == "first"

    assert len(fake_upstream.requests_to(AUTH_URL)) == 1


async def test_refetch_once_expired(token_broker, fake_upstream, fake_clock):
    fake_upstream.token(token_response("first"), token_response("second"))

    assert await token_broker.get_token(SCOPE) == "first"
    fake_clock.advance(240)
    assert await token_broker.get_token(SCOPE) == "second"

    assert len(fake_upstream.requests_to(AUTH_URL)) == 2


async def test_cache_is_keyed_by_scope_and_credential(token_broker, fake_upstream):
    fake_upstream.token(
        token_response("anon"), token_response("user"), token_response("other-scope")
    )

    assert await token_broker.get_token(SCOPE) == "anon"
    assert await token_broker.get_token(SCOPE, "Basic dXNlcjpwYXNz") == "user"
    assert await token_broker.get_token("repository:library/nginx:pull") == "other-scope"
    assert await token_broker.get_token(SCOPE) == "anon"

    assert len(fake_upstream.requests_to(AUTH_URL)) == 3


async def test_rate_limit_retries_once_after_backoff(
    token_broker, fake_upstream, fake_sleep
):
    fake_upstream.token(httpx.Response(429), token_response("after-backoff"))

    assert await token_broker.get_token(SCOPE) == "after-backoff"

    assert fake_sleep.calls == [10.0]
    assert len(fake_upstream.requests_to(AUTH_URL)) == 2


async def test_rate_limit_gives_up_after_second_429(
    token_broker, fake_upstream, fake_sleep
):
    fake_upstream.token(httpx.Response(429))

    assert await token_broker.get_token(SCOPE) is None

    assert fake_sleep.calls == [10.0]
    assert len(fake_upstream.requests_to(AUTH_URL)) == 2


async def test_refused_token_is_not_cached(token_broker, fake_upstream):
    fake_upstream.token(httpx.Response(401), token_response("later"))

    assert await token_broker.get_token(SCOPE) is None
    assert await token_broker.get_token(SCOPE) == "later"


async def test_access_token_field_is_accepted(token_broker, fake_upstream):
    fake_upstream.token(token_response("oauth-style", field="access_token"))

    assert await token_broker.get_token(SCOPE) == "oauth-style"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"expires_in": 300}),
        httpx.Response(200, json={"token": ""}),
        httpx.Response(200, json=["token"]),
        httpx.Response(200, content=b"<html>not json</html>"),
        httpx.Response(500, json={"token": "ignored"}),
    ],
)
async def test_unusable_responses_yield_no_token(token_broker, fake_upstream, response):
    fake_upstream.token(response)

    assert await token_broker.get_token(SCOPE) is None
    assert token_broker.cache.get(cache_key(SCOPE, None)) is None


async def test_transport_errors_yield_no_token(token_broker, fake_upstream):
    fake_upstream.token(httpx.ConnectTimeout("timed out"))

    assert await token_broker.get_token(SCOPE) is None


@pytest.mark.parametrize(
    "error",
    [httpx.InvalidURL("bad auth url"), httpx.StreamClosed(), RuntimeError("boom")],
)
async def test_any_fetch_error_yields_no_token(token_broker, fake_upstream, error):
    fake_upstream.token(error)

    assert await token_broker.get_token(SCOPE) is None
    assert len(token_broker.cache) == 0


async def test_cache_entry_expires_at_ttl(token_broker, fake_upstream, fake_clock):
    fake_upstream.token(token_response("abc"))

    await token_broker.get_token(SCOPE)

    entry = token_broker.cache.get(cache_key(SCOPE, None))
    assert entry == TokenCacheEntry(token="abc", expires_at=fake_clock.now + 240.0)


def test_in_memory_cache_overwrites_entries():
    cache = InMemoryTokenCache()
    cache.put("k", TokenCacheEntry(token="old", expires_at=1.0))
    cache.put("k", TokenCacheEntry(token="new", expires_at=2.0))

    assert cache.get("k").token == "new"
    assert cache.get("missing") is None
    assert len(cache) == 1


def test_cache_key_defaults_to_anonymous():
    assert cache_key(SCOPE, None) == f"{SCOPE}:anonymous"
    assert cache_key("", "Bearer x") == ":Bearer x"


def test_extract_token_prefers_token_field():
    assert extract_token({"token": "a", "access_token": "b"}) == "a"
    assert extract_token({"access_token": "b"}) == "b"
    assert extract_token(None) is None
