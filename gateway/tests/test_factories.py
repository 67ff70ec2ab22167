import pytest

from gateway import factories
from gateway.packages.registry_proxy import UnauthorizedStrategy
from gateway.settings import settings


@pytest.fixture
def fresh_factories():
    cached = (
        factories.registry_config_factory,
        factories.http_client_factory,
        factories.token_cache_factory,
        factories.token_broker_factory,
        factories.upstream_forwarder_factory,
    )
    for factory in cached:
        factory.cache_clear()
    yield
    for factory in cached:
        factory.cache_clear()


async def test_forwarder_follows_configured_strategy(fresh_factories, monkeypatch):
    monkeypatch.setattr(settings, "REGISTRY_UNAUTHORIZED_STRATEGY", "active")
    monkeypatch.setattr(settings, "REGISTRY_URL", "https://mirror.internal")

    forwarder = factories.upstream_forwarder_factory()

    assert forwarder.strategy == UnauthorizedStrategy.ACTIVE
    assert forwarder.config.registry_url == "https://mirror.internal"
    assert forwarder.token_broker is factories.token_broker_factory()
    assert forwarder.http_client is forwarder.token_broker.http_client

    await factories.close_http_client()


async def test_broker_uses_configured_cache_timings(fresh_factories, monkeypatch):
    monkeypatch.setattr(settings, "TOKEN_CACHE_TTL_SECONDS", 60.0)
    monkeypatch.setattr(settings, "TOKEN_RATE_LIMIT_BACKOFF_SECONDS", 2.5)

    broker = factories.token_broker_factory()

    assert broker.cache_ttl == 60.0
    assert broker.rate_limit_backoff == 2.5
    assert broker.cache is factories.token_cache_factory()

    await factories.close_http_client()


async def test_close_http_client_resets_singletons(fresh_factories):
    client = factories.http_client_factory()
    broker = factories.token_broker_factory()

    await factories.close_http_client()

    assert client.is_closed
    assert factories.http_client_factory() is not client
    assert factories.token_broker_factory() is not broker

    await factories.close_http_client()


async def test_close_http_client_without_client_is_noop(fresh_factories):
    await factories.close_http_client()

    assert factories.http_client_factory.cache_info().currsize == 0
