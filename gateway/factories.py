from functools import lru_cache

import httpx

from gateway.packages.registry_proxy import (
    InMemoryTokenCache,
    RegistryConfig,
    TokenBroker,
    UnauthorizedStrategy,
    UpstreamForwarder,
)
from gateway.settings import settings


@lru_cache
def registry_config_factory() -> RegistryConfig:
    return RegistryConfig(
        registry_url=settings.REGISTRY_URL,
        auth_url=settings.REGISTRY_AUTH_URL,
        auth_service=settings.REGISTRY_AUTH_SERVICE,
        timeout=settings.REGISTRY_REQUEST_TIMEOUT_SECONDS,
    )


@lru_cache
def http_client_factory() -> httpx.AsyncClient:
    """Shared client for the registry and its token service.

    Redirects are resolved by the forwarder, never by the client.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.REGISTRY_REQUEST_TIMEOUT_SECONDS),
        follow_redirects=False,
        headers={"User-Agent": "registry-gateway"},
    )


async def close_http_client() -> None:
    if not http_client_factory.cache_info().currsize:
        return

    await http_client_factory().aclose()
    # Drop everything holding the closed client
    for factory in (http_client_factory, token_broker_factory, upstream_forwarder_factory):
        factory.cache_clear()


@lru_cache
def token_cache_factory() -> InMemoryTokenCache:
    return InMemoryTokenCache()


@lru_cache
def token_broker_factory() -> TokenBroker:
    return TokenBroker(
        config=registry_config_factory(),
        http_client=http_client_factory(),
        cache=token_cache_factory(),
        cache_ttl=settings.TOKEN_CACHE_TTL_SECONDS,
        rate_limit_backoff=settings.TOKEN_RATE_LIMIT_BACKOFF_SECONDS,
    )


@lru_cache
def upstream_forwarder_factory() -> UpstreamForwarder:
    """Factory function for the forwarder, configured with the 401 strategy.

    Returns:
        UpstreamForwarder sharing the process-wide token broker
    """
    return UpstreamForwarder(
        config=registry_config_factory(),
        http_client=http_client_factory(),
        token_broker=token_broker_factory(),
        strategy=UnauthorizedStrategy(settings.REGISTRY_UNAUTHORIZED_STRATEGY),
    )
