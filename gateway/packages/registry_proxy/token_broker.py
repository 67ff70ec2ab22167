"""Bearer token acquisition for the upstream registry.

The broker talks to the registry's token service (Docker Hub style
``/token?service=...&scope=...``), caches issued tokens for a TTL shorter
than their real lifetime, and retries once after a fixed delay when the
token service rate-limits us.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from .token_cache import InMemoryTokenCache, TokenCache, cache_key
from .types import RegistryConfig, TokenCacheEntry

logger = structlog.stdlib.get_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class TokenBroker:
    """Obtains and caches registry bearer tokens."""

    def __init__(
        self,
        config: RegistryConfig,
        http_client: httpx.AsyncClient,
        cache: Optional[TokenCache] = None,
        cache_ttl: float = 240.0,
        rate_limit_backoff: float = 10.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the token broker.

        Args:
            config: Registry configuration (token endpoint, service, timeout)
            http_client: Shared async HTTP client
            cache: Token cache; a fresh in-memory cache when omitted
            cache_ttl: Seconds a fetched token is served from the cache
            rate_limit_backoff: Seconds to wait before retrying a 429
            clock: Monotonic clock used for cache expiry
            sleep: Coroutine used for the rate-limit backoff
        """
        self.config = config
        self.http_client = http_client
        self.cache = cache if cache is not None else InMemoryTokenCache()
        self.cache_ttl = cache_ttl
        self.rate_limit_backoff = rate_limit_backoff
        self._clock = clock
        self._sleep = sleep

    async def get_token(
        self, scope: str, presented_auth: Optional[str] = None
    ) -> Optional[str]:
        """Return a bearer token for ``scope``, or None if none is obtainable.

        Args:
            scope: Token scope (e.g., "repository:library/nginx:pull"); empty
                   for an unscoped token
            presented_auth: Authorization header supplied by the client, passed
                            through to the token service

        Returns:
            Token string, or None. Never raises for transport or parse errors.
        """
        key = cache_key(scope, presented_auth)

        entry = self.cache.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            logger.debug("Token cache hit", scope=scope)
            return entry.token

        try:
            token = await self._fetch_token(scope, presented_auth)
        except Exception as e:
            logger.warning(
                "Failed to fetch registry token",
                scope=scope,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if token is None:
            return None

        self.cache.put(
            key,
            TokenCacheEntry(token=token, expires_at=self._clock() + self.cache_ttl),
        )
        return token

    async def _fetch_token(
        self, scope: str, presented_auth: Optional[str]
    ) -> Optional[str]:
        params = {"service": self.config.auth_service}
        if scope:
            params["scope"] = scope

        headers = {}
        if presented_auth:
            headers["Authorization"] = presented_auth

        response = await self._request_token(params, headers)

        if response.status_code == 429:
            logger.warning(
                "Token service rate limited, retrying once",
                scope=scope,
                backoff=self.rate_limit_backoff,
            )
            await self._sleep(self.rate_limit_backoff)
            response = await self._request_token(params, headers)

        if not response.is_success:
            logger.info(
                "Token service refused token",
                scope=scope,
                status_code=response.status_code,
            )
            return None

        return extract_token(response.json())

    async def _request_token(
        self, params: dict[str, str], headers: dict[str, str]
    ) -> httpx.Response:
        return await self.http_client.get(
            self.config.auth_url,
            params=params,
            headers=headers,
            timeout=self.config.timeout,
        )


def extract_token(payload: Any) -> Optional[str]:
    """Pull the token out of a token-service JSON body.

    Registries disagree on the field name, so both ``token`` and
    ``access_token`` are accepted.
    """
    if not isinstance(payload, dict):
        return None

    token = payload.get("token") or payload.get("access_token")
    if not isinstance(token, str) or not token:
        return None
    return token
