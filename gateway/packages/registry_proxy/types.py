"""Registry proxy types and data structures.

This module contains shared types used across the registry proxy package.
No dependencies on gateway.* modules to maintain independence.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Optional, Union

import httpx

RequestContent = Union[bytes, AsyncIterator[bytes]]


class UnauthorizedStrategy(str, Enum):
    """How a 401 from the upstream registry is handled.

    PASSIVE hands the challenge back to the client (rewritten to point at
    the gateway's own token endpoint). ACTIVE fetches an anonymous token
    on the client's behalf and retries the request once.
    """

    PASSIVE = "passive"
    ACTIVE = "active"


@dataclass
class RegistryConfig:
    """Configuration for the upstream registry and its token service.

    Attributes:
        registry_url: Base URL of the registry (e.g., "https://registry-1.docker.io")
        auth_url: Token endpoint (e.g., "https://auth.docker.io/token")
        auth_service: Value sent as the ``service`` query parameter
                     (e.g., "registry.docker.io")
        timeout: Timeout in seconds applied to every outbound call
    """

    registry_url: str
    auth_url: str
    auth_service: str = "registry.docker.io"
    timeout: float = 120.0

    def target_url(self, path: str) -> str:
        return f"{self.registry_url.rstrip('/')}{path}"


@dataclass(frozen=True)
class TokenCacheEntry:
    """A bearer token and the clock reading at which it stops being served."""

    token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class ForwardRequest:
    """Sanitized outbound request for a single forwarding attempt.

    Attributes:
        method: HTTP method of the inbound request
        headers: Sanitized header set (hop-by-hop headers already removed)
        params: Query parameters, forwarded as-is
        content: Request body; only set for mutating methods. A ``bytes``
                 body can be replayed, an async iterator cannot.
    """

    method: str
    headers: httpx.Headers
    params: list[tuple[str, str]] = field(default_factory=list)
    content: Optional[RequestContent] = None

    @property
    def has_authorization(self) -> bool:
        return "authorization" in self.headers

    @property
    def is_replayable(self) -> bool:
        return self.content is None or isinstance(self.content, bytes)

    def copy_headers(self) -> httpx.Headers:
        return self.headers.copy()
