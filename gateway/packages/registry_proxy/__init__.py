"""Registry proxy package for Docker Registry v2 API.

This package provides the token broker and upstream forwarder used to
proxy Docker Registry API requests while brokering bearer authentication.
"""

from .proxy import (
    DEFAULT_ACCEPT,
    MUTATING_METHODS,
    UpstreamForwarder,
    relay_response_headers,
    rewrite_challenge,
    sanitize_request_headers,
    stream_request_body,
)
from .scope import derive_scope
from .token_broker import TokenBroker
from .token_cache import InMemoryTokenCache, TokenCache, cache_key
from .types import (
    ForwardRequest,
    RegistryConfig,
    TokenCacheEntry,
    UnauthorizedStrategy,
)

__all__ = [
    # Protocol
    "TokenCache",
    # Components
    "InMemoryTokenCache",
    "TokenBroker",
    "UpstreamForwarder",
    # Types
    "ForwardRequest",
    "RegistryConfig",
    "TokenCacheEntry",
    "UnauthorizedStrategy",
    # Utilities
    "DEFAULT_ACCEPT",
    "MUTATING_METHODS",
    "cache_key",
    "derive_scope",
    "relay_response_headers",
    "rewrite_challenge",
    "sanitize_request_headers",
    "stream_request_body",
]
