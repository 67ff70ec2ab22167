"""HTTP forwarding utilities for the Docker Registry API.

This module provides the upstream forwarder and the header helpers it
shares with the gateway service layer.
No dependencies on gateway.* modules to maintain independence and reusability.
"""

import re
from typing import AsyncIterator, Iterable, Optional

import httpx
import structlog
from fastapi import Request

from .scope import derive_scope
from .token_broker import TokenBroker
from .types import ForwardRequest, RegistryConfig, UnauthorizedStrategy

logger = structlog.stdlib.get_logger(__name__)

# Connection-level request headers that must not cross the proxy
HOP_BY_HOP_HEADERS = frozenset(
    {
        "host",
        "connection",
        "upgrade",
        "proxy-connection",
        "keep-alive",
        "te",
        "trailer",
        "transfer-encoding",
    }
)

# Response headers owned by the connection to the upstream, not the payload
UNRELAYED_RESPONSE_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "transfer-encoding",
    }
)

# Dropped from the redirect GET, which never carries a body
BODY_HEADERS = frozenset({"content-length", "content-type", "transfer-encoding"})

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
REDIRECT_STATUSES = frozenset({301, 302, 307})

DEFAULT_ACCEPT = ", ".join(
    [
        "application/vnd.docker.distribution.manifest.v2+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.oci.image.index.v1+json",
    ]
)

_CHALLENGE_PARAM = re.compile(r'([A-Za-z_][\w-]*)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^\s,]+))')


async def stream_request_body(request: Request) -> AsyncIterator[bytes]:
    """Stream request body from client in chunks.

    Args:
        request: FastAPI request object

    Yields:
        Chunks of request body data
    """
    async for chunk in request.stream():
        yield chunk


def sanitize_request_headers(headers: Iterable[tuple[str, str]]) -> httpx.Headers:
    """Copy inbound headers minus hop-by-hop ones, defaulting ``Accept``."""
    sanitized = httpx.Headers(
        [
            (name, value)
            for name, value in headers
            if name.lower() not in HOP_BY_HOP_HEADERS
        ]
    )
    if "accept" not in sanitized:
        sanitized["Accept"] = DEFAULT_ACCEPT
    return sanitized


def relay_response_headers(response: httpx.Response) -> dict[str, str]:
    """Headers of an upstream response that are safe to hand to the client."""
    return {
        name: value
        for name, value in response.headers.items()
        if name.lower() not in UNRELAYED_RESPONSE_HEADERS
    }


def parse_challenge(value: str) -> tuple[str, dict[str, str]]:
    """Split a ``WWW-Authenticate`` value into its scheme and parameters.

    >>> parse_challenge('Bearer realm="https://auth.docker.io/token",service="registry.docker.io"')
    ('Bearer', {'realm': 'https://auth.docker.io/token', 'service': 'registry.docker.io'})
    """
    scheme, _, rest = value.strip().partition(" ")
    params = {}
    for match in _CHALLENGE_PARAM.finditer(rest):
        name, quoted, token = match.groups()
        params[name.lower()] = quoted if quoted is not None else token
    return scheme or "Bearer", params


def format_challenge(realm: str, params: dict[str, str]) -> str:
    parts = [f'realm="{realm}"']
    parts.extend(
        f'{name}="{value}"' for name, value in params.items() if name != "realm"
    )
    return "Bearer " + ",".join(parts)


def rewrite_challenge(value: str, realm: str, default_service: str) -> str:
    """Point a Bearer challenge at a different realm.

    Every parameter other than ``realm`` is kept; ``service`` falls back to
    ``default_service`` when the upstream omitted it. Challenges with any
    other scheme are returned unchanged.
    """
    scheme, params = parse_challenge(value)
    if scheme.lower() != "bearer":
        return value
    params.setdefault("service", default_service)
    return format_challenge(realm, params)


class UpstreamForwarder:
    """Sends sanitized requests to the upstream registry.

    The forwarder resolves upstream redirects itself (one hop, credential
    free) and, under the ACTIVE strategy, retries an anonymous request that
    came back 401 with a freshly brokered token.
    """

    def __init__(
        self,
        config: RegistryConfig,
        http_client: httpx.AsyncClient,
        token_broker: Optional[TokenBroker] = None,
        strategy: UnauthorizedStrategy = UnauthorizedStrategy.PASSIVE,
    ):
        if strategy == UnauthorizedStrategy.ACTIVE and token_broker is None:
            raise ValueError("The active unauthorized strategy needs a token broker")

        self.config = config
        self.http_client = http_client
        self.token_broker = token_broker
        self.strategy = strategy

    async def forward(self, path: str, request: ForwardRequest) -> httpx.Response:
        """Forward a request to the registry and return the final response.

        The returned response is opened in streaming mode; the caller owns it
        and must close it.

        Args:
            path: Registry API path (e.g., "/v2/library/alpine/manifests/latest")
            request: Sanitized request descriptor

        Returns:
            The upstream response after any 401 retry and redirect hop

        Raises:
            httpx.HTTPError: If the upstream cannot be reached
        """
        target_url = self.config.target_url(path)
        headers = request.copy_headers()

        logger.info(
            "Forwarding request to registry",
            method=request.method,
            target_url=target_url,
        )

        response = await self._send(
            request.method, target_url, headers, request.params, request.content
        )

        if (
            response.status_code == 401
            and self.strategy == UnauthorizedStrategy.ACTIVE
            and not request.has_authorization
        ):
            response, headers = await self._retry_with_token(
                path, target_url, request, response, headers
            )

        if response.status_code in REDIRECT_STATUSES:
            response = await self._resolve_redirect(response, headers)

        logger.info(
            "Registry response received",
            status_code=response.status_code,
            target_url=target_url,
        )
        return response

    async def _retry_with_token(
        self,
        path: str,
        target_url: str,
        request: ForwardRequest,
        response: httpx.Response,
        headers: httpx.Headers,
    ) -> tuple[httpx.Response, httpx.Headers]:
        if not request.is_replayable:
            logger.info(
                "Not retrying 401, request body cannot be replayed",
                target_url=target_url,
            )
            return response, headers

        scope = derive_scope(path)
        token = await self.token_broker.get_token(scope)
        if token is None:
            logger.info("No token obtained for 401 retry", scope=scope)
            return response, headers

        await response.aclose()

        retry_headers = request.copy_headers()
        retry_headers["Authorization"] = f"Bearer {token}"

        logger.info("Retrying request with brokered token", scope=scope)
        retried = await self._send(
            request.method, target_url, retry_headers, request.params, request.content
        )
        return retried, retry_headers

    async def _resolve_redirect(
        self, response: httpx.Response, headers: httpx.Headers
    ) -> httpx.Response:
        location = response.headers.get("location")
        if not location:
            return response

        try:
            redirect_url = response.request.url.join(location)
        except httpx.InvalidURL:
            logger.warning("Ignoring malformed redirect location", location=location)
            return response

        if redirect_url.scheme not in ("http", "https") or not redirect_url.host:
            logger.warning("Ignoring malformed redirect location", location=location)
            return response

        redirect_headers = httpx.Headers(
            [
                (name, value)
                for name, value in headers.multi_items()
                if name.lower() != "authorization" and name.lower() not in BODY_HEADERS
            ]
        )

        await response.aclose()

        logger.info(
            "Following registry redirect",
            status_code=response.status_code,
            redirect_host=redirect_url.host,
        )
        return await self._send("GET", redirect_url, redirect_headers)

    async def _send(
        self,
        method: str,
        url,
        headers: httpx.Headers,
        params: Optional[list[tuple[str, str]]] = None,
        content=None,
    ) -> httpx.Response:
        outbound = self.http_client.build_request(
            method=method,
            url=url,
            headers=headers,
            params=params or None,
            content=content,
            timeout=self.config.timeout,
        )
        return await self.http_client.send(
            outbound, stream=True, follow_redirects=False
        )
