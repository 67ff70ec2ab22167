"""Registry Gateway Service.

This service turns inbound Docker Registry v2 requests into upstream
forwards, brokers tokens for the synthetic /v2/auth endpoint and shapes
the responses handed back to the Docker client.
"""

from datetime import datetime, timezone
from typing import AsyncIterator

import httpx
import structlog
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from gateway.deps.registry import docker_error_response
from gateway.packages.registry_proxy import (
    MUTATING_METHODS,
    ForwardRequest,
    TokenBroker,
    UnauthorizedStrategy,
    UpstreamForwarder,
    derive_scope,
    relay_response_headers,
    rewrite_challenge,
    sanitize_request_headers,
    stream_request_body,
)
from gateway.settings import settings

logger = structlog.stdlib.get_logger(__name__)

AUTH_PATH = "/v2/auth"


def gateway_base_url(request: Request) -> str:
    """Public base URL of this gateway as seen by Docker clients."""
    if settings.PUBLIC_API_URL:
        return settings.PUBLIC_API_URL.rstrip("/")
    return f"https://{request.url.hostname}"


def auth_realm(request: Request) -> str:
    return f"{gateway_base_url(request)}{AUTH_PATH}"


def service_unavailable_response(error: Exception) -> JSONResponse:
    return docker_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        error_code="SERVICE_UNAVAILABLE",
        message=str(error) or "service unavailable",
    )


async def build_forward_request(
    request: Request, buffer_body: bool = False
) -> ForwardRequest:
    """Build the sanitized upstream request for an inbound registry request.

    Args:
        request: Original FastAPI request from Docker client
        buffer_body: Read the whole body into memory so it can be resent

    Returns:
        ForwardRequest with hop-by-hop headers removed and a default Accept
    """
    content = None
    if request.method in MUTATING_METHODS:
        has_body = (
            "content-length" in request.headers
            or "transfer-encoding" in request.headers
        )
        if buffer_body or not has_body:
            content = await request.body()
        else:
            content = stream_request_body(request)

    return ForwardRequest(
        method=request.method,
        headers=sanitize_request_headers(request.headers.items()),
        params=list(request.query_params.multi_items()),
        content=content,
    )


def relay_response(
    upstream: httpx.Response, headers: dict[str, str] | None = None
) -> StreamingResponse:
    """Stream an upstream response back to the client unchanged."""

    async def generate() -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw(chunk_size=65536):
                yield chunk
        finally:
            await upstream.aclose()

    return StreamingResponse(
        content=generate(),
        status_code=upstream.status_code,
        headers=headers if headers is not None else relay_response_headers(upstream),
    )


def rewrite_unauthorized(upstream: httpx.Response, request: Request) -> Response:
    """Hand an upstream 401 to the client with its challenge pointed at us.

    The client then fetches its token from /v2/auth, which this gateway
    brokers against the real token service.
    """
    headers = relay_response_headers(upstream)

    challenge = upstream.headers.get("www-authenticate")
    if challenge:
        headers["www-authenticate"] = rewrite_challenge(
            challenge,
            realm=auth_realm(request),
            default_service=settings.REGISTRY_AUTH_SERVICE,
        )

    return relay_response(upstream, headers=headers)


def unauthorized_challenge_response(request: Request, path: str) -> JSONResponse:
    """Fixed 401 used when the active strategy could not authenticate."""
    challenge_params = {"service": settings.REGISTRY_AUTH_SERVICE}
    scope = derive_scope(path)
    if scope:
        challenge_params["scope"] = scope

    challenge = f'Bearer realm="{auth_realm(request)}"' + "".join(
        f',{name}="{value}"' for name, value in challenge_params.items()
    )

    return docker_error_response(
        status_code=status.HTTP_401_UNAUTHORIZED,
        error_code="UNAUTHORIZED",
        message="authentication required",
        headers={"WWW-Authenticate": challenge},
    )


async def proxy_to_registry(
    request: Request,
    path: str,
    forwarder: UpstreamForwarder,
) -> Response:
    """Proxy a Docker Registry request upstream and post-process the result.

    Args:
        request: Original FastAPI request from Docker client
        path: Registry API path (e.g., "/v2/library/alpine/manifests/latest")
        forwarder: Upstream forwarder configured with the 401 strategy

    Returns:
        Relayed upstream response, a rewritten/synthesized 401, or a 503
        when the upstream could not be reached
    """
    active = forwarder.strategy == UnauthorizedStrategy.ACTIVE

    try:
        forward_request = await build_forward_request(request, buffer_body=active)
        upstream = await forwarder.forward(path, forward_request)
    except Exception as e:
        logger.error(
            "Error while proxying registry request",
            path=path,
            method=request.method,
            error=str(e),
            error_type=type(e).__name__,
        )
        return service_unavailable_response(e)

    if upstream.status_code != status.HTTP_401_UNAUTHORIZED:
        return relay_response(upstream)

    if active:
        await upstream.aclose()
        logger.info("Upstream unauthorized under active strategy", path=path)
        return unauthorized_challenge_response(request, path)

    logger.debug("Rewriting upstream auth challenge", path=path)
    return rewrite_unauthorized(upstream, request)


async def issue_token(request: Request, token_broker: TokenBroker) -> JSONResponse:
    """Serve the synthetic token endpoint advertised in rewritten challenges.

    Args:
        request: Token request from Docker client, with optional ``scope``
                 query parameter and ``Authorization`` header
        token_broker: Broker used to obtain the upstream token

    Returns:
        Token JSON, or a registry-style 401 when a scoped token is refused
    """
    scope = request.query_params.get("scope")
    authorization = request.headers.get("authorization")

    if not scope:
        token = await token_broker.get_token("", authorization)
        return JSONResponse(status_code=status.HTTP_200_OK, content={"token": token or ""})

    token = await token_broker.get_token(scope, authorization)
    if token is None:
        logger.info("Token request refused", scope=scope)
        return docker_error_response(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="UNAUTHORIZED",
            message="authentication failed",
        )

    issued_at = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "token": token,
            "access_token": token,
            "expires_in": settings.TOKEN_LIFETIME_SECONDS,
            "issued_at": issued_at.replace("+00:00", "Z"),
        },
        headers={"Cache-Control": "no-cache"},
    )
