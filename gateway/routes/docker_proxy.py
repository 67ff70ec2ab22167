"""Docker Registry v2 API gateway.

This module exposes the Docker Registry HTTP API V2 on the gateway's own
host, proxying requests to the upstream registry and brokering its
bearer-token authentication.

See: https://docs.docker.com/registry/spec/api/
"""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from gateway.deps.registry import TokenBrokerDep, UpstreamForwarderDep
from gateway.services.registry_gateway_service import issue_token, proxy_to_registry

logger = structlog.stdlib.get_logger(__name__)

router = APIRouter(tags=["Docker Proxy"])

# Catch-all routes, registered by main after every other router
fallback_router = APIRouter(tags=["Docker Proxy"])

PROXIED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/v2", methods=PROXIED_METHODS)
@router.api_route("/v2/", methods=PROXIED_METHODS)
async def registry_version_check():
    """Docker Registry API version check.

    This endpoint is called by Docker CLI to verify the registry supports v2 API.
    It is answered locally, without contacting the upstream registry.
    """
    logger.debug("Docker registry version check")

    return JSONResponse(
        status_code=200,
        content={},
        headers={"Docker-Distribution-Api-Version": "registry/2.0"},
    )


@router.api_route("/v2/auth", methods=PROXIED_METHODS)
async def registry_auth(request: Request, token_broker: TokenBrokerDep):
    """Token endpoint advertised as the realm of rewritten auth challenges.

    Query Args:
        scope: Requested scope (e.g., "repository:library/alpine:pull")

    Returns:
        Bearer token JSON from the upstream token service
    """
    logger.info("Docker token request", scope=request.query_params.get("scope"))

    return await issue_token(request, token_broker)


@fallback_router.api_route("/v2/{registry_path:path}", methods=PROXIED_METHODS)
async def proxy_registry_request(
    request: Request,
    registry_path: str,
    forwarder: UpstreamForwarderDep,
):
    """Proxy any other Registry v2 call (manifests, blobs, tags, catalog).

    Args:
        registry_path: Path below /v2/ (e.g., "library/alpine/manifests/latest")
        forwarder: Upstream forwarder

    Returns:
        The upstream response, with 401 challenges handled by the gateway
    """
    return await proxy_to_registry(
        request=request,
        path=f"/v2/{registry_path}",
        forwarder=forwarder,
    )


@fallback_router.api_route("/{other_path:path}", methods=PROXIED_METHODS)
async def not_found(other_path: str):
    return PlainTextResponse("Not Found", status_code=404)
