"""Docker Registry gateway dependencies.

Hands the process-wide token broker and forwarder to route handlers and
builds Registry v2 style error responses.
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.responses import JSONResponse

from gateway.factories import token_broker_factory, upstream_forwarder_factory
from gateway.packages.registry_proxy import TokenBroker, UpstreamForwarder


def docker_error_response(
    status_code: int,
    error_code: str,
    message: str,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Create a Docker Registry v2 API compliant error response.

    See: https://docs.docker.com/registry/spec/api/#errors
    """
    return JSONResponse(
        status_code=status_code,
        content={"errors": [{"code": error_code, "message": message}]},
        headers=headers,
    )


def get_token_broker() -> TokenBroker:
    return token_broker_factory()


def get_upstream_forwarder() -> UpstreamForwarder:
    return upstream_forwarder_factory()


TokenBrokerDep = Annotated[TokenBroker, Depends(get_token_broker)]
UpstreamForwarderDep = Annotated[UpstreamForwarder, Depends(get_upstream_forwarder)]
