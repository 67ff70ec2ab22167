from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request

from gateway.deps.registry import docker_error_response
from gateway.factories import close_http_client
from gateway.routes import docker_proxy, health
from gateway.settings import settings
from gateway.utils.logging import setup_logger
from gateway.utils.sentry import init_sentry

logger = structlog.stdlib.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Registry gateway starting",
        registry_url=settings.REGISTRY_URL,
        auth_url=settings.REGISTRY_AUTH_URL,
        unauthorized_strategy=settings.REGISTRY_UNAUTHORIZED_STRATEGY,
    )

    yield

    await close_http_client()


init_sentry()
app = FastAPI(lifespan=lifespan)
setup_logger(app)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return docker_error_response(
        status_code=503,
        error_code="SERVICE_UNAVAILABLE",
        message=str(exc) or "service unavailable",
    )


app.include_router(health.router)
app.include_router(docker_proxy.router)
app.include_router(docker_proxy.fallback_router)
