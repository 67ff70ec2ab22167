from typing import Literal

from fastapi import APIRouter
from typing_extensions import TypedDict

from gateway.factories import token_cache_factory
from gateway.settings import settings

router = APIRouter(tags=["Health"])


class HealthResponse(TypedDict):
    status: Literal["pass"]
    unauthorized_strategy: Literal["passive", "active"]
    cached_tokens: int


@router.get("/health", responses={200: {"model": HealthResponse}})
async def health() -> HealthResponse:
    return {
        "status": "pass",
        "unauthorized_strategy": settings.REGISTRY_UNAUTHORIZED_STRATEGY,
        "cached_tokens": len(token_cache_factory()),
    }
