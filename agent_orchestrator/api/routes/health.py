"""Health check endpoints."""

from fastapi import APIRouter, Request

from ..schemas import HealthResponse
from ... import __version__

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check if the API server is running and report tools and cache state.",
)
def health_check(request: Request) -> HealthResponse:
    """Return health status of the API server."""
    deps = request.app.state.deps
    return HealthResponse(
        status="healthy",
        version=__version__,
        tools=deps.registry.names(),
        cache=deps.cache.snapshot(),
    )
