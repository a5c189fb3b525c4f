"""Core routes for the storyreel API (root and health check)."""

from api.dependencies import get_orchestrator
from api.schemas import HealthResponse, RootResponse
from fastapi import APIRouter

router = APIRouter(tags=["Core"])


@router.get(
    "/",
    response_model=RootResponse,
    summary="API root",
    description="Returns API name and version.",
)
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "storyreel API", "version": "1.0.0"}


@router.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns server health status and the number of runs in flight.",
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "healthy", "active_runs": len(get_orchestrator().registry)}
