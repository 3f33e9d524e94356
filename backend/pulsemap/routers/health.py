"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from ..database import get_db
from ..config import get_settings
from ..schemas import HealthResponse, PrecomputeStatus
from ..services.container import HeatmapServices
from .heatmap import get_heatmap_services

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    services: HeatmapServices = Depends(get_heatmap_services),
):
    """
    Check API, database and scheduler health.

    Returns:
        Health status including database connectivity and the last
        precompute sweep
    """
    db_status = "healthy"

    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    return HealthResponse(
        status="healthy",
        version=get_settings().app_version,
        database=db_status,
        precompute=PrecomputeStatus(**services.precompute.get_status()),
    )


@router.get("/health/simple")
async def simple_health():
    """Simple health check without database."""
    return {"status": "ok"}
