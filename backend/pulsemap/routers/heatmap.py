"""
Heat map tile and grid endpoints.
"""

import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from ..heatmap.projection import GeoBounds
from ..heatmap.venue import VenueSample
from ..schemas import (
    BoundsParams,
    GridCellSchema,
    GridResponse,
    HeatmapVenue,
    VenueListResponse,
    PrecomputeRequest,
    PrecomputeResponse,
)
from ..services.container import HeatmapServices
from ..services.tile_service import ZoomOutOfRangeError

logger = logging.getLogger(__name__)
router = APIRouter()

TILE_CACHE_CONTROL = "public, max-age=300, s-maxage=300, stale-while-revalidate=60"


def get_heatmap_services(request: Request) -> HeatmapServices:
    """Dependency returning the service graph built at startup."""
    return request.app.state.heatmap


async def get_active_venues(
    services: HeatmapServices = Depends(get_heatmap_services),
) -> List[VenueSample]:
    """Dependency for the current active venue set."""
    return await services.venue_store.list_active_venues()


def bounds_params_to_geo(params: BoundsParams) -> GeoBounds:
    return GeoBounds(
        north=params.north,
        south=params.south,
        east=params.east,
        west=params.west,
    )


def geo_to_bounds_params(bounds: GeoBounds) -> BoundsParams:
    return BoundsParams(
        north=bounds.north,
        south=bounds.south,
        east=bounds.east,
        west=bounds.west,
    )


@router.get(
    "/tiles/{z}/{x}/{y}.png",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def get_tile(
    z: int,
    x: int,
    y: int,
    services: HeatmapServices = Depends(get_heatmap_services),
    venues: List[VenueSample] = Depends(get_active_venues),
):
    """
    Get a 256x256 heat map tile.

    Tiles are public and served from the memory cache, then the tile
    store, then rendered fresh.
    """
    logger.debug(f"Heat map tile request: {z}/{x}/{y}")
    try:
        png = await services.tile_service.get_tile(z, x, y, venues)
    except ZoomOutOfRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return Response(
        content=png,
        media_type="image/png",
        headers={
            "Cache-Control": TILE_CACHE_CONTROL,
            "X-Tile-Coords": f"{z}/{x}/{y}",
            "X-Venue-Count": str(len(venues)),
            "X-Content-Type-Options": "nosniff",
        },
    )


@router.get("/grid/{z}/{x}/{y}.json", response_model=GridResponse)
async def get_grid(
    z: int,
    x: int,
    y: int,
    services: HeatmapServices = Depends(get_heatmap_services),
    venues: List[VenueSample] = Depends(get_active_venues),
):
    """
    Get a coarse intensity grid for one tile.

    Intensities are in [0, 1]; cells run west to east, south to north.
    """
    logger.debug(f"Heat map grid request: {z}/{x}/{y}")
    try:
        grid = await services.tile_service.get_grid(z, x, y, venues)
    except ZoomOutOfRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    payload = GridResponse(
        zoom=grid.zoom,
        x=grid.x,
        y=grid.y,
        cells=[
            GridCellSchema(lat=c.lat, lng=c.lng, intensity=c.intensity)
            for c in grid.cells
        ],
        timestamp=grid.timestamp,
    )
    return JSONResponse(
        content=payload.model_dump(mode="json"),
        headers={
            "Cache-Control": f"public, max-age={services.tile_service.cache_ttl:g}",
            "X-Venue-Count": str(len(venues)),
        },
    )


@router.get("/venues", response_model=VenueListResponse)
async def list_venues(venues: List[VenueSample] = Depends(get_active_venues)):
    """List venues currently contributing to the heat map."""
    return VenueListResponse(
        venues=[
            HeatmapVenue(
                id=v.id,
                name=v.name,
                latitude=v.latitude,
                longitude=v.longitude,
                capacity=v.capacity,
                occupancy=v.occupancy,
                rating=v.rating,
                status=v.status,
            )
            for v in venues
        ],
        count=len(venues),
        timestamp=datetime.utcnow(),
    )


@router.post("/precompute", response_model=PrecomputeResponse)
async def precompute(
    request: PrecomputeRequest,
    services: HeatmapServices = Depends(get_heatmap_services),
):
    """
    Start a background sweep over the given bounds and zoom levels.

    Returns immediately. If a sweep is already running, nothing new is
    started and the status is `already_running`.
    """
    scheduler = services.precompute
    bounds = (
        bounds_params_to_geo(request.bounds)
        if request.bounds else scheduler.default_bounds
    )
    zoom_levels = request.zoom_levels or scheduler.default_zoom_levels

    for zoom in zoom_levels:
        try:
            services.tile_service.validate_zoom(zoom)
        except ZoomOutOfRangeError as e:
            raise HTTPException(status_code=400, detail=str(e))

    started = scheduler.trigger(bounds, zoom_levels)
    return PrecomputeResponse(
        status="started" if started else "already_running",
        bounds=geo_to_bounds_params(bounds),
        zoom_levels=list(zoom_levels),
    )


@router.get("/stats")
async def get_stats(services: HeatmapServices = Depends(get_heatmap_services)):
    """Cache, KDE, scheduler and configuration statistics."""
    stats = services.tile_service.get_stats()
    stats["precompute"] = services.precompute.get_status()
    stats["timestamp"] = datetime.utcnow()
    return stats


@router.post("/cache/clear")
async def clear_cache(services: HeatmapServices = Depends(get_heatmap_services)):
    """Clear memory caches and normalization state."""
    services.tile_service.clear_cache()
    logger.info("Heat map cache cleared")
    return {
        "status": "cleared",
        "timestamp": datetime.utcnow(),
    }
