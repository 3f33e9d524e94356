"""
PulseMap - Live Nightlife Busyness Heat Map

Main FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging
import uvicorn

from .config import Settings, get_settings
from .database import AsyncSessionLocal, init_db
from .routers import health, heatmap
from .services.container import HeatmapServices, build_heatmap_services

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

DESCRIPTION = """
## PulseMap - Live Nightlife Busyness Heat Map

Slippy-map raster tiles showing how busy nearby venues are right now.
Each venue's current occupancy is spread with a Gaussian kernel, so busy
precincts glow and quiet streets fade out.

### Tiles

- `GET /heatmap/tiles/{z}/{x}/{y}.png` for zoom 11-20, 256x256 RGBA
- Venues near capacity spread their glow wider
- Colors are normalized per zoom so "hot" means the same on every tile

### Freshness

Tiles are cached in memory and in the database, keyed by a fingerprint
of current occupancy. The full tile pyramid is re-rendered in the
background every 15 minutes.
"""


def create_app(
    app_settings: Optional[Settings] = None,
    services: Optional[HeatmapServices] = None,
) -> FastAPI:
    """
    Build the API.

    Args:
        app_settings: Settings to use; defaults to the environment
        services: Prebuilt heat map services; built from a database
            session factory at startup when omitted
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        logger.info("Starting PulseMap API...")
        heatmap_services = services
        if heatmap_services is None:
            try:
                await init_db()
                logger.info("Database initialized")
            except Exception as e:
                logger.warning(f"Database initialization skipped: {e}")
            heatmap_services = build_heatmap_services(app_settings, AsyncSessionLocal)

        app.state.heatmap = heatmap_services
        heatmap_services.start()

        yield

        # Shutdown
        logger.info("Shutting down PulseMap API...")
        await heatmap_services.stop()

    app = FastAPI(
        title=app_settings.app_name,
        description=DESCRIPTION,
        version=app_settings.app_version,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.heatmap = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Tile-Coords", "X-Venue-Count"],
    )

    # Exception handlers
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(heatmap.router, prefix="/heatmap", tags=["Heat Map"])

    @app.get("/")
    async def root():
        """API root - returns basic info."""
        return {
            "name": app_settings.app_name,
            "version": app_settings.app_version,
            "description": "Live nightlife busyness heat map",
            "docs_url": "/docs",
            "health_url": "/health",
            "tiles_url": "/heatmap/tiles/{z}/{x}/{y}.png",
        }

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    uvicorn.run(
        "pulsemap.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
