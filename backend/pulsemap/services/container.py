"""
Composition root for the heat map services.

Everything that holds process-wide state (KDE normalization, caches,
scheduler) is constructed once here and handed to the routers through
app.state, rather than living in module-level singletons.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..heatmap.kde import KDEEngine
from ..heatmap.projection import GeoBounds
from .background import PeriodicTask
from .cache_service import HeatmapCacheService
from .precompute_service import PrecomputeService
from .tile_service import HeatmapTileService
from .tile_store import SqlTileStore, TileStore
from .venue_store import SqlVenueStore, VenueStore

logger = logging.getLogger(__name__)


def default_bounds(settings: Settings) -> GeoBounds:
    return GeoBounds(
        north=settings.heatmap_bounds_north,
        south=settings.heatmap_bounds_south,
        east=settings.heatmap_bounds_east,
        west=settings.heatmap_bounds_west,
    )


@dataclass
class HeatmapServices:
    """Shared service graph plus its background jobs."""
    settings: Settings
    kde: KDEEngine
    cache: HeatmapCacheService
    tile_store: Optional[TileStore]
    venue_store: VenueStore
    tile_service: HeatmapTileService
    precompute: PrecomputeService
    maintenance_tasks: List[PeriodicTask] = field(default_factory=list)

    async def _cleanup_store(self) -> None:
        removed = await self.tile_store.delete_expired()
        if removed:
            logger.info(f"Removed {removed} expired tiles from the tile store")

    async def _maintain_cache(self) -> None:
        self.cache.perform_maintenance()

    def start(self) -> None:
        """Start cache maintenance and, if enabled, the precompute scheduler."""
        if not self.maintenance_tasks:
            self.maintenance_tasks.append(PeriodicTask(
                "heatmap cache maintenance",
                self.settings.heatmap_cache_maintenance_interval,
                self._maintain_cache,
                run_immediately=False,
            ))
            if self.tile_store is not None:
                self.maintenance_tasks.append(PeriodicTask(
                    "heatmap tile store cleanup",
                    self.settings.db_cache_cleanup_interval,
                    self._cleanup_store,
                    run_immediately=False,
                ))

        for task in self.maintenance_tasks:
            task.start()

        if self.settings.heatmap_precompute_enabled:
            self.precompute.start()

    async def stop(self) -> None:
        """Stop the timers, then wait for sweeps and jobs already in flight."""
        await self.precompute.stop()
        for task in self.maintenance_tasks:
            await task.stop()

        await self.precompute.wait_for_sweeps()
        for task in self.maintenance_tasks:
            await task.wait_for_jobs()


def build_heatmap_services(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    venue_store: Optional[VenueStore] = None,
    tile_store: Optional[TileStore] = None,
) -> HeatmapServices:
    """
    Wire the heat map services from settings.

    SQL-backed stores are used for anything not passed in explicitly,
    provided a session factory is available.
    """
    if venue_store is None:
        if session_factory is None:
            raise ValueError("A venue store or a session factory is required")
        venue_store = SqlVenueStore(session_factory, settings.venue_cache_seconds)

    if tile_store is None and session_factory is not None:
        tile_store = SqlTileStore(session_factory)

    kde = KDEEngine(
        tile_size=settings.heatmap_tile_size,
        gamma=settings.heatmap_gamma,
        sample_step=settings.heatmap_sample_step,
        refresh_seconds=settings.heatmap_normalization_refresh,
        normalization_floor=settings.heatmap_normalization_floor,
        cell_size=settings.heatmap_spatial_cell_size,
        max_venues_per_tile=settings.heatmap_max_venues_per_tile,
        sample_points=settings.heatmap_normalization_sample_points,
    )
    cache = HeatmapCacheService(
        default_ttl=settings.heatmap_cache_ttl,
        max_tile_items=settings.heatmap_max_tile_items,
        max_data_items=settings.heatmap_max_data_items,
    )
    tile_service = HeatmapTileService(
        kde=kde,
        cache=cache,
        tile_store=tile_store,
        min_zoom=settings.heatmap_min_zoom,
        max_zoom=settings.heatmap_max_zoom,
        blur_sigma=settings.heatmap_gaussian_blur_sigma,
        compress_level=settings.heatmap_png_compress_level,
        grid_size=settings.heatmap_grid_size,
        cache_ttl=settings.heatmap_cache_ttl,
        store_ttl=settings.db_cache_ttl,
    )
    precompute = PrecomputeService(
        tile_service=tile_service,
        venue_store=venue_store,
        default_bounds=default_bounds(settings),
        default_zoom_levels=settings.precompute_zoom_levels,
        interval_seconds=settings.heatmap_update_interval,
    )

    return HeatmapServices(
        settings=settings,
        kde=kde,
        cache=cache,
        tile_store=tile_store,
        venue_store=venue_store,
        tile_service=tile_service,
        precompute=precompute,
    )
