"""
Background precomputation of the heat map tile pyramid.

On a fixed interval the scheduler reads current occupancy and renders
every tile over the configured bounds and zoom range, so interactive
requests are served from cache. Only one sweep runs at a time; a trigger
that arrives mid-sweep is ignored rather than queued.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from ..heatmap.projection import GeoBounds
from .background import PeriodicTask
from .tile_service import HeatmapTileService
from .venue_store import VenueStore

logger = logging.getLogger(__name__)


@dataclass
class PrecomputeResult:
    """Outcome of one full sweep."""
    tile_count: int
    venue_count: int
    zoom_levels: List[int]
    duration_seconds: float
    finished_at: datetime


class PrecomputeService:
    """Idle/Precomputing scheduler for full-pyramid sweeps."""

    def __init__(
        self,
        tile_service: HeatmapTileService,
        venue_store: VenueStore,
        default_bounds: GeoBounds,
        default_zoom_levels: Sequence[int],
        interval_seconds: int = 900,
    ):
        """
        Args:
            tile_service: Renders and caches individual tiles
            venue_store: Source of current occupancy
            default_bounds: Region swept when no bounds are given
            default_zoom_levels: Zoom levels swept when none are given
            interval_seconds: Delay between scheduled sweeps
        """
        self.tile_service = tile_service
        self.venue_store = venue_store
        self.default_bounds = default_bounds
        self.default_zoom_levels = list(default_zoom_levels)
        self.interval_seconds = interval_seconds

        self.is_precomputing = False
        self.last_precompute_time: Optional[datetime] = None
        self.last_result: Optional[PrecomputeResult] = None
        self._triggered: set = set()
        self._timer = PeriodicTask(
            "heatmap precompute",
            interval_seconds,
            self.precompute_tiles,
        )

    async def precompute_tiles(
        self,
        bounds: Optional[GeoBounds] = None,
        zoom_levels: Optional[Sequence[int]] = None,
    ) -> Optional[PrecomputeResult]:
        """
        Run one sweep over `bounds` and `zoom_levels`.

        Returns:
            The sweep result, or None if a sweep was already running
        """
        # Guard must be taken before the first await
        if self.is_precomputing:
            logger.info("Tile precomputation already running, skipping")
            return None
        self.is_precomputing = True
        return await self._sweep(bounds, zoom_levels)

    async def _sweep(
        self,
        bounds: Optional[GeoBounds],
        zoom_levels: Optional[Sequence[int]],
    ) -> PrecomputeResult:
        """Body of a sweep; the caller has already taken the guard."""
        compute_bounds = bounds or self.default_bounds
        compute_zooms = list(zoom_levels or self.default_zoom_levels)
        start = time.perf_counter()

        try:
            logger.info(
                f"Starting heat map precomputation: bounds={compute_bounds}, "
                f"zooms={compute_zooms}"
            )
            venues = await self.venue_store.list_active_venues()
            logger.info(f"Found {len(venues)} venues with occupancy > 0")

            tile_count = await self.tile_service.precompute_tiles(
                venues, compute_bounds, compute_zooms
            )

            duration = time.perf_counter() - start
            self.last_precompute_time = datetime.utcnow()
            self.last_result = PrecomputeResult(
                tile_count=tile_count,
                venue_count=len(venues),
                zoom_levels=compute_zooms,
                duration_seconds=duration,
                finished_at=self.last_precompute_time,
            )
            logger.info(
                f"Heat map precomputation complete: {tile_count} tiles "
                f"in {duration:.2f}s"
            )
            return self.last_result
        finally:
            self.is_precomputing = False

    async def _run_triggered(
        self,
        bounds: Optional[GeoBounds],
        zoom_levels: Optional[Sequence[int]],
    ) -> None:
        try:
            await self._sweep(bounds, zoom_levels)
        except Exception:
            logger.exception("Triggered heat map precomputation failed")

    def trigger(
        self,
        bounds: Optional[GeoBounds] = None,
        zoom_levels: Optional[Sequence[int]] = None,
    ) -> bool:
        """
        Start a sweep in the background without waiting for it.

        The guard is taken here, before the task is scheduled, so a second
        trigger in the same tick is refused.

        Returns:
            False if a sweep is already running or about to start
        """
        if self.is_precomputing:
            logger.info("Tile precomputation already running, trigger ignored")
            return False
        self.is_precomputing = True
        task = asyncio.create_task(self._run_triggered(bounds, zoom_levels))
        self._triggered.add(task)
        task.add_done_callback(self._triggered_done)
        return True

    def _triggered_done(self, task: asyncio.Task) -> None:
        self._triggered.discard(task)
        # A task cancelled before it ran never reached the sweep's finally
        if task.cancelled():
            self.is_precomputing = False

    def start(self) -> bool:
        """Sweep now, then every interval until stop()."""
        return self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

    async def wait_for_sweeps(self) -> None:
        await self._timer.wait_for_jobs()
        if self._triggered:
            await asyncio.gather(*list(self._triggered), return_exceptions=True)

    def get_status(self) -> dict:
        result = self.last_result
        return {
            "is_precomputing": self.is_precomputing,
            "last_precompute_time": self.last_precompute_time,
            "last_tile_count": result.tile_count if result else 0,
            "last_duration_seconds": result.duration_seconds if result else None,
            "refresh_interval_active": self._timer.is_running,
            "refresh_interval_seconds": self.interval_seconds,
        }
