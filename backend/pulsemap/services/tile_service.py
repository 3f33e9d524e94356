"""
Heat map tile service.

Serves PNG tiles and coarse numeric grids for slippy-map clients. Lookups
go memory cache -> persistent tile store -> fresh render, and fresh
renders are written through to both tiers. The persistent tier is an
optimization only: its failures are logged and never fail a request.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from ..heatmap.kde import KDEEngine, GridCell
from ..heatmap.projection import GeoBounds, tile_range
from ..heatmap.raster import render_png
from ..heatmap.venue import VenueSample, compute_venue_hash
from .cache_service import CachedTile, HeatmapCacheService
from .tile_store import TileStore

logger = logging.getLogger(__name__)


class ZoomOutOfRangeError(ValueError):
    """Requested zoom is outside the served range."""

    def __init__(self, zoom: int, min_zoom: int, max_zoom: int):
        super().__init__(f"Zoom level {zoom} out of range ({min_zoom}-{max_zoom})")
        self.zoom = zoom
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom


@dataclass
class HeatmapGrid:
    """Coarse numeric view of one tile."""
    zoom: int
    x: int
    y: int
    cells: List[GridCell]
    timestamp: datetime
    venue_hash: str = ""


@dataclass
class RenderedTile:
    zoom: int
    x: int
    y: int
    png: bytes = field(repr=False)


class HeatmapTileService:
    """Renders, caches and serves heat map tiles."""

    def __init__(
        self,
        kde: KDEEngine,
        cache: HeatmapCacheService,
        tile_store: Optional[TileStore] = None,
        min_zoom: int = 11,
        max_zoom: int = 20,
        blur_sigma: float = 8.0,
        compress_level: int = 1,
        grid_size: int = 16,
        cache_ttl: float = 60.0,
        store_ttl: float = 3600.0,
    ):
        """
        Args:
            kde: Shared KDE engine
            cache: Memory cache tier
            tile_store: Optional persistent tier
            min_zoom, max_zoom: Inclusive served zoom range
            blur_sigma: Gaussian blur applied to rendered tiles
            compress_level: PNG compression effort
            grid_size: Cells per side of grid responses
            cache_ttl: Memory tier TTL in seconds
            store_ttl: Persistent tier TTL in seconds
        """
        self.kde = kde
        self.cache = cache
        self.tile_store = tile_store
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom
        self.blur_sigma = blur_sigma
        self.compress_level = compress_level
        self.grid_size = grid_size
        self.cache_ttl = cache_ttl
        self.store_ttl = store_ttl
        self.store_errors = 0

    def validate_zoom(self, zoom: int) -> None:
        if zoom < self.min_zoom or zoom > self.max_zoom:
            raise ZoomOutOfRangeError(zoom, self.min_zoom, self.max_zoom)

    @staticmethod
    def tile_key(zoom: int, x: int, y: int) -> str:
        return f"heatmap_tile_{zoom}_{x}_{y}"

    @staticmethod
    def grid_key(zoom: int, x: int, y: int) -> str:
        return f"heatmap_grid_{zoom}_{x}_{y}"

    # --- Persistent tier (best effort) ---

    async def _load_from_store(
        self, zoom: int, x: int, y: int, venue_hash: str
    ) -> Optional[bytes]:
        if self.tile_store is None:
            return None
        try:
            stored = await self.tile_store.get(zoom, x, y)
        except Exception as e:
            self.store_errors += 1
            logger.warning(f"Tile store read failed for {zoom}/{x}/{y}: {e}")
            return None
        if stored is None or not stored.is_valid(venue_hash, datetime.utcnow()):
            return None

        try:
            await self.tile_store.record_hit(zoom, x, y)
        except Exception as e:
            self.store_errors += 1
            logger.warning(f"Tile store hit count failed for {zoom}/{x}/{y}: {e}")
        return stored.png

    async def _save_to_store(
        self, zoom: int, x: int, y: int, png: bytes, venue_hash: str
    ) -> None:
        if self.tile_store is None:
            return
        try:
            await self.tile_store.upsert(
                zoom, x, y, png, venue_hash,
                expires_at=datetime.utcnow() + timedelta(seconds=self.store_ttl),
            )
        except Exception as e:
            self.store_errors += 1
            logger.warning(f"Tile store write failed for {zoom}/{x}/{y}: {e}")

    # --- Tiles ---

    def render_tile(
        self,
        zoom: int,
        x: int,
        y: int,
        venues: Sequence[VenueSample],
        venue_hash: Optional[str] = None,
    ) -> bytes:
        """Compute and encode a tile without touching any cache."""
        self.validate_zoom(zoom)
        intensities = self.kde.compute_tile_intensities(zoom, x, y, venues, venue_hash)
        return render_png(intensities, self.blur_sigma, self.compress_level)

    async def get_tile(
        self, zoom: int, x: int, y: int, venues: Sequence[VenueSample]
    ) -> bytes:
        """
        PNG bytes for tile (zoom, x, y).

        Raises:
            ZoomOutOfRangeError: If zoom is outside [min_zoom, max_zoom]
        """
        self.validate_zoom(zoom)
        venue_hash = compute_venue_hash(venues)
        key = self.tile_key(zoom, x, y)

        cached = self.cache.get_tile(key, venue_hash)
        if cached is not None:
            logger.debug(f"Memory cache hit for tile {zoom}/{x}/{y}")
            return cached.png

        stored = await self._load_from_store(zoom, x, y, venue_hash)
        if stored is not None:
            logger.debug(f"Tile store hit for tile {zoom}/{x}/{y}")
            self.cache.set_tile(key, CachedTile(stored, venue_hash), self.cache_ttl)
            return stored

        start = time.perf_counter()
        png = self.render_tile(zoom, x, y, venues, venue_hash)
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(f"Rendered tile {zoom}/{x}/{y} in {elapsed:.1f}ms")

        self.cache.set_tile(key, CachedTile(png, venue_hash), self.cache_ttl)
        await self._save_to_store(zoom, x, y, png, venue_hash)
        return png

    # --- Grids ---

    async def get_grid(
        self, zoom: int, x: int, y: int, venues: Sequence[VenueSample]
    ) -> HeatmapGrid:
        """
        Coarse intensity grid for tile (zoom, x, y); memory cache only.

        Raises:
            ZoomOutOfRangeError: If zoom is outside [min_zoom, max_zoom]
        """
        self.validate_zoom(zoom)
        venue_hash = compute_venue_hash(venues)
        key = self.grid_key(zoom, x, y)

        cached = self.cache.get_data(key, venue_hash)
        if cached is not None:
            return cached

        cells = self.kde.compute_grid(zoom, x, y, venues, self.grid_size)
        grid = HeatmapGrid(
            zoom=zoom,
            x=x,
            y=y,
            cells=cells,
            timestamp=datetime.utcnow(),
            venue_hash=venue_hash,
        )
        self.cache.set_data(key, grid, self.cache_ttl)
        return grid

    # --- Batches ---

    async def _get_tile_or_skip(
        self, zoom: int, x: int, y: int, venues: Sequence[VenueSample]
    ) -> Optional[bytes]:
        try:
            return await self.get_tile(zoom, x, y, venues)
        except Exception as e:
            logger.error(f"Failed to generate tile {zoom}/{x}/{y}: {e}")
            return None

    async def generate_tiles_for_region(
        self,
        venues: Sequence[VenueSample],
        bounds: GeoBounds,
        zoom: int,
    ) -> List[RenderedTile]:
        """
        Render every tile covering `bounds` at one zoom level.

        Individual tile failures are logged and skipped.
        """
        tiles: List[RenderedTile] = []
        covering = tile_range(bounds, zoom)

        for x, y in covering.tiles():
            png = await self._get_tile_or_skip(zoom, x, y, venues)
            if png is not None:
                tiles.append(RenderedTile(zoom, x, y, png))
            # Let interactive requests run between CPU-bound renders
            await asyncio.sleep(0)

        return tiles

    async def precompute_tiles(
        self,
        venues: Sequence[VenueSample],
        bounds: GeoBounds,
        zoom_levels: Sequence[int],
    ) -> int:
        """
        Warm both cache tiers over `bounds`, one zoom level at a time.

        Only successful tiles are counted; the bytes live in the caches.
        """
        total = 0
        for zoom in zoom_levels:
            covering = tile_range(bounds, zoom)
            logger.info(
                f"Zoom {zoom}: precomputing {covering.count} tiles "
                f"(x: {covering.min_x}-{covering.max_x}, "
                f"y: {covering.min_y}-{covering.max_y})"
            )
            for x, y in covering.tiles():
                if await self._get_tile_or_skip(zoom, x, y, venues) is not None:
                    total += 1
                await asyncio.sleep(0)
        return total

    def get_stats(self) -> dict:
        return {
            "cache": self.cache.get_stats(),
            "kde": self.kde.get_stats(),
            "store_errors": self.store_errors,
            "config": {
                "min_zoom": self.min_zoom,
                "max_zoom": self.max_zoom,
                "tile_size": self.kde.tile_size,
                "cache_ttl": self.cache_ttl,
            },
        }

    def clear_cache(self) -> None:
        """Drop memory caches and normalization; the persistent tier is kept."""
        self.cache.clear()
        self.kde.clear()
