"""
Service layer for PulseMap heat map tiles.
"""

from .cache_service import HeatmapCacheService, CachedTile
from .tile_store import TileStore, SqlTileStore, InMemoryTileStore, StoredTile
from .venue_store import VenueStore, SqlVenueStore, StaticVenueStore
from .tile_service import HeatmapTileService, HeatmapGrid, ZoomOutOfRangeError
from .precompute_service import PrecomputeService, PrecomputeResult
from .container import HeatmapServices, build_heatmap_services

__all__ = [
    "HeatmapCacheService",
    "CachedTile",
    "TileStore",
    "SqlTileStore",
    "InMemoryTileStore",
    "StoredTile",
    "VenueStore",
    "SqlVenueStore",
    "StaticVenueStore",
    "HeatmapTileService",
    "HeatmapGrid",
    "ZoomOutOfRangeError",
    "PrecomputeService",
    "PrecomputeResult",
    "HeatmapServices",
    "build_heatmap_services",
]
