"""
Heat map computation for PulseMap.
Projection, venue weighting, spatial indexing, KDE and raster rendering.
"""

from .projection import (
    GeoBounds,
    TileBounds,
    TileRange,
    lng_lat_to_meters,
    meters_to_lng_lat,
    tile_bounds,
    pixel_to_meters,
    lng_lat_to_tile,
    tile_to_lng_lat,
    tile_range,
)
from .venue import VenueSample, compute_venue_hash, venue_status
from .spatial_index import SpatialIndex
from .colormap import Color, get_color, apply_colormap
from .kde import KDEEngine, GridCell, kde_bandwidth, compute_intensity
from .raster import render_png

__all__ = [
    "GeoBounds",
    "TileBounds",
    "TileRange",
    "lng_lat_to_meters",
    "meters_to_lng_lat",
    "tile_bounds",
    "pixel_to_meters",
    "lng_lat_to_tile",
    "tile_to_lng_lat",
    "tile_range",
    "VenueSample",
    "compute_venue_hash",
    "venue_status",
    "SpatialIndex",
    "Color",
    "get_color",
    "apply_colormap",
    "KDEEngine",
    "GridCell",
    "kde_bandwidth",
    "compute_intensity",
    "render_png",
]
