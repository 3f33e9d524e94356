"""
Spherical Web-Mercator projection helpers.

Converts between geographic coordinates (longitude/latitude), Web-Mercator
meters and slippy-map tile/pixel coordinates. All functions are pure.

The meter conversions accept NumPy arrays as well as plain floats so the
KDE engine can project a whole tile's sample grid in one call.
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Tuple

EARTH_RADIUS = 6378137.0
ORIGIN_SHIFT = math.pi * EARTH_RADIUS
TILE_SIZE = 256


@dataclass(frozen=True)
class TileBounds:
    """Meter-space bounding box of a single tile."""
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


@dataclass(frozen=True)
class GeoBounds:
    """Geographic bounding box in degrees."""
    north: float
    south: float
    east: float
    west: float

    def contains(self, lng: float, lat: float) -> bool:
        return self.west <= lng <= self.east and self.south <= lat <= self.north


@dataclass(frozen=True)
class TileRange:
    """Inclusive tile-index rectangle at one zoom level."""
    zoom: int
    min_x: int
    max_x: int
    min_y: int
    max_y: int

    @property
    def count(self) -> int:
        return (self.max_x - self.min_x + 1) * (self.max_y - self.min_y + 1)

    def tiles(self):
        """Iterate (x, y) pairs column by column."""
        for x in range(self.min_x, self.max_x + 1):
            for y in range(self.min_y, self.max_y + 1):
                yield x, y


def lng_lat_to_meters(lng, lat):
    """Forward spherical Web-Mercator projection."""
    x = lng * ORIGIN_SHIFT / 180.0
    y = np.log(np.tan((90.0 + lat) * np.pi / 360.0)) / np.pi * ORIGIN_SHIFT
    if np.ndim(y) == 0:
        return float(x), float(y)
    return x, y


def meters_to_lng_lat(x, y):
    """Inverse spherical Web-Mercator projection."""
    lng = x / ORIGIN_SHIFT * 180.0
    lat = np.arctan(np.exp(y / ORIGIN_SHIFT * np.pi)) * 360.0 / np.pi - 90.0
    if np.ndim(lat) == 0:
        return float(lng), float(lat)
    return lng, lat


def tile_bounds(zoom: int, x: int, y: int) -> TileBounds:
    """
    Meter-space bounds of tile (zoom, x, y).

    The world spans [-pi*R, +pi*R] on both axes and is divided into
    2^zoom tiles per side; tile rows count downwards from the north edge.
    """
    n = 2 ** zoom
    resolution = (2 * ORIGIN_SHIFT) / n

    min_x = -ORIGIN_SHIFT + x * resolution
    max_x = -ORIGIN_SHIFT + (x + 1) * resolution
    max_y = ORIGIN_SHIFT - y * resolution
    min_y = ORIGIN_SHIFT - (y + 1) * resolution

    return TileBounds(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)


def pixel_to_meters(
    zoom: int,
    x: int,
    y: int,
    px,
    py,
    tile_size: int = TILE_SIZE,
):
    """
    Map a pixel inside a tile to meter coordinates.

    Pixel (0, 0) is the north-west corner of the tile. px/py may be arrays.
    """
    bounds = tile_bounds(zoom, x, y)
    mx = bounds.min_x + (px / tile_size) * bounds.width
    my = bounds.max_y - (py / tile_size) * bounds.height
    return mx, my


def lng_lat_to_tile(lng: float, lat: float, zoom: int) -> Tuple[int, int]:
    """Standard slippy-map tile index containing (lng, lat)."""
    n = 2 ** zoom
    x = math.floor((lng + 180.0) / 360.0 * n)
    lat_rad = math.radians(lat)
    y = math.floor((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    return x, y


def tile_to_lng_lat(x: int, y: int, zoom: int) -> Tuple[float, float]:
    """North-west corner of a tile in degrees."""
    n = 2 ** zoom
    lng = x / n * 360.0 - 180.0
    lat_rad = math.atan(math.sinh(math.pi * (1 - 2 * y / n)))
    return lng, math.degrees(lat_rad)


def tile_range(bounds: GeoBounds, zoom: int) -> TileRange:
    """
    Inclusive tile rectangle covering a geographic bounding box.

    Clamped to the valid index range [0, 2^zoom - 1] on both axes.
    """
    last = 2 ** zoom - 1
    min_x, min_y = lng_lat_to_tile(bounds.west, bounds.north, zoom)
    max_x, max_y = lng_lat_to_tile(bounds.east, bounds.south, zoom)

    return TileRange(
        zoom=zoom,
        min_x=max(0, min(min_x, last)),
        max_x=max(0, min(max_x, last)),
        min_y=max(0, min(min_y, last)),
        max_y=max(0, min(max_y, last)),
    )
