"""
Kernel Density Estimation engine for the busyness heat map.

Each active venue contributes an isotropic Gaussian bump centred on its
Web-Mercator position:

    w * 1 / (2 * pi * s^2) * exp(-d^2 / (2 * s^2))

where w is the venue weight (absolute crowd blended with percent-full) and
s is the zoom's base bandwidth scaled by the venue's bloom multiplier.
Contributions beyond 3s are truncated to zero.

Tile output is divided by a global maximum intensity so that "hot" means
the same thing on every tile. The maximum is sampled at venue locations
(the likely local maxima) plus optional strategic points, and refreshed
when it goes stale or the venue set changes.
"""

import math
import time
import numpy as np
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .projection import (
    lng_lat_to_meters,
    meters_to_lng_lat,
    pixel_to_meters,
    tile_bounds,
    TILE_SIZE,
)
from .spatial_index import SpatialIndex, DEFAULT_CELL_SIZE, SUPPORT_SIGMAS
from .venue import VenueSample, MAX_BLOOM_MULTIPLIER, compute_venue_hash

BASE_BANDWIDTH = 300.0  # meters at zoom 14
BASE_ZOOM = 14
NORMALIZATION_FLOOR = 0.001
NORMALIZATION_REFRESH_SECONDS = 120.0


def kde_bandwidth(zoom: int) -> float:
    """Base Gaussian sigma in meters; halves with every zoom level in."""
    return BASE_BANDWIDTH * math.pow(2, BASE_ZOOM - zoom)


def compute_intensity(mx, my, venues: Sequence[VenueSample], bandwidth: float):
    """
    Sum kernel contributions of `venues` at one or many points.

    Args:
        mx, my: Meter coordinates; floats or broadcastable arrays
        venues: Venues to sum over (inactive ones contribute nothing)
        bandwidth: Base bandwidth for the zoom level

    Returns:
        float for scalar input, otherwise an array of the broadcast shape
    """
    px = np.asarray(mx, dtype=np.float64)
    py = np.asarray(my, dtype=np.float64)
    total = np.zeros(np.broadcast(px, py).shape, dtype=np.float64)

    for venue in venues:
        weight = venue.weight
        if weight <= 0:
            continue

        vx, vy = lng_lat_to_meters(venue.longitude, venue.latitude)
        sigma = bandwidth * venue.bloom_multiplier
        variance = sigma * sigma
        cutoff_sq = (SUPPORT_SIGMAS * sigma) ** 2

        dist_sq = (px - vx) ** 2 + (py - vy) ** 2
        kernel = weight / (2 * math.pi * variance) * np.exp(-dist_sq / (2 * variance))
        total += np.where(dist_sq > cutoff_sq, 0.0, kernel)

    if total.ndim == 0:
        return float(total)
    return total


def _sample_indices(size: int, step: int) -> np.ndarray:
    """Pixel indices evaluated exactly; always includes the last pixel."""
    indices = np.arange(0, size, step)
    if indices[-1] != size - 1:
        indices = np.append(indices, size - 1)
    return indices


def _bilinear_upsample(samples: np.ndarray, indices: np.ndarray, size: int) -> np.ndarray:
    """
    Fill a size x size grid from values known at (indices x indices).

    Sampled pixels keep their exact values; the rest are bilinearly
    interpolated from the four surrounding samples.
    """
    if len(indices) == 1:
        return np.full((size, size), samples[0, 0])

    targets = np.arange(size)
    hi = np.clip(np.searchsorted(indices, targets, side="left"), 1, len(indices) - 1)
    lo = hi - 1
    t = (targets - indices[lo]) / (indices[hi] - indices[lo])

    # Interpolate along x within each sampled row, then along y
    rows = samples[:, lo] * (1 - t) + samples[:, hi] * t
    return rows[lo, :] * (1 - t)[:, None] + rows[hi, :] * t[:, None]


@dataclass
class NormalizationState:
    """Running estimate of the maximum intensity at one zoom level."""
    global_max_intensity: float = 0.0
    last_update: float = 0.0
    venue_hash: Optional[str] = None


@dataclass(frozen=True)
class GridCell:
    """One coarse grid sample."""
    lat: float
    lng: float
    intensity: float


class KDEEngine:
    """
    Computes intensity fields for tiles and coarse grids.

    Owns the spatial index and the per-zoom normalization state; both are
    rebuilt lazily when the venue set changes.
    """

    def __init__(
        self,
        tile_size: int = TILE_SIZE,
        gamma: float = 0.8,
        sample_step: int = 2,
        refresh_seconds: float = NORMALIZATION_REFRESH_SECONDS,
        normalization_floor: float = NORMALIZATION_FLOOR,
        cell_size: float = DEFAULT_CELL_SIZE,
        max_venues_per_tile: int = 1000,
        sample_points: Sequence[Tuple[float, float]] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            tile_size: Tile edge in pixels
            gamma: Gamma applied after normalization (lower = more contrast)
            sample_step: Evaluate every n-th pixel and interpolate the rest
            refresh_seconds: Max age of the normalization estimate
            normalization_floor: Lower bound of the global max intensity
            cell_size: Spatial index cell edge in meters
            max_venues_per_tile: Cap on kernels evaluated for one tile
            sample_points: Extra (lng, lat) points sampled for normalization
            clock: Monotonic time source
        """
        self.tile_size = tile_size
        self.gamma = gamma
        self.sample_step = max(1, sample_step)
        self.refresh_seconds = refresh_seconds
        self.normalization_floor = normalization_floor
        self.max_venues_per_tile = max_venues_per_tile
        self.sample_points = list(sample_points)
        self.clock = clock

        self.index = SpatialIndex(cell_size)
        self._index_hash: Optional[str] = None
        self._normalization: Dict[int, NormalizationState] = {}

    # --- Spatial index ---

    def ensure_index(
        self, venues: Sequence[VenueSample], venue_hash: Optional[str] = None
    ) -> str:
        """Rebuild the spatial index if the venue set changed."""
        if venue_hash is None:
            venue_hash = compute_venue_hash(venues)
        if venue_hash != self._index_hash:
            self.index.build(venues)
            self._index_hash = venue_hash
        return venue_hash

    def compute_intensity(
        self, mx, my, venues: Sequence[VenueSample], bandwidth: float
    ):
        return compute_intensity(mx, my, venues, bandwidth)

    def compute_intensity_fast(self, mx: float, my: float, bandwidth: float) -> float:
        """Intensity at a point using only venues the index returns nearby."""
        # Query with the widest bloom so adaptive kernels are never missed
        nearby = self.index.query(mx, my, bandwidth * MAX_BLOOM_MULTIPLIER)
        return compute_intensity(mx, my, nearby, bandwidth)

    # --- Normalization ---

    def _is_stale(self, state: Optional[NormalizationState], venue_hash: str) -> bool:
        if state is None or state.global_max_intensity == 0:
            return True
        if state.venue_hash != venue_hash:
            return True
        return self.clock() - state.last_update > self.refresh_seconds

    def refresh_normalization(
        self,
        zoom: int,
        venues: Sequence[VenueSample],
        venue_hash: Optional[str] = None,
    ) -> float:
        """
        Recompute the global max intensity for a zoom level.

        Samples the field at every active venue and at the configured
        strategic points, then floors the result.
        """
        venue_hash = self.ensure_index(venues, venue_hash)
        bandwidth = kde_bandwidth(zoom)
        max_intensity = 0.0

        points = [(v.longitude, v.latitude) for v in venues if v.is_active]
        if points:
            points.extend(self.sample_points)

        for lng, lat in points:
            mx, my = lng_lat_to_meters(lng, lat)
            intensity = self.compute_intensity_fast(mx, my, bandwidth)
            if intensity > max_intensity:
                max_intensity = intensity

        state = NormalizationState(
            global_max_intensity=max(max_intensity, self.normalization_floor),
            last_update=self.clock(),
            venue_hash=venue_hash,
        )
        self._normalization[zoom] = state
        return state.global_max_intensity

    def get_global_max(
        self,
        zoom: int,
        venues: Sequence[VenueSample],
        venue_hash: Optional[str] = None,
    ) -> float:
        """Current global max for a zoom, refreshing it when stale."""
        venue_hash = self.ensure_index(venues, venue_hash)
        state = self._normalization.get(zoom)
        if self._is_stale(state, venue_hash):
            return self.refresh_normalization(zoom, venues, venue_hash)
        return state.global_max_intensity

    # --- Tiles and grids ---

    def _tile_candidates(self, zoom: int, x: int, y: int, bandwidth: float) -> List[VenueSample]:
        bounds = tile_bounds(zoom, x, y)
        candidates = self.index.query_bounds(
            bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y,
            bandwidth * MAX_BLOOM_MULTIPLIER,
        )
        if len(candidates) > self.max_venues_per_tile:
            candidates = sorted(candidates, key=lambda v: v.weight, reverse=True)
            candidates = candidates[:self.max_venues_per_tile]
        return candidates

    def compute_tile_intensities(
        self,
        zoom: int,
        x: int,
        y: int,
        venues: Sequence[VenueSample],
        venue_hash: Optional[str] = None,
    ) -> np.ndarray:
        """
        Normalized, gamma-corrected intensities for every pixel of a tile.

        Returns:
            float32 array of shape (tile_size, tile_size), row 0 = north edge
        """
        size = self.tile_size
        bandwidth = kde_bandwidth(zoom)
        global_max = self.get_global_max(zoom, venues, venue_hash)

        indices = _sample_indices(size, self.sample_step)
        px, py = np.meshgrid(indices.astype(np.float64), indices.astype(np.float64))
        mx, my = pixel_to_meters(zoom, x, y, px, py, tile_size=size)

        candidates = self._tile_candidates(zoom, x, y, bandwidth)
        samples = compute_intensity(mx, my, candidates, bandwidth)
        field = _bilinear_upsample(samples, indices, size)

        normalized = np.minimum(field / global_max, 1.0)
        return np.power(normalized, self.gamma).astype(np.float32)

    def compute_grid(
        self,
        zoom: int,
        x: int,
        y: int,
        venues: Sequence[VenueSample],
        grid_size: int = 16,
    ) -> List[GridCell]:
        """
        Coarse grid of exact cell-centre intensities.

        Unlike tiles, values are only clamped to [0, 1] and are not divided
        by the global max. Cells are ordered row by row from the south edge.
        """
        bounds = tile_bounds(zoom, x, y)
        bandwidth = kde_bandwidth(zoom)
        step_x = bounds.width / grid_size
        step_y = bounds.height / grid_size

        gx, gy = np.meshgrid(np.arange(grid_size), np.arange(grid_size))
        mx = bounds.min_x + (gx + 0.5) * step_x
        my = bounds.min_y + (gy + 0.5) * step_y

        intensities = compute_intensity(mx, my, venues, bandwidth)
        lngs, lats = meters_to_lng_lat(mx, my)

        cells = []
        for row in range(grid_size):
            for col in range(grid_size):
                cells.append(GridCell(
                    lat=float(lats[row, col]),
                    lng=float(lngs[row, col]),
                    intensity=float(min(max(intensities[row, col], 0.0), 1.0)),
                ))
        return cells

    def clear(self) -> None:
        """Forget normalization and the spatial index."""
        self._normalization = {}
        self._index_hash = None
        self.index.build([])

    def get_stats(self) -> dict:
        return {
            "normalization": {
                zoom: {
                    "global_max_intensity": state.global_max_intensity,
                    "age_seconds": round(self.clock() - state.last_update, 3),
                }
                for zoom, state in sorted(self._normalization.items())
            },
            "indexed_venues": self.index.venue_count,
            "index_cells": self.index.cell_count,
            "has_cache": bool(self._normalization),
        }
