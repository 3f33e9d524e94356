"""
Uniform grid spatial index over active venues.

Venues are bucketed by Web-Mercator meter cell so that "which venues can
contribute at point P" only touches the handful of cells around P instead
of every venue in the city.
"""

import math
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from .projection import lng_lat_to_meters
from .venue import VenueSample

DEFAULT_CELL_SIZE = 1000.0  # meters

# Gaussian support used for lookups (3-sigma rule)
SUPPORT_SIGMAS = 3.0


class SpatialIndex:
    """
    Grid bucketing of venues by meter-space cell.

    The index has no incremental insert/remove; call build() again whenever
    the venue set changes.
    """

    def __init__(self, cell_size: float = DEFAULT_CELL_SIZE):
        self.cell_size = cell_size
        self._cells: Dict[Tuple[int, int], List[VenueSample]] = {}
        self._venue_count = 0

    @property
    def venue_count(self) -> int:
        return self._venue_count

    @property
    def cell_count(self) -> int:
        return len(self._cells)

    def _cell_of(self, mx: float, my: float) -> Tuple[int, int]:
        return (
            math.floor(mx / self.cell_size),
            math.floor(my / self.cell_size),
        )

    def build(self, venues: Iterable[VenueSample]) -> None:
        """
        Rebuild the grid from scratch.

        Venues with no occupancy carry zero weight and are skipped.
        """
        cells: Dict[Tuple[int, int], List[VenueSample]] = defaultdict(list)
        count = 0

        for venue in venues:
            if venue.occupancy <= 0:
                continue
            mx, my = lng_lat_to_meters(venue.longitude, venue.latitude)
            cells[self._cell_of(mx, my)].append(venue)
            count += 1

        self._cells = dict(cells)
        self._venue_count = count

    def _collect(
        self, min_cx: int, max_cx: int, min_cy: int, max_cy: int
    ) -> List[VenueSample]:
        found: List[VenueSample] = []
        for cx in range(min_cx, max_cx + 1):
            for cy in range(min_cy, max_cy + 1):
                bucket = self._cells.get((cx, cy))
                if bucket:
                    found.extend(bucket)
        return found

    def query(self, mx: float, my: float, bandwidth: float) -> List[VenueSample]:
        """
        Venues that may lie within 3 * bandwidth of (mx, my).

        Returns a conservative superset: every venue in any cell within
        ceil(radius / cell_size) cells of the query cell. Callers filter by
        exact distance.
        """
        cell_radius = math.ceil((bandwidth * SUPPORT_SIGMAS) / self.cell_size)
        cx, cy = self._cell_of(mx, my)
        return self._collect(
            cx - cell_radius, cx + cell_radius,
            cy - cell_radius, cy + cell_radius,
        )

    def query_bounds(
        self,
        min_x: float,
        min_y: float,
        max_x: float,
        max_y: float,
        bandwidth: float,
    ) -> List[VenueSample]:
        """Same superset guarantee as query(), for every point of a rectangle."""
        radius = bandwidth * SUPPORT_SIGMAS
        min_cx, min_cy = self._cell_of(min_x - radius, min_y - radius)
        max_cx, max_cy = self._cell_of(max_x + radius, max_y + radius)

        # Sparse grids: walk the occupied cells instead of a huge rectangle
        span = (max_cx - min_cx + 1) * (max_cy - min_cy + 1)
        if span > len(self._cells):
            found: List[VenueSample] = []
            for (cx, cy), bucket in self._cells.items():
                if min_cx <= cx <= max_cx and min_cy <= cy <= max_cy:
                    found.extend(bucket)
            return found

        return self._collect(min_cx, max_cx, min_cy, max_cy)
