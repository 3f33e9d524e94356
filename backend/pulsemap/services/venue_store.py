"""
Read access to live venue occupancy.

The heat map never writes occupancy; it only needs the set of venues that
currently have people in them.
"""

import time
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..heatmap.venue import VenueSample, active_venues


class VenueStore(ABC):
    """Source of the current active venue set."""

    @abstractmethod
    async def list_active_venues(self) -> List[VenueSample]:
        """Venues with capacity > 0 and occupancy > 0."""


class SqlVenueStore(VenueStore):
    """
    Venue store backed by the venues table.

    Results are memoized for `cache_seconds` so bursts of tile requests
    share one query.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.cache_seconds = cache_seconds
        self.clock = clock
        self._cached: Optional[List[VenueSample]] = None
        self._cached_at: float = 0.0

    async def _fetch(self) -> List[VenueSample]:
        async with self.session_factory() as session:
            result = await session.execute(text("""
                SELECT id, name, longitude, latitude, capacity,
                       current_occupancy, rating
                FROM venues
                WHERE capacity > 0
                  AND current_occupancy > 0
            """))
            rows = result.fetchall()

        return [
            VenueSample(
                id=str(row[0]),
                name=row[1],
                longitude=float(row[2]),
                latitude=float(row[3]),
                capacity=int(row[4]),
                occupancy=int(row[5]),
                rating=float(row[6]) if row[6] is not None else None,
            )
            for row in rows
        ]

    async def list_active_venues(self) -> List[VenueSample]:
        now = self.clock()
        if self._cached is not None and now - self._cached_at < self.cache_seconds:
            return self._cached

        venues = await self._fetch()
        self._cached = venues
        self._cached_at = now
        return venues

    def invalidate(self) -> None:
        self._cached = None


class StaticVenueStore(VenueStore):
    """Fixed venue list; used for demos and tests."""

    def __init__(self, venues: Iterable[VenueSample] = ()):
        self.venues = list(venues)
        self.calls = 0

    async def list_active_venues(self) -> List[VenueSample]:
        self.calls += 1
        return active_venues(self.venues)
