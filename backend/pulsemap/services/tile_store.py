"""
Persistent tier of the tile cache.

Rendered tiles are stored per (zoom, x, y) together with the venue hash
they were rendered from, so they survive restarts and can be served
without recomputation as long as occupancy has not changed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@dataclass
class StoredTile:
    """A persisted tile and its bookkeeping."""
    zoom: int
    x: int
    y: int
    png: bytes
    venue_hash: str
    expires_at: datetime
    hit_count: int = 0
    last_hit_at: Optional[datetime] = None

    def is_valid(self, venue_hash: str, now: datetime) -> bool:
        """Fresh only if unexpired and rendered from the current occupancy."""
        return self.expires_at > now and self.venue_hash == venue_hash


class TileStore(ABC):
    """Tile blob store contract."""

    @abstractmethod
    async def get(self, zoom: int, x: int, y: int) -> Optional[StoredTile]:
        ...

    @abstractmethod
    async def upsert(
        self,
        zoom: int,
        x: int,
        y: int,
        png: bytes,
        venue_hash: str,
        expires_at: datetime,
    ) -> None:
        ...

    @abstractmethod
    async def record_hit(self, zoom: int, x: int, y: int) -> None:
        ...

    @abstractmethod
    async def delete_expired(self) -> int:
        ...

    @abstractmethod
    async def clear(self) -> int:
        ...


class SqlTileStore(TileStore):
    """
    Tile store backed by the heatmap_tiles table.

    Each call opens its own short-lived session so the store can be used
    from background jobs as well as requests.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, zoom: int, x: int, y: int) -> Optional[StoredTile]:
        async with self.session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT png, venue_hash, expires_at, hit_count, last_hit_at
                    FROM heatmap_tiles
                    WHERE zoom = :zoom AND x = :x AND y = :y
                """),
                {"zoom": zoom, "x": x, "y": y},
            )
            row = result.fetchone()

        if row is None:
            return None

        return StoredTile(
            zoom=zoom,
            x=x,
            y=y,
            png=bytes(row[0]),
            venue_hash=row[1],
            expires_at=row[2],
            hit_count=int(row[3] or 0),
            last_hit_at=row[4],
        )

    async def upsert(
        self,
        zoom: int,
        x: int,
        y: int,
        png: bytes,
        venue_hash: str,
        expires_at: datetime,
    ) -> None:
        async with self.session_factory() as session:
            await session.execute(
                text("""
                    INSERT INTO heatmap_tiles
                        (zoom, x, y, png, venue_hash, expires_at, hit_count,
                         created_at, updated_at)
                    VALUES
                        (:zoom, :x, :y, :png, :venue_hash, :expires_at, 0,
                         NOW(), NOW())
                    ON CONFLICT (zoom, x, y) DO UPDATE SET
                        png = EXCLUDED.png,
                        venue_hash = EXCLUDED.venue_hash,
                        expires_at = EXCLUDED.expires_at,
                        updated_at = NOW()
                """),
                {
                    "zoom": zoom,
                    "x": x,
                    "y": y,
                    "png": png,
                    "venue_hash": venue_hash,
                    "expires_at": expires_at,
                },
            )
            await session.commit()

    async def record_hit(self, zoom: int, x: int, y: int) -> None:
        async with self.session_factory() as session:
            await session.execute(
                text("""
                    UPDATE heatmap_tiles
                    SET hit_count = hit_count + 1, last_hit_at = NOW()
                    WHERE zoom = :zoom AND x = :x AND y = :y
                """),
                {"zoom": zoom, "x": x, "y": y},
            )
            await session.commit()

    async def delete_expired(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                text("DELETE FROM heatmap_tiles WHERE expires_at <= :now"),
                {"now": datetime.utcnow()},
            )
            await session.commit()
            return result.rowcount or 0

    async def clear(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(text("DELETE FROM heatmap_tiles"))
            await session.commit()
            return result.rowcount or 0


class InMemoryTileStore(TileStore):
    """Process-local tile store for development and tests."""

    def __init__(self):
        self.tiles: Dict[Tuple[int, int, int], StoredTile] = {}

    async def get(self, zoom: int, x: int, y: int) -> Optional[StoredTile]:
        return self.tiles.get((zoom, x, y))

    async def upsert(
        self,
        zoom: int,
        x: int,
        y: int,
        png: bytes,
        venue_hash: str,
        expires_at: datetime,
    ) -> None:
        existing = self.tiles.get((zoom, x, y))
        self.tiles[(zoom, x, y)] = StoredTile(
            zoom=zoom,
            x=x,
            y=y,
            png=png,
            venue_hash=venue_hash,
            expires_at=expires_at,
            hit_count=existing.hit_count if existing else 0,
            last_hit_at=existing.last_hit_at if existing else None,
        )

    async def record_hit(self, zoom: int, x: int, y: int) -> None:
        tile = self.tiles.get((zoom, x, y))
        if tile is not None:
            tile.hit_count += 1
            tile.last_hit_at = datetime.utcnow()

    async def delete_expired(self) -> int:
        now = datetime.utcnow()
        expired = [key for key, tile in self.tiles.items() if tile.expires_at <= now]
        for key in expired:
            del self.tiles[key]
        return len(expired)

    async def clear(self) -> int:
        count = len(self.tiles)
        self.tiles.clear()
        return count
