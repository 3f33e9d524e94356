"""
In-process memory tier of the heat map cache.

Two TTL caches share one set of counters: rendered tiles and computed
grid payloads. Expired entries are purged lazily on every read and by a
periodic maintenance pass, which also bounds the item count.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fraction of the ceiling evicted when a cache grows past it
EVICTION_FRACTION = 0.2


@dataclass
class CacheItem(Generic[T]):
    data: T
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


@dataclass(frozen=True)
class CachedTile:
    """Rendered tile plus the venue hash it was rendered from."""
    png: bytes
    venue_hash: str


class TTLCache(Generic[T]):
    """Dictionary of CacheItems with TTL expiry and size bounding."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._items: Dict[str, CacheItem[T]] = {}
        self.clock = clock

    def __len__(self) -> int:
        return len(self._items)

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [key for key, item in self._items.items() if item.is_expired(now)]
        for key in expired:
            del self._items[key]
        return len(expired)

    def lookup(self, key: str) -> Optional[T]:
        item = self._items.get(key)
        if item is None or item.is_expired(self.clock()):
            return None
        return item.data

    def store(self, key: str, data: T, ttl: float) -> None:
        self._items[key] = CacheItem(data=data, timestamp=self.clock(), ttl=ttl)

    def clear(self) -> None:
        self._items.clear()

    def evict_oldest(self, max_items: int) -> int:
        """
        If above max_items, drop the oldest 20% of max_items by insertion time.

        Expiry is ignored; this is purely a size bound.
        """
        if len(self._items) <= max_items:
            return 0
        by_age = sorted(self._items.items(), key=lambda kv: kv[1].timestamp)
        to_delete = by_age[:int(max_items * EVICTION_FRACTION)]
        for key, _ in to_delete:
            del self._items[key]
        return len(to_delete)

    def values(self):
        return [item.data for item in self._items.values()]


class HeatmapCacheService:
    """
    Memory cache for heat map tiles and grid data.

    Keys are plain strings built by the tile service, e.g.
    "heatmap_tile_14_15123_9421".
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        max_tile_items: int = 1000,
        max_data_items: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            default_ttl: TTL in seconds when set_* is called without one
            max_tile_items: Tile count that triggers eviction in maintenance
            max_data_items: Grid count that triggers eviction in maintenance
            clock: Monotonic time source shared by both caches
        """
        self.default_ttl = default_ttl
        self.max_tile_items = max_tile_items
        self.max_data_items = max_data_items
        self.tile_cache: TTLCache[CachedTile] = TTLCache(clock)
        self.data_cache: TTLCache[Any] = TTLCache(clock)
        self.stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "clears": 0,
        }

    def _cleanup_expired(self) -> None:
        self.tile_cache.purge_expired()
        self.data_cache.purge_expired()

    def _get(self, cache: TTLCache, key: str, venue_hash: Optional[str] = None):
        self._cleanup_expired()
        value = cache.lookup(key)
        # An entry rendered from older occupancy counts as a miss
        if value is None or (
            venue_hash is not None and value.venue_hash != venue_hash
        ):
            self.stats["misses"] += 1
            return None
        self.stats["hits"] += 1
        return value

    def get_tile(self, key: str, venue_hash: Optional[str] = None) -> Optional[CachedTile]:
        return self._get(self.tile_cache, key, venue_hash)

    def set_tile(self, key: str, tile: CachedTile, ttl: Optional[float] = None) -> None:
        self.tile_cache.store(key, tile, self.default_ttl if ttl is None else ttl)
        self.stats["sets"] += 1

    def get_data(self, key: str, venue_hash: Optional[str] = None) -> Optional[Any]:
        return self._get(self.data_cache, key, venue_hash)

    def set_data(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        self.data_cache.store(key, data, self.default_ttl if ttl is None else ttl)
        self.stats["sets"] += 1

    def clear(self) -> None:
        self.tile_cache.clear()
        self.data_cache.clear()
        self.stats["clears"] += 1

    def clear_tiles(self) -> None:
        self.tile_cache.clear()

    def clear_data(self) -> None:
        self.data_cache.clear()

    def perform_maintenance(self) -> None:
        """Purge expired entries, then bound both caches by item count."""
        self._cleanup_expired()
        evicted_tiles = self.tile_cache.evict_oldest(self.max_tile_items)
        evicted_data = self.data_cache.evict_oldest(self.max_data_items)
        if evicted_tiles or evicted_data:
            logger.info(
                f"Cache maintenance evicted {evicted_tiles} tiles and "
                f"{evicted_data} grid entries"
            )

    def _memory_estimate(self) -> str:
        total_bytes = sum(len(tile.png) for tile in self.tile_cache.values())
        total_bytes += len(self.data_cache) * 1000  # ~1KB per grid payload
        return f"{total_bytes / (1024 * 1024):.2f} MB"

    def get_stats(self) -> dict:
        lookups = self.stats["hits"] + self.stats["misses"]
        hit_rate = self.stats["hits"] / lookups * 100 if lookups else 0.0
        return {
            **self.stats,
            "hit_rate": f"{hit_rate:.2f}%",
            "tile_cache_size": len(self.tile_cache),
            "data_cache_size": len(self.data_cache),
            "memory_estimate": self._memory_estimate(),
        }
