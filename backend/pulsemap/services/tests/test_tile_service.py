"""
Unit tests for the tile service and its cache tiers.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from ...heatmap.kde import KDEEngine
from ...heatmap.projection import GeoBounds, lng_lat_to_tile, tile_range
from ...heatmap.raster import PNG_SIGNATURE
from ...heatmap.venue import VenueSample, compute_venue_hash
from ..cache_service import HeatmapCacheService
from ..tile_service import HeatmapTileService, ZoomOutOfRangeError
from ..tile_store import InMemoryTileStore, TileStore


class CountingTileService(HeatmapTileService):
    """Tile service that counts fresh renders."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.renders = 0

    def render_tile(self, zoom, x, y, venues, venue_hash=None):
        self.renders += 1
        return super().render_tile(zoom, x, y, venues, venue_hash)


class BrokenTileStore(TileStore):
    """Store whose backend is unreachable."""

    async def get(self, zoom, x, y):
        raise ConnectionError("database is down")

    async def upsert(self, zoom, x, y, png, venue_hash, expires_at):
        raise ConnectionError("database is down")

    async def record_hit(self, zoom, x, y):
        raise ConnectionError("database is down")

    async def delete_expired(self):
        raise ConnectionError("database is down")

    async def clear(self):
        raise ConnectionError("database is down")


@pytest.fixture
def venues():
    return [
        VenueSample("valley-1", 153.0350, -27.4570, 800, 650),
        VenueSample("valley-2", 153.0362, -27.4581, 120, 45),
        VenueSample("cbd-1", 153.0260, -27.4705, 300, 290),
    ]


@pytest.fixture
def tile_coords():
    x, y = lng_lat_to_tile(153.0350, -27.4570, 14)
    return 14, x, y


def make_service(tile_store=None, **kwargs):
    return CountingTileService(
        kde=KDEEngine(),
        cache=HeatmapCacheService(),
        tile_store=tile_store,
        **kwargs,
    )


class TestGetTile:
    """Tests for tile lookups."""

    def test_returns_png(self, venues, tile_coords):
        service = make_service()
        png = asyncio.run(service.get_tile(*tile_coords, venues))
        assert len(png) > 0
        assert png.startswith(PNG_SIGNATURE)

    @pytest.mark.parametrize("zoom", [0, 10, 21, 25])
    def test_zoom_out_of_range(self, venues, zoom):
        service = make_service()
        with pytest.raises(ZoomOutOfRangeError) as excinfo:
            asyncio.run(service.get_tile(zoom, 0, 0, venues))
        assert isinstance(excinfo.value, ValueError)
        assert "out of range (11-20)" in str(excinfo.value)
        assert service.renders == 0

    @pytest.mark.parametrize("zoom", [11, 15, 20])
    def test_every_served_zoom_renders(self, venues, zoom):
        service = make_service()
        x, y = lng_lat_to_tile(153.0350, -27.4570, zoom)
        assert asyncio.run(service.get_tile(zoom, x, y, venues)).startswith(PNG_SIGNATURE)

    def test_second_call_is_cached_and_identical(self, venues, tile_coords):
        service = make_service()

        async def run():
            first = await service.get_tile(*tile_coords, venues)
            second = await service.get_tile(*tile_coords, venues)
            return first, second

        first, second = asyncio.run(run())
        assert first == second
        assert service.renders == 1
        assert service.cache.stats["hits"] == 1

    def test_recomputation_is_deterministic(self, venues, tile_coords):
        first = asyncio.run(make_service().get_tile(*tile_coords, venues))
        second = asyncio.run(make_service().get_tile(*tile_coords, venues))
        assert first == second

    def test_occupancy_change_invalidates_memory_tier(self, venues, tile_coords):
        service = make_service()
        changed = [VenueSample("valley-1", 153.0350, -27.4570, 800, 700)] + venues[1:]

        async def run():
            await service.get_tile(*tile_coords, venues)
            await service.get_tile(*tile_coords, changed)

        asyncio.run(run())
        assert service.renders == 2
        assert service.cache.stats["hits"] == 0
        assert service.cache.stats["misses"] == 2

    def test_render_writes_through_to_store(self, venues, tile_coords):
        store = InMemoryTileStore()
        service = make_service(store)
        png = asyncio.run(service.get_tile(*tile_coords, venues))

        stored = store.tiles[tile_coords]
        assert stored.png == png
        assert stored.venue_hash == compute_venue_hash(venues)
        assert stored.expires_at > datetime.utcnow() + timedelta(minutes=59)

    def test_store_hit_is_promoted(self, venues, tile_coords):
        """A fresh process serves from the store without rendering."""
        store = InMemoryTileStore()
        png = asyncio.run(make_service(store).get_tile(*tile_coords, venues))

        restarted = make_service(store)

        async def run():
            first = await restarted.get_tile(*tile_coords, venues)
            second = await restarted.get_tile(*tile_coords, venues)
            return first, second

        first, second = asyncio.run(run())
        assert first == png
        assert second == png
        assert restarted.renders == 0
        assert store.tiles[tile_coords].hit_count == 1
        assert restarted.cache.get_tile(restarted.tile_key(*tile_coords)) is not None

    def test_stale_store_entry_is_rerendered(self, venues, tile_coords):
        store = InMemoryTileStore()
        asyncio.run(store.upsert(
            *tile_coords, b"old", "0000000000000000",
            expires_at=datetime.utcnow() + timedelta(hours=1),
        ))
        service = make_service(store)

        png = asyncio.run(service.get_tile(*tile_coords, venues))
        assert png != b"old"
        assert service.renders == 1
        assert store.tiles[tile_coords].venue_hash == compute_venue_hash(venues)
        assert store.tiles[tile_coords].hit_count == 0

    def test_expired_store_entry_is_rerendered(self, venues, tile_coords):
        store = InMemoryTileStore()
        asyncio.run(store.upsert(
            *tile_coords, b"old", compute_venue_hash(venues),
            expires_at=datetime.utcnow() - timedelta(seconds=1),
        ))
        service = make_service(store)

        assert asyncio.run(service.get_tile(*tile_coords, venues)) != b"old"
        assert service.renders == 1

    def test_store_failure_degrades_to_render(self, venues, tile_coords):
        service = make_service(BrokenTileStore())
        png = asyncio.run(service.get_tile(*tile_coords, venues))
        assert png.startswith(PNG_SIGNATURE)
        assert service.store_errors == 2

    def test_hit_count_failure_still_serves_stored_tile(self, venues, tile_coords):
        class UncountableTileStore(InMemoryTileStore):
            async def record_hit(self, zoom, x, y):
                raise ConnectionError("database is down")

        store = UncountableTileStore()
        asyncio.run(store.upsert(
            *tile_coords, b"STORED", compute_venue_hash(venues),
            expires_at=datetime.utcnow() + timedelta(hours=1),
        ))
        service = make_service(store)

        assert asyncio.run(service.get_tile(*tile_coords, venues)) == b"STORED"
        assert service.renders == 0
        assert service.store_errors == 1


class TestGetGrid:
    """Tests for grid lookups."""

    def test_grid_shape(self, venues, tile_coords):
        service = make_service()
        grid = asyncio.run(service.get_grid(*tile_coords, venues))
        assert (grid.zoom, grid.x, grid.y) == tile_coords
        assert len(grid.cells) == 16 * 16
        assert all(0.0 <= c.intensity <= 1.0 for c in grid.cells)

    def test_grid_is_cached(self, venues, tile_coords):
        service = make_service()

        async def run():
            return (
                await service.get_grid(*tile_coords, venues),
                await service.get_grid(*tile_coords, venues),
            )

        first, second = asyncio.run(run())
        assert first is second

    def test_grid_zoom_out_of_range(self, venues):
        with pytest.raises(ZoomOutOfRangeError):
            asyncio.run(make_service().get_grid(22, 0, 0, venues))


class TestBatches:
    """Tests for region generation and precomputation."""

    def test_region_tolerates_tile_failures(self, venues):
        bounds = GeoBounds(north=-27.35, south=-27.55, east=153.15, west=152.95)
        covering = tile_range(bounds, 13)
        bad = next(iter(covering.tiles()))

        class FlakyTileService(CountingTileService):
            def render_tile(self, zoom, x, y, venues, venue_hash=None):
                if (x, y) == bad:
                    raise RuntimeError("render failed")
                return super().render_tile(zoom, x, y, venues, venue_hash)

        service = FlakyTileService(kde=KDEEngine(), cache=HeatmapCacheService())
        tiles = asyncio.run(service.generate_tiles_for_region(venues, bounds, 13))

        assert len(tiles) == covering.count - 1
        assert bad not in {(t.x, t.y) for t in tiles}

    def test_precompute_counts_all_zooms(self, venues):
        bounds = GeoBounds(north=-27.35, south=-27.55, east=153.15, west=152.95)
        service = make_service()
        count = asyncio.run(service.precompute_tiles(venues, bounds, [11, 12]))

        expected = tile_range(bounds, 11).count + tile_range(bounds, 12).count
        assert count == expected
        assert len(service.cache.tile_cache) == expected

    def test_precompute_only_counts_tiles(self, venues):
        bounds = GeoBounds(north=-27.35, south=-27.55, east=153.15, west=152.95)
        covering = tile_range(bounds, 12)
        bad = next(iter(covering.tiles()))

        class SweepOnlyTileService(CountingTileService):
            async def generate_tiles_for_region(self, venues, bounds, zoom):
                raise AssertionError("sweep must not collect rendered tiles")

            def render_tile(self, zoom, x, y, venues, venue_hash=None):
                if (x, y) == bad:
                    raise RuntimeError("render failed")
                return super().render_tile(zoom, x, y, venues, venue_hash)

        service = SweepOnlyTileService(kde=KDEEngine(), cache=HeatmapCacheService())
        count = asyncio.run(service.precompute_tiles(venues, bounds, [12]))

        assert count == covering.count - 1
        assert service.renders == covering.count - 1

    def test_clear_cache(self, venues, tile_coords):
        service = make_service()
        asyncio.run(service.get_tile(*tile_coords, venues))
        service.clear_cache()

        stats = service.get_stats()
        assert stats["cache"]["tile_cache_size"] == 0
        assert stats["cache"]["clears"] == 1
        assert not stats["kde"]["has_cache"]
        assert stats["config"]["min_zoom"] == 11
