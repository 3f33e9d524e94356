"""
Unit tests for service wiring.
"""

import asyncio

import pytest
from ...config import Settings
from ..container import build_heatmap_services, default_bounds
from ..tile_store import InMemoryTileStore
from ..venue_store import StaticVenueStore


class TestBuildHeatmapServices:
    """Tests for build_heatmap_services."""

    def test_wires_settings_through(self):
        settings = Settings(
            heatmap_gamma=0.5,
            heatmap_cache_ttl=30,
            heatmap_max_tile_items=50,
            heatmap_precompute_zoom_levels=[12, 13],
        )
        services = build_heatmap_services(settings, venue_store=StaticVenueStore())

        assert services.kde.gamma == 0.5
        assert services.cache.default_ttl == 30
        assert services.cache.max_tile_items == 50
        assert services.tile_service.cache is services.cache
        assert services.tile_service.kde is services.kde
        assert services.precompute.tile_service is services.tile_service
        assert services.precompute.default_zoom_levels == [12, 13]
        assert services.tile_store is None

    def test_default_zoom_levels_cover_served_range(self):
        services = build_heatmap_services(Settings(), venue_store=StaticVenueStore())
        assert services.precompute.default_zoom_levels == list(range(11, 21))

    def test_default_bounds(self):
        bounds = default_bounds(Settings())
        assert (bounds.north, bounds.south, bounds.east, bounds.west) == (
            -27.35, -27.55, 153.15, 152.95
        )

    def test_requires_a_venue_source(self):
        with pytest.raises(ValueError):
            build_heatmap_services(Settings())

    def test_start_and_stop_background_jobs(self):
        settings = Settings(heatmap_precompute_enabled=False)
        services = build_heatmap_services(
            settings,
            venue_store=StaticVenueStore(),
            tile_store=InMemoryTileStore(),
        )

        async def run():
            services.start()
            running = [task.is_running for task in services.maintenance_tasks]
            scheduler_running = services.precompute.get_status()["refresh_interval_active"]
            await services.stop()
            return running, scheduler_running

        running, scheduler_running = asyncio.run(run())
        assert running == [True, True]
        assert scheduler_running is False
        assert not any(task.is_running for task in services.maintenance_tasks)

    def test_stop_waits_for_in_flight_sweep(self):
        settings = Settings(heatmap_precompute_zoom_levels=[11])
        services = build_heatmap_services(settings, venue_store=StaticVenueStore())

        async def run():
            services.start()
            await asyncio.sleep(0)
            await services.stop()

        asyncio.run(run())
        assert services.precompute.last_result is not None
        assert services.precompute.last_result.zoom_levels == [11]
        assert not services.precompute.is_precomputing
