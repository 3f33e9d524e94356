"""
API tests for the heat map and health routers.
"""

import pytest
from fastapi.testclient import TestClient

from ...config import Settings
from ...database import get_db
from ...heatmap.projection import lng_lat_to_tile
from ...heatmap.raster import PNG_SIGNATURE
from ...heatmap.venue import VenueSample
from ...main import create_app
from ...services.container import build_heatmap_services
from ...services.tile_store import InMemoryTileStore
from ...services.venue_store import StaticVenueStore


class FakeSession:
    """Session stand-in that accepts any statement."""

    async def execute(self, statement):
        return None


async def override_get_db():
    yield FakeSession()


@pytest.fixture
def services():
    venue_store = StaticVenueStore([
        VenueSample("valley-1", 153.0350, -27.4570, 800, 650, rating=4.2, name="Cloudland"),
        VenueSample("valley-2", 153.0362, -27.4581, 120, 45, name="Ric's"),
        VenueSample("closed", 153.0300, -27.4600, 300, 0, name="Closed Bar"),
    ])
    return build_heatmap_services(
        Settings(heatmap_precompute_enabled=False),
        venue_store=venue_store,
        tile_store=InMemoryTileStore(),
    )


@pytest.fixture
def client(services):
    app = create_app(services.settings, services=services)
    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def tile_path():
    x, y = lng_lat_to_tile(153.0350, -27.4570, 14)
    return f"14/{x}/{y}"


class TestTiles:
    """Tests for GET /heatmap/tiles."""

    def test_tile_png(self, client, tile_path):
        response = client.get(f"/heatmap/tiles/{tile_path}.png")

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(PNG_SIGNATURE)
        assert response.headers["x-tile-coords"] == tile_path
        assert response.headers["x-venue-count"] == "2"
        assert "max-age=300" in response.headers["cache-control"]

    def test_repeat_request_is_identical(self, client, services, tile_path):
        first = client.get(f"/heatmap/tiles/{tile_path}.png")
        second = client.get(f"/heatmap/tiles/{tile_path}.png")
        assert first.content == second.content
        assert services.cache.stats["hits"] == 1

    @pytest.mark.parametrize("zoom", [5, 10, 21])
    def test_zoom_out_of_range(self, client, zoom):
        response = client.get(f"/heatmap/tiles/{zoom}/0/0.png")
        assert response.status_code == 400
        assert "out of range" in response.json()["detail"]

    def test_non_integer_coordinates(self, client):
        response = client.get("/heatmap/tiles/14/abc/1.png")
        assert response.status_code == 422


class TestGrid:
    """Tests for GET /heatmap/grid."""

    def test_grid_json(self, client, tile_path):
        response = client.get(f"/heatmap/grid/{tile_path}.json")

        assert response.status_code == 200
        body = response.json()
        assert len(body["cells"]) == 256
        assert set(body["cells"][0]) == {"lat", "lng", "intensity"}
        assert "timestamp" in body
        assert response.headers["x-venue-count"] == "2"

    def test_grid_zoom_out_of_range(self, client):
        assert client.get("/heatmap/grid/3/0/0.json").status_code == 400


class TestVenuesAndStats:
    """Tests for the venue list, stats and cache endpoints."""

    def test_venues(self, client):
        body = client.get("/heatmap/venues").json()

        assert body["count"] == 2
        by_id = {v["id"]: v for v in body["venues"]}
        assert by_id["valley-1"]["status"] == "VERY_BUSY"
        assert by_id["valley-1"]["occupancy"] == 650
        assert by_id["valley-2"]["status"] == "MODERATE"
        assert "closed" not in by_id

    def test_stats(self, client, tile_path):
        client.get(f"/heatmap/tiles/{tile_path}.png")
        body = client.get("/heatmap/stats").json()

        assert body["cache"]["tile_cache_size"] == 1
        assert body["kde"]["has_cache"] is True
        assert body["config"]["min_zoom"] == 11
        assert body["precompute"]["is_precomputing"] is False

    def test_clear_cache(self, client, services, tile_path):
        client.get(f"/heatmap/tiles/{tile_path}.png")
        response = client.post("/heatmap/cache/clear")

        assert response.status_code == 200
        assert response.json()["status"] == "cleared"
        assert len(services.cache.tile_cache) == 0
        assert services.cache.stats["clears"] == 1


class TestPrecompute:
    """Tests for POST /heatmap/precompute."""

    def test_started(self, client, services, monkeypatch):
        calls = []
        monkeypatch.setattr(
            services.precompute, "trigger",
            lambda bounds, zoom_levels: calls.append((bounds, zoom_levels)) or True,
        )

        response = client.post("/heatmap/precompute", json={
            "bounds": {"north": -27.45, "south": -27.46, "east": 153.04, "west": 153.03},
            "zoom_levels": [13, 14],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "started"
        assert body["zoom_levels"] == [13, 14]
        assert body["bounds"]["north"] == -27.45
        assert calls[0][0].west == 153.03

    def test_defaults(self, client, services, monkeypatch):
        monkeypatch.setattr(services.precompute, "trigger", lambda bounds, zoom_levels: True)
        body = client.post("/heatmap/precompute", json={}).json()

        assert body["zoom_levels"] == list(range(11, 21))
        assert body["bounds"] == {
            "north": -27.35, "south": -27.55, "east": 153.15, "west": 152.95
        }

    def test_already_running(self, client, services):
        services.precompute.is_precomputing = True
        body = client.post("/heatmap/precompute", json={"zoom_levels": [11]}).json()
        assert body["status"] == "already_running"

    def test_invalid_zoom(self, client):
        response = client.post("/heatmap/precompute", json={"zoom_levels": [4]})
        assert response.status_code == 400

    def test_invalid_bounds(self, client):
        response = client.post("/heatmap/precompute", json={
            "bounds": {"north": -27.6, "south": -27.5, "east": 153.1, "west": 153.0},
        })
        assert response.status_code == 422


class TestHealth:
    """Tests for the health endpoints."""

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["database"] == "healthy"
        assert body["precompute"]["refresh_interval_active"] is False

    def test_simple_health(self, client):
        assert client.get("/health/simple").json() == {"status": "ok"}

    def test_root(self, client):
        body = client.get("/").json()
        assert body["name"] == "PulseMap"
        assert body["tiles_url"] == "/heatmap/tiles/{z}/{x}/{y}.png"


class TestEntryPoint:
    """Tests for the uvicorn entry point."""

    def test_run_serves_app(self, monkeypatch):
        from ... import main

        calls = []
        monkeypatch.setattr(main.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))
        main.run()

        target, kwargs = calls[0]
        assert target == "pulsemap.main:app"
        assert kwargs["host"] == main.settings.host
        assert kwargs["port"] == main.settings.port
