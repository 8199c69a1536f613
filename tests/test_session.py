"""Tests for application state wiring."""

from pathlib import Path

import httpx
import pytest

from chronoatlas.cache import SnapshotCache
from chronoatlas.config import GeometryConfig, MapConfig, TimelineConfig
from chronoatlas.generator import FetchError
from chronoatlas.geometry import MapGeometryStore
from chronoatlas.models import Selection, Snapshot
from chronoatlas.render import MapRenderer
from chronoatlas.session import UNAVAILABLE_BANNER, AtlasSession


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


GEOJSON = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "id": "DEU",
            "properties": {"name": "Germany"},
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[6, 47], [16, 47], [16, 55], [6, 55], [6, 47]]],
            },
        },
        {
            "type": "Feature",
            "id": "FRA",
            "properties": {"name": "France"},
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[-5, 43], [5, 43], [5, 50], [-5, 50], [-5, 43]]],
            },
        },
    ],
}


class ScriptedSource:
    def __init__(self, snapshots: dict[int, Snapshot]) -> None:
        self.snapshots = snapshots
        self.calls: list[int] = []

    async def fetch(self, year: int) -> Snapshot:
        self.calls.append(year)
        if year not in self.snapshots:
            raise FetchError("no data")
        return self.snapshots[year]


def _session(
    tmp_path: Path,
    map_config: MapConfig,
    source: ScriptedSource,
    *,
    geometry_responses: list[httpx.Response] | None = None,
) -> AtlasSession:
    responses = geometry_responses or [httpx.Response(200, json=GEOJSON)]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    geometry = MapGeometryStore(
        GeometryConfig(
            source_url="https://geometry.example/world.geojson",
            local_path=tmp_path / "missing.geojson",
            request_timeout_s=5.0,
            user_agent="tests",
        ),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return AtlasSession(
        timeline=TimelineConfig(min_year=-2000, max_year=2000, initial_year=800),
        cache=SnapshotCache(source),
        geometry=geometry,
        renderer=MapRenderer(map_config),
    )


# ===================================================================
# Startup and publishing
# ===================================================================


class TestStartup:
    @pytest.mark.anyio
    async def test_start_loads_geometry_then_initial_year(
        self, tmp_path: Path, map_config: MapConfig, frankish_snapshot: Snapshot
    ) -> None:
        source = ScriptedSource({800: frankish_snapshot})
        session = _session(tmp_path, map_config, source)
        snapshot = await session.start()

        assert snapshot is frankish_snapshot
        assert session.current_year == 800
        assert session.snapshot is frankish_snapshot
        assert session.region_index["DEU"].name == "法兰克王国"
        assert session.renderer.fills["DEU"] == "#1d4ed8"
        assert session.error_banner is None
        assert not session.loading

    @pytest.mark.anyio
    async def test_geometry_failure_keeps_map_blank_until_retry(
        self, tmp_path: Path, map_config: MapConfig, frankish_snapshot: Snapshot
    ) -> None:
        source = ScriptedSource({800: frankish_snapshot})
        session = _session(
            tmp_path,
            map_config,
            source,
            geometry_responses=[httpx.Response(500), httpx.Response(200, json=GEOJSON)],
        )
        await session.start()
        assert session.geometry_error is not None
        assert session.renderer.features == ()
        assert session.snapshot is frankish_snapshot

        assert await session.retry_geometry()
        assert session.geometry_error is None
        assert session.renderer.fills["FRA"] == "#1d4ed8"

    @pytest.mark.anyio
    async def test_publish_rebuilds_index_and_rerenders(
        self, tmp_path: Path, map_config: MapConfig, frankish_snapshot: Snapshot
    ) -> None:
        session = _session(tmp_path, map_config, ScriptedSource({800: frankish_snapshot}))
        await session.start()
        session.publish(Snapshot(year=800, summary="empty"))
        assert dict(session.region_index) == {}
        assert set(session.renderer.fills.values()) == {"#cbd5e1"}


# ===================================================================
# Year changes
# ===================================================================


class TestYearChanges:
    @pytest.mark.anyio
    async def test_commit_clamps_and_normalizes(
        self, tmp_path: Path, map_config: MapConfig
    ) -> None:
        source = ScriptedSource(
            {1: Snapshot(year=1, summary="a"), 2000: Snapshot(year=2000, summary="b")}
        )
        session = _session(tmp_path, map_config, source)
        await session.load_geometry()

        await session.commit_year(0)
        assert session.current_year == 1
        await session.commit_year(9999)
        assert session.current_year == 2000
        assert source.calls == [1, 2000]

    @pytest.mark.anyio
    async def test_fallback_sets_banner_and_retry_recovers(
        self, tmp_path: Path, map_config: MapConfig, frankish_snapshot: Snapshot
    ) -> None:
        source = ScriptedSource({})
        session = _session(tmp_path, map_config, source)
        snapshot = await session.start()
        assert snapshot.is_fallback
        assert session.error_banner == UNAVAILABLE_BANNER

        source.snapshots[800] = frankish_snapshot
        recovered = await session.retry()
        assert recovered is frankish_snapshot
        assert session.error_banner is None

    @pytest.mark.anyio
    async def test_selection_follows_clicks_and_resets_on_year_change(
        self, tmp_path: Path, map_config: MapConfig, frankish_snapshot: Snapshot
    ) -> None:
        source = ScriptedSource({800: frankish_snapshot, 900: Snapshot(year=900, summary="")})
        session = _session(tmp_path, map_config, source)
        await session.start()

        session.renderer.click_at(640.0, 400.0)
        assert session.selection.regime is frankish_snapshot.regimes[0]
        assert session.selection.area_name == "Germany"

        await session.load_year(900)
        assert session.selection == Selection.cleared()

    @pytest.mark.anyio
    async def test_show_from_playback_updates_year(
        self, tmp_path: Path, map_config: MapConfig, frankish_snapshot: Snapshot
    ) -> None:
        session = _session(tmp_path, map_config, ScriptedSource({}))
        await session.load_geometry()
        session.show(0, frankish_snapshot)
        assert session.current_year == 1
        assert session.snapshot is frankish_snapshot
        assert session.renderer.fills["FRA"] == "#1d4ed8"
