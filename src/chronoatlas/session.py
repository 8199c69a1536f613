"""Application state: current year, published snapshot, selection and banners."""

from __future__ import annotations

import logging
from typing import Mapping

from .cache import SnapshotCache
from .config import TimelineConfig
from .geometry import GeometryLoadError, MapGeometryStore
from .models import Regime, Selection, Snapshot
from .region_index import EMPTY_INDEX, build_index
from .render import MapRenderer
from .years import commit_year, format_year, normalize_year


UNAVAILABLE_BANNER = "生成历史数据失败，请检查 API 密钥或网络连接。"

_LOGGER = logging.getLogger("chronoatlas.session")


class AtlasSession:
    """Ties the snapshot cache, the geometry and the renderer together.

    `publish` is the only place the region index changes, and it re-renders
    in the same call, so the renderer never sees a stale index.
    """

    def __init__(
        self,
        *,
        timeline: TimelineConfig,
        cache: SnapshotCache,
        geometry: MapGeometryStore,
        renderer: MapRenderer,
    ) -> None:
        self.timeline = timeline
        self.cache = cache
        self.geometry = geometry
        self.renderer = renderer
        self.current_year = commit_year(
            timeline.initial_year,
            min_year=timeline.min_year,
            max_year=timeline.max_year,
        )
        self.snapshot: Snapshot | None = None
        self.region_index: Mapping[str, Regime] = EMPTY_INDEX
        self.selection = Selection.cleared()
        self.loading = False
        self.error_banner: str | None = None
        self.geometry_error: str | None = None
        renderer.add_selection_listener(self._on_selection)

    async def start(self) -> Snapshot:
        await self.load_geometry()
        return await self.load_year(self.current_year)

    async def load_geometry(self) -> bool:
        try:
            features = await self.geometry.load()
        except GeometryLoadError as exc:
            self.geometry_error = str(exc)
            _LOGGER.error("[geometry] %s", exc)
            return False
        self.geometry_error = None
        self.renderer.render(features, self.region_index)
        return True

    async def retry_geometry(self) -> bool:
        return await self.load_geometry()

    async def load_year(self, year: int) -> Snapshot:
        """Fetch (or reuse) the snapshot for `year` and publish it."""
        year = normalize_year(year)
        self.current_year = year
        self.selection = Selection.cleared()
        self.error_banner = None
        self.loading = True
        try:
            snapshot = await self.cache.get_snapshot(year)
        finally:
            self.loading = False
        self.show(year, snapshot)
        return snapshot

    async def commit_year(self, year: int | None) -> Snapshot:
        """Timeline commit: clamp into the configured range, then load."""
        return await self.load_year(
            commit_year(year, min_year=self.timeline.min_year, max_year=self.timeline.max_year)
        )

    async def retry(self) -> Snapshot:
        return await self.load_year(self.current_year)

    def show(self, year: int, snapshot: Snapshot) -> None:
        """Make `snapshot` the visible state for `year`."""
        year = normalize_year(year)
        if year != self.current_year:
            self.current_year = year
            self.selection = Selection.cleared()
        self.error_banner = UNAVAILABLE_BANNER if snapshot.is_fallback else None
        self.publish(snapshot)
        _LOGGER.debug("Showing %s (%d regimes)", format_year(year), len(snapshot.regimes))

    def publish(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot
        self.region_index = build_index(snapshot)
        self.renderer.render(self.geometry.features, self.region_index)

    def _on_selection(self, selection: Selection) -> None:
        self.selection = selection
