"""Interactive map rendering: projection, view transform, fills and hit-testing."""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Literal, Mapping, Sequence

from .config import MapConfig
from .models import MapFeature, Regime, Selection
from .region_index import EMPTY_INDEX


_EARTH_RADIUS_M = 6_378_137.0
_MERCATOR_MAX_LAT = 85.05112878
_NO_EVENTS_TEXT = "暂无事件记录"
_TOOLTIP_EVENT_LIMIT = 3

_LOGGER = logging.getLogger("chronoatlas.render")

SelectionListener = Callable[[Selection], None]
ZoomDirection = Literal["in", "out"]


@dataclass(frozen=True, slots=True)
class ViewTransform:
    """Pan/zoom state: visual = base * scale + translate."""

    scale: float = 1.0
    translate_x: float = 0.0
    translate_y: float = 0.0

    def apply(self, x: float, y: float) -> tuple[float, float]:
        return (x * self.scale + self.translate_x, y * self.scale + self.translate_y)

    def invert(self, x: float, y: float) -> tuple[float, float]:
        return ((x - self.translate_x) / self.scale, (y - self.translate_y) / self.scale)


@dataclass(frozen=True, slots=True)
class Tooltip:
    x: float
    y: float
    title: str
    lines: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MercatorProjection:
    """Web Mercator (EPSG:3857) mapped onto the map's pixel grid.

    `scale` is in pixels per radian, the convention d3's `geoMercator` uses,
    and the configured center lands on (`translate_x`, `translate_y`).
    Screen y grows downward.
    """

    transformer: Any
    scale: float
    origin_x: float
    origin_y: float
    translate_x: float
    translate_y: float

    @classmethod
    def for_map(cls, cfg: MapConfig) -> MercatorProjection:
        transformer = _require_pyproj_transformer()
        origin_x, origin_y = transformer.transform(cfg.center_lon, _clamp_lat(cfg.center_lat))
        return cls(
            transformer=transformer,
            scale=cfg.width_px / cfg.scale_divisor,
            origin_x=float(origin_x),
            origin_y=float(origin_y),
            translate_x=cfg.width_px / 2.0,
            translate_y=cfg.height_px / 2.0,
        )

    @property
    def _pixels_per_meter(self) -> float:
        return self.scale / _EARTH_RADIUS_M

    def project_point(self, lon: float, lat: float) -> tuple[float, float]:
        mx, my = self.transformer.transform(float(lon), _clamp_lat(float(lat)))
        k = self._pixels_per_meter
        return (
            self.translate_x + (float(mx) - self.origin_x) * k,
            self.translate_y - (float(my) - self.origin_y) * k,
        )

    def project_geometry(self, geometry: Any) -> Any:
        shapely_transform = _require_shapely_transform()
        affine_transform = _require_shapely_affine_transform()
        mercator = shapely_transform(self._to_mercator, geometry)
        k = self._pixels_per_meter
        return affine_transform(
            mercator,
            [
                k,
                0.0,
                0.0,
                -k,
                self.translate_x - self.origin_x * k,
                self.translate_y + self.origin_y * k,
            ],
        )

    def _to_mercator(self, x: Any, y: Any) -> Any:
        # shapely hands over coordinate tuples first and single values as a fallback.
        if isinstance(y, (int, float)):
            return self.transformer.transform(float(x), _clamp_lat(float(y)))
        return self.transformer.transform(list(x), [_clamp_lat(float(v)) for v in y])


class MapRenderer:
    """Stateful map view over a fixed feature set and the current region index.

    Fills are recomputed on every `render`; the projected geometry and its
    spatial index are rebuilt only when the feature set changes. Pointer
    coordinates are in visual (post pan/zoom) pixels and are mapped back
    through the view transform before containment tests.
    """

    def __init__(self, cfg: MapConfig) -> None:
        self.cfg = cfg
        self.projection = MercatorProjection.for_map(cfg)
        self.view = ViewTransform()
        self.hovered: MapFeature | None = None
        self.tooltip: Tooltip | None = None
        self._features: tuple[MapFeature, ...] = ()
        self._projected: tuple[Any, ...] = ()
        self._tree: Any | None = None
        self._region_index: Mapping[str, Regime] = EMPTY_INDEX
        self._fills: Mapping[str, str] = MappingProxyType({})
        self._listeners: list[SelectionListener] = []

    @property
    def features(self) -> tuple[MapFeature, ...]:
        return self._features

    @property
    def region_index(self) -> Mapping[str, Regime]:
        return self._region_index

    @property
    def fills(self) -> Mapping[str, str]:
        return self._fills

    # ----- rendering -----

    def render(
        self,
        features: Sequence[MapFeature],
        region_index: Mapping[str, Regime],
    ) -> Mapping[str, str]:
        """Recompute every feature's fill from `region_index`."""
        features = tuple(features)
        if not _same_features(features, self._features):
            self._set_features(features)
        self._region_index = region_index
        self._fills = MappingProxyType(
            {feature.region_code: self.fill_for(feature) for feature in self._features}
        )
        if self.hovered is not None and self.tooltip is not None:
            self.tooltip = self._tooltip_for(self.hovered, self.tooltip.x, self.tooltip.y)
        return self._fills

    def fill_for(self, feature: MapFeature) -> str:
        regime = self._region_index.get(feature.region_code)
        return regime.color if regime is not None else self.cfg.style.unclaimed_color

    def _set_features(self, features: tuple[MapFeature, ...]) -> None:
        self._features = features
        self._projected = tuple(
            self.projection.project_geometry(feature.geometry) for feature in features
        )
        strtree = _require_shapely_strtree()
        self._tree = strtree(list(self._projected)) if self._projected else None
        if self.hovered is not None and not any(f is self.hovered for f in features):
            self.on_pointer_leave()
        _LOGGER.debug("Projected %d map features", len(features))

    # ----- hit-testing -----

    def feature_at(self, x: float, y: float) -> MapFeature | None:
        """Topmost feature under a visual pixel position, if any."""
        if self._tree is None:
            return None
        point_factory = _require_shapely_point_factory()
        base_x, base_y = self.view.invert(float(x), float(y))
        hits = self._tree.query(point_factory(base_x, base_y), predicate="intersects")
        if len(hits) == 0:
            return None
        # Later features are painted over earlier ones.
        return self._features[int(max(hits))]

    def feature_at_lonlat(self, lon: float, lat: float) -> MapFeature | None:
        return self.feature_at(*self.view.apply(*self.projection.project_point(lon, lat)))

    # ----- pointer interaction -----

    def add_selection_listener(self, listener: SelectionListener) -> None:
        self._listeners.append(listener)

    def remove_selection_listener(self, listener: SelectionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def on_pointer_enter(self, feature: MapFeature, x: float, y: float) -> Tooltip:
        self.hovered = feature
        self.tooltip = self._tooltip_for(feature, x, y)
        return self.tooltip

    def on_pointer_move(self, x: float, y: float) -> Tooltip | None:
        if self.tooltip is not None:
            self.tooltip = replace(self.tooltip, x=float(x), y=float(y))
        return self.tooltip

    def on_pointer_leave(self) -> None:
        self.hovered = None
        self.tooltip = None

    def hover_at(self, x: float, y: float) -> Tooltip | None:
        feature = self.feature_at(x, y)
        if feature is None:
            if self.hovered is not None:
                self.on_pointer_leave()
            return None
        if feature is self.hovered:
            return self.on_pointer_move(x, y)
        if self.hovered is not None:
            self.on_pointer_leave()
        return self.on_pointer_enter(feature, x, y)

    def on_pointer_click(self, feature: MapFeature | None) -> Selection:
        """Resolve a click on `feature` (or the background) and notify listeners."""
        if feature is None:
            selection = Selection.cleared()
        else:
            selection = Selection(
                regime=self._region_index.get(feature.region_code),
                area_name=feature.display_name,
            )
        for listener in tuple(self._listeners):
            listener(selection)
        return selection

    def click_at(self, x: float, y: float) -> Selection:
        return self.on_pointer_click(self.feature_at(x, y))

    def _tooltip_for(self, feature: MapFeature, x: float, y: float) -> Tooltip:
        regime = self._region_index.get(feature.region_code)
        if regime is None:
            return Tooltip(x=float(x), y=float(y), title=feature.display_name)
        events = regime.events[:_TOOLTIP_EVENT_LIMIT] or (_NO_EVENTS_TEXT,)
        return Tooltip(x=float(x), y=float(y), title=regime.name, lines=tuple(events))

    # ----- pan / zoom -----

    def zoom(self, direction: ZoomDirection, factor: float | None = None) -> ViewTransform:
        """Zoom around the viewport center.

        Without an explicit `factor` the configured in/out factors apply.
        """
        if direction not in ("in", "out"):
            raise ValueError(f"Unknown zoom direction: {direction!r}")
        if factor is None:
            factor = self.cfg.zoom_in_factor if direction == "in" else self.cfg.zoom_out_factor
        return self.zoom_at(self.cfg.width_px / 2.0, self.cfg.height_px / 2.0, factor)

    def zoom_at(self, x: float, y: float, factor: float) -> ViewTransform:
        """Scale by `factor` keeping the visual point (`x`, `y`) fixed."""
        if factor <= 0 or not math.isfinite(factor):
            raise ValueError(f"Zoom factor must be a positive number, got {factor}")
        new_scale = min(max(self.view.scale * factor, self.cfg.min_scale), self.cfg.max_scale)
        base_x, base_y = self.view.invert(float(x), float(y))
        self.view = ViewTransform(
            scale=new_scale,
            translate_x=float(x) - base_x * new_scale,
            translate_y=float(y) - base_y * new_scale,
        )
        return self.view

    def pan(self, dx: float, dy: float) -> ViewTransform:
        self.view = replace(
            self.view,
            translate_x=self.view.translate_x + float(dx),
            translate_y=self.view.translate_y + float(dy),
        )
        return self.view

    def reset_view(self) -> ViewTransform:
        self.view = ViewTransform()
        return self.view

    # ----- raster output -----

    def draw(self, ax: Any) -> None:
        style = self.cfg.style
        ax.set_facecolor(style.ocean_color)
        highlighted: tuple[MapFeature, Any] | None = None
        for feature, geometry in zip(self._features, self._projected):
            if feature is self.hovered:
                highlighted = (feature, geometry)
                continue
            _add_geometry_patch(
                ax=ax,
                geometry=geometry,
                facecolor=self.fill_for(feature),
                edgecolor=style.stroke_color,
                line_width=style.stroke_width,
            )
        if highlighted is not None:
            feature, geometry = highlighted
            _add_geometry_patch(
                ax=ax,
                geometry=geometry,
                facecolor=self.fill_for(feature),
                edgecolor=style.highlight_stroke_color,
                line_width=style.highlight_stroke_width,
                alpha=style.highlight_opacity,
            )

        for label in self.cfg.ocean_labels:
            x, y = self.projection.project_point(label.lon, label.lat)
            ax.text(
                x,
                y,
                label.name,
                color=style.label_color,
                alpha=style.label_opacity,
                fontsize=style.label_font_size,
                fontweight="bold",
                fontstyle="italic",
                family=[style.font_family, "DejaVu Sans"],
                ha="center",
                va="center",
                zorder=3,
            )

        x0, y0 = self.view.invert(0.0, 0.0)
        x1, y1 = self.view.invert(float(self.cfg.width_px), float(self.cfg.height_px))
        ax.set_xlim(x0, x1)
        ax.set_ylim(y1, y0)
        ax.set_axis_off()

    def to_png_bytes(self) -> bytes:
        plt = _require_matplotlib()
        fig = self._new_figure(plt)
        try:
            buffer = io.BytesIO()
            fig.savefig(buffer, format="png", dpi=self.cfg.dpi)
            return buffer.getvalue()
        finally:
            plt.close(fig)

    def save_png(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_png_bytes())
        return path

    def _new_figure(self, plt: Any) -> Any:
        dpi = self.cfg.dpi
        fig, ax = plt.subplots(
            figsize=(self.cfg.width_px / dpi, self.cfg.height_px / dpi),
            dpi=dpi,
        )
        fig.subplots_adjust(left=0.0, right=1.0, bottom=0.0, top=1.0)
        fig.patch.set_facecolor(self.cfg.style.ocean_color)
        self.draw(ax)
        return fig


def _same_features(a: tuple[MapFeature, ...], b: tuple[MapFeature, ...]) -> bool:
    # MapFeature equality ignores geometry, so compare objects.
    return len(a) == len(b) and all(x is y for x, y in zip(a, b))


def _clamp_lat(lat: float) -> float:
    return max(-_MERCATOR_MAX_LAT, min(_MERCATOR_MAX_LAT, lat))


def _add_geometry_patch(
    *,
    ax: Any,
    geometry: Any,
    facecolor: str,
    edgecolor: str,
    line_width: float,
    alpha: float = 1.0,
) -> None:
    path_cls, patch_cls = _require_matplotlib_path()
    vertices: list[tuple[float, float]] = []
    codes: list[int] = []
    for ring in _iter_linear_rings(geometry):
        if len(ring) < 4:
            continue
        vertices.extend(ring)
        codes.append(path_cls.MOVETO)
        codes.extend([path_cls.LINETO] * (len(ring) - 2))
        codes.append(path_cls.CLOSEPOLY)
    if not vertices:
        return
    ax.add_patch(
        patch_cls(
            path_cls(vertices, codes),
            facecolor=facecolor,
            edgecolor=edgecolor,
            linewidth=line_width,
            alpha=alpha,
            joinstyle="round",
        )
    )


def _iter_linear_rings(geometry: Any) -> Sequence[Sequence[tuple[float, float]]]:
    geom_type = getattr(geometry, "geom_type", "")
    if geom_type == "Polygon":
        # Shell and holes wound in opposite directions so holes stay unfilled.
        oriented = _require_shapely_orient()(geometry, 1.0)
        exterior = [(float(x), float(y)) for x, y, *_ in oriented.exterior.coords]
        rings: list[Sequence[tuple[float, float]]] = [exterior]
        for interior in oriented.interiors:
            rings.append([(float(x), float(y)) for x, y, *_ in interior.coords])
        return rings

    if geom_type in ("MultiPolygon", "GeometryCollection"):
        rings = []
        for part in geometry.geoms:
            rings.extend(_iter_linear_rings(part))
        return rings

    return []


def _require_matplotlib() -> Any:
    try:
        import matplotlib

        matplotlib.use("Agg", force=False)
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for map rendering") from exc
    return plt


def _require_matplotlib_path() -> tuple[Any, Any]:
    try:
        from matplotlib.patches import PathPatch
        from matplotlib.path import Path as MplPath
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for map rendering") from exc
    return (MplPath, PathPatch)


def _require_shapely_transform() -> Any:
    try:
        from shapely.ops import transform
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for geometry projection in rendering") from exc
    return transform


def _require_shapely_affine_transform() -> Any:
    try:
        from shapely.affinity import affine_transform
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for geometry projection in rendering") from exc
    return affine_transform


def _require_shapely_orient() -> Any:
    try:
        from shapely.geometry.polygon import orient
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for polygon drawing") from exc
    return orient


def _require_shapely_strtree() -> Any:
    try:
        from shapely.strtree import STRtree
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for map hit-testing") from exc
    return STRtree


def _require_shapely_point_factory() -> Any:
    try:
        from shapely.geometry import Point
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for map hit-testing") from exc
    return Point


@lru_cache(maxsize=1)
def _require_pyproj_transformer() -> Any:
    try:
        from pyproj import Transformer
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pyproj is required for Web Mercator projection in rendering") from exc
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
