"""Static map geometry loading."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Mapping

import httpx

from .config import GeometryConfig
from .models import MapFeature


_LOGGER = logging.getLogger("chronoatlas.geometry")


class GeometryLoadError(RuntimeError):
    """Raised when the map geometry cannot be loaded."""


class MapGeometryStore:
    """Load the GeoJSON country geometry once and serve it read-only.

    A local offline copy (see `offline.download_geometry`) takes precedence
    over the remote source URL.
    """

    def __init__(self, cfg: GeometryConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self.cfg = cfg
        self._client = client
        self._features: tuple[MapFeature, ...] | None = None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._features is not None

    @property
    def features(self) -> tuple[MapFeature, ...]:
        return self._features or ()

    async def load(self) -> tuple[MapFeature, ...]:
        async with self._lock:
            if self._features is not None:
                return self._features
            try:
                payload = await self._read_payload()
                features = features_from_geojson(payload)
            except GeometryLoadError:
                raise
            except (OSError, ValueError, httpx.HTTPError, httpx.InvalidURL) as exc:
                raise GeometryLoadError(f"Failed loading map geometry: {exc}") from exc
            if not features:
                raise GeometryLoadError("Map geometry contains no usable features")
            self._features = features
            _LOGGER.info("[geometry] loaded %d features", len(features))
            return features

    async def _read_payload(self) -> Any:
        local_path = self.cfg.local_path
        if local_path.exists():
            _LOGGER.info("[geometry] reading offline copy %s", local_path)
            return await asyncio.to_thread(_read_json_file, local_path)
        _LOGGER.info("[geometry] fetching %s", self.cfg.source_url)
        if self._client is not None:
            return await self._get_json(self._client)
        async with httpx.AsyncClient(
            timeout=self.cfg.request_timeout_s,
            headers={"User-Agent": self.cfg.user_agent},
            follow_redirects=True,
        ) as client:
            return await self._get_json(client)

    async def _get_json(self, client: httpx.AsyncClient) -> Any:
        response = await client.get(self.cfg.source_url)
        response.raise_for_status()
        return response.json()


def features_from_geojson(payload: Any) -> tuple[MapFeature, ...]:
    """Convert a GeoJSON FeatureCollection into map features keyed by `id`."""
    if not isinstance(payload, Mapping):
        raise GeometryLoadError("Geometry payload is not a JSON object")
    raw_features = payload.get("features")
    if not isinstance(raw_features, list):
        raise GeometryLoadError("Geometry payload has no 'features' list")

    shape = _require_shapely_shape()
    features: list[MapFeature] = []
    skipped: list[str] = []
    for idx, item in enumerate(raw_features):
        if not isinstance(item, Mapping):
            skipped.append(f"#{idx}")
            continue
        code = _feature_code(item)
        geometry_raw = item.get("geometry")
        if code is None or not isinstance(geometry_raw, Mapping):
            skipped.append(code or f"#{idx}")
            continue
        try:
            geometry = shape(geometry_raw)
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            _LOGGER.debug("[geometry] invalid geometry for %s: %s", code, exc)
            skipped.append(code)
            continue
        if geometry.is_empty:
            skipped.append(code)
            continue
        properties = item.get("properties")
        name_raw = properties.get("name") if isinstance(properties, Mapping) else None
        name = name_raw.strip() if isinstance(name_raw, str) and name_raw.strip() else code
        features.append(MapFeature(region_code=code, display_name=name, geometry=geometry))
    if skipped:
        _LOGGER.debug("[geometry] skipped %d features: %s", len(skipped), ", ".join(skipped))
    return tuple(features)


def _feature_code(item: Mapping[str, Any]) -> str | None:
    raw = item.get("id")
    if raw is None:
        properties = item.get("properties")
        if isinstance(properties, Mapping):
            raw = properties.get("iso_a3") or properties.get("ISO_A3")
    if not isinstance(raw, str) or not raw.strip():
        return None
    return raw.strip().upper()


def _read_json_file(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _require_shapely_shape() -> Any:
    try:
        from shapely.geometry import shape
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for map geometry loading") from exc
    return shape
