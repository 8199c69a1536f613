"""Download the map geometry for offline use."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import requests

from .config import GeometryConfig
from .geometry import GeometryLoadError, features_from_geojson


_LOGGER = logging.getLogger("chronoatlas.offline")


@dataclass(slots=True)
class GeometryDownloadReport:
    output_path: Path | None = None
    feature_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


def download_geometry(
    cfg: GeometryConfig,
    *,
    output_path: Path | None = None,
    session: requests.Session | None = None,
) -> GeometryDownloadReport:
    """Fetch `cfg.source_url` and store it where the geometry store looks first."""
    target = output_path or cfg.local_path
    report = GeometryDownloadReport()
    http = session or requests.Session()
    http.headers.update({"User-Agent": cfg.user_agent})
    try:
        _LOGGER.info("[geometry] downloading %s", cfg.source_url)
        response = http.get(cfg.source_url, timeout=cfg.request_timeout_s)
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as exc:
        report.add_error(f"Download failed: {exc}")
        return report
    except ValueError as exc:
        report.add_error(f"Geometry source did not return JSON: {exc}")
        return report
    finally:
        if session is None:
            http.close()

    try:
        features = features_from_geojson(payload)
    except GeometryLoadError as exc:
        report.add_error(str(exc))
        return report
    if not features:
        report.add_error("Geometry source contains no usable features")
        return report

    raw_count = len(payload.get("features", []))
    if len(features) < raw_count:
        report.add_warning(f"{raw_count - len(features)} features have no id or geometry")

    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(target.name + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False)
    tmp_path.replace(target)

    report.output_path = target
    report.feature_count = len(features)
    report.add_info(f"Saved {len(features)} features to {target}")
    return report


def format_download_lines(report: GeometryDownloadReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append("[OK] Geometry is available offline.")
    return lines
