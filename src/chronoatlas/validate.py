"""Validation layer for config and runtime environment."""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from typing import Iterable

from .config import AppConfig
from .geometry import GeometryLoadError, features_from_geojson
from .util import format_code_list
from .years import format_year, normalize_year


@dataclass(slots=True)
class ValidationReport:
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


class Validator:
    """Checks that a session can fetch, render and record with this config."""

    def __init__(self, cfg: AppConfig) -> None:
        self.cfg = cfg

    def run(self, *, strict: bool = False) -> ValidationReport:
        report = ValidationReport()
        self._validate_api_key(report, strict=strict)
        self._validate_geometry(report)
        self._validate_encoder(report, strict=strict)
        self._validate_timeline(report)
        self._validate_playback(report)
        return report

    def _validate_api_key(self, report: ValidationReport, *, strict: bool) -> None:
        env_name = self.cfg.generator.api_key_env
        if self.cfg.generator.api_key:
            report.add_info(f"API key found in ${env_name}")
            return
        msg = f"${env_name} is not set; every year will show the unavailable placeholder"
        if strict:
            report.add_error(msg)
        else:
            report.add_warning(msg)

    def _validate_geometry(self, report: ValidationReport) -> None:
        path = self.cfg.geometry.local_path
        if not path.exists():
            report.add_info(
                f"No offline geometry at {path}; it will be fetched from {self.cfg.geometry.source_url}"
            )
            return
        try:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
            features = features_from_geojson(payload)
        except (OSError, ValueError, GeometryLoadError) as exc:
            report.add_error(f"Failed parsing offline geometry '{path}': {exc}")
            return
        if not features:
            report.add_error(f"Offline geometry has no usable features: {path}")
            return
        report.add_info(f"Loaded {len(features)} offline geometry features from {path}")
        odd_codes = sorted(
            {f.region_code for f in features if len(f.region_code) != 3 or not f.region_code.isalpha()}
        )
        if odd_codes:
            report.add_warning(
                "Geometry features with non ISO alpha-3 ids will never be claimed: "
                + format_code_list(odd_codes)
            )

    def _validate_encoder(self, report: ValidationReport, *, strict: bool) -> None:
        binary = self.cfg.recording.ffmpeg_binary
        resolved = shutil.which(binary)
        if resolved is not None:
            report.add_info(f"Encoder available: {resolved}")
            return
        msg = f"Encoder '{binary}' not found on PATH; recording is unavailable"
        if strict:
            report.add_error(msg)
        else:
            report.add_warning(msg)

    def _validate_timeline(self, report: ValidationReport) -> None:
        timeline = self.cfg.timeline
        if not timeline.min_year <= timeline.initial_year <= timeline.max_year:
            report.add_warning(
                f"timeline.initial_year {timeline.initial_year} is outside "
                f"[{timeline.min_year}, {timeline.max_year}] and will be clamped"
            )
        if timeline.initial_year == 0:
            report.add_info("timeline.initial_year 0 is committed as year 1")

    def _validate_playback(self, report: ValidationReport) -> None:
        playback = self.cfg.playback
        timeline = self.cfg.timeline
        if playback.start_year > playback.end_year:
            report.add_error(
                f"playback.start_year {playback.start_year} is after playback.end_year {playback.end_year}"
            )
            return
        if playback.start_year < timeline.min_year or playback.end_year > timeline.max_year:
            report.add_warning(
                f"Playback range [{playback.start_year}, {playback.end_year}] extends beyond the "
                f"timeline [{timeline.min_year}, {timeline.max_year}]"
            )
        visited = len(range(playback.start_year, playback.end_year + 1, playback.step))
        report.add_info(
            f"Playback visits {visited} years from {format_year(normalize_year(playback.start_year))} "
            f"to {format_year(normalize_year(playback.end_year))}, "
            f"about {visited * playback.pacing_delay_s:.0f}s of pacing"
        )


def format_report_lines(report: ValidationReport) -> Iterable[str]:
    for info in report.infos:
        yield f"[INFO] {info}"
    for warning in report.warnings:
        yield f"[WARN] {warning}"
    for error in report.errors:
        yield f"[ERROR] {error}"
    if report.ok:
        yield "[OK] Validation completed with no errors."
