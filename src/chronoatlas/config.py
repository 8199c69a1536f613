"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .models import OceanLabel


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _int(value: Any, field_name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _optional_int(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    return _int(value, field_name)


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw)
    return p if p.is_absolute() else root_dir / p


@dataclass(frozen=True, slots=True)
class GeneratorConfig:
    api_base_url: str
    model: str
    api_key_env: str
    request_timeout_s: float
    max_retries: int
    retry_backoff_s: float

    @property
    def api_key(self) -> str:
        return os.environ.get(self.api_key_env, "").strip()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> GeneratorConfig:
        max_retries = _int(raw.get("max_retries", 2), "generator.max_retries")
        retry_backoff_s = _float(raw.get("retry_backoff_s", 1.0), "generator.retry_backoff_s")
        request_timeout_s = _float(raw.get("request_timeout_s", 60), "generator.request_timeout_s")
        if max_retries < 0:
            raise ValueError("generator.max_retries must be >= 0")
        if retry_backoff_s <= 0:
            raise ValueError("generator.retry_backoff_s must be > 0")
        if request_timeout_s <= 0:
            raise ValueError("generator.request_timeout_s must be > 0")
        return cls(
            api_base_url=_str(raw.get("api_base_url"), "generator.api_base_url").rstrip("/"),
            model=_str(raw.get("model"), "generator.model"),
            api_key_env=_str(raw.get("api_key_env", "GEMINI_API_KEY"), "generator.api_key_env"),
            request_timeout_s=request_timeout_s,
            max_retries=max_retries,
            retry_backoff_s=retry_backoff_s,
        )


@dataclass(frozen=True, slots=True)
class CacheConfig:
    max_entries: int | None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> CacheConfig:
        max_entries = _optional_int(raw.get("max_entries"), "cache.max_entries")
        if max_entries is not None and max_entries < 1:
            raise ValueError("cache.max_entries must be >= 1 when provided")
        return cls(max_entries=max_entries)


@dataclass(frozen=True, slots=True)
class GeometryConfig:
    source_url: str
    local_path: Path
    request_timeout_s: float
    user_agent: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> GeometryConfig:
        return cls(
            source_url=_str(raw.get("source_url"), "geometry.source_url"),
            local_path=_path_from_cfg(raw.get("local_path"), "geometry.local_path", root_dir),
            request_timeout_s=_float(raw.get("request_timeout_s", 30), "geometry.request_timeout_s"),
            user_agent=_str(raw.get("user_agent", "chronoatlas/0.1"), "geometry.user_agent"),
        )


@dataclass(frozen=True, slots=True)
class MapStyleConfig:
    ocean_color: str
    unclaimed_color: str
    stroke_color: str
    stroke_width: float
    highlight_stroke_color: str
    highlight_stroke_width: float
    highlight_opacity: float
    label_color: str
    label_opacity: float
    label_font_size: float
    font_family: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> MapStyleConfig:
        return cls(
            ocean_color=_str(raw.get("ocean_color"), "map.style.ocean_color"),
            unclaimed_color=_str(raw.get("unclaimed_color"), "map.style.unclaimed_color"),
            stroke_color=_str(raw.get("stroke_color"), "map.style.stroke_color"),
            stroke_width=_float(raw.get("stroke_width"), "map.style.stroke_width"),
            highlight_stroke_color=_str(
                raw.get("highlight_stroke_color"), "map.style.highlight_stroke_color"
            ),
            highlight_stroke_width=_float(
                raw.get("highlight_stroke_width"), "map.style.highlight_stroke_width"
            ),
            highlight_opacity=_float(raw.get("highlight_opacity"), "map.style.highlight_opacity"),
            label_color=_str(raw.get("label_color"), "map.style.label_color"),
            label_opacity=_float(raw.get("label_opacity"), "map.style.label_opacity"),
            label_font_size=_float(raw.get("label_font_size"), "map.style.label_font_size"),
            font_family=_str(raw.get("font_family"), "map.style.font_family"),
        )


@dataclass(frozen=True, slots=True)
class MapConfig:
    width_px: int
    height_px: int
    dpi: int
    center_lon: float
    center_lat: float
    scale_divisor: float
    min_scale: float
    max_scale: float
    zoom_in_factor: float
    zoom_out_factor: float
    style: MapStyleConfig
    ocean_labels: tuple[OceanLabel, ...]

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> MapConfig:
        width_px = _int(raw.get("width_px"), "map.width_px")
        height_px = _int(raw.get("height_px"), "map.height_px")
        if width_px < 1 or height_px < 1:
            raise ValueError("map.width_px and map.height_px must be >= 1")
        min_scale = _float(raw.get("min_scale", 0.8), "map.min_scale")
        max_scale = _float(raw.get("max_scale", 8.0), "map.max_scale")
        if min_scale <= 0 or max_scale < min_scale:
            raise ValueError("map.min_scale must be > 0 and <= map.max_scale")
        scale_divisor = _float(raw.get("scale_divisor", 1.5), "map.scale_divisor")
        if scale_divisor <= 0:
            raise ValueError("map.scale_divisor must be > 0")
        center_lat = _float(raw.get("center_lat"), "map.center_lat")
        if center_lat < -85.0 or center_lat > 85.0:
            raise ValueError("map.center_lat must be between -85 and 85")

        labels_raw = raw.get("ocean_labels", [])
        if not isinstance(labels_raw, list):
            raise ValueError("Expected list for 'map.ocean_labels'")
        labels: list[OceanLabel] = []
        for idx, item in enumerate(labels_raw):
            entry = _mapping(item, f"map.ocean_labels[{idx}]")
            labels.append(
                OceanLabel(
                    name=_str(entry.get("name"), f"map.ocean_labels[{idx}].name"),
                    lon=_float(entry.get("lon"), f"map.ocean_labels[{idx}].lon"),
                    lat=_float(entry.get("lat"), f"map.ocean_labels[{idx}].lat"),
                )
            )

        return cls(
            width_px=width_px,
            height_px=height_px,
            dpi=_int(raw.get("dpi", 100), "map.dpi"),
            center_lon=_float(raw.get("center_lon"), "map.center_lon"),
            center_lat=center_lat,
            scale_divisor=scale_divisor,
            min_scale=min_scale,
            max_scale=max_scale,
            zoom_in_factor=_float(raw.get("zoom_in_factor", 1.3), "map.zoom_in_factor"),
            zoom_out_factor=_float(raw.get("zoom_out_factor", 0.7), "map.zoom_out_factor"),
            style=MapStyleConfig.from_mapping(_mapping(raw.get("style"), "map.style")),
            ocean_labels=tuple(labels),
        )


@dataclass(frozen=True, slots=True)
class TimelineConfig:
    min_year: int
    max_year: int
    initial_year: int

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> TimelineConfig:
        min_year = _int(raw.get("min_year", -2000), "timeline.min_year")
        max_year = _int(raw.get("max_year", 2000), "timeline.max_year")
        if min_year > max_year:
            raise ValueError("timeline.min_year must be <= timeline.max_year")
        return cls(
            min_year=min_year,
            max_year=max_year,
            initial_year=_int(raw.get("initial_year", 1000), "timeline.initial_year"),
        )


@dataclass(frozen=True, slots=True)
class PlaybackConfig:
    start_year: int
    end_year: int
    step: int
    pacing_delay_s: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> PlaybackConfig:
        step = _int(raw.get("step", 50), "playback.step")
        pacing_delay_s = _float(raw.get("pacing_delay_s", 2.0), "playback.pacing_delay_s")
        if step < 1:
            raise ValueError("playback.step must be >= 1")
        if pacing_delay_s < 0:
            raise ValueError("playback.pacing_delay_s must be >= 0")
        return cls(
            start_year=_int(raw.get("start_year", 1), "playback.start_year"),
            end_year=_int(raw.get("end_year", 1000), "playback.end_year"),
            step=step,
            pacing_delay_s=pacing_delay_s,
        )


@dataclass(frozen=True, slots=True)
class RecordingConfig:
    ffmpeg_binary: str
    filename_prefix: str
    container: str
    codec: str
    output_fps: int
    chunk_size: int

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RecordingConfig:
        output_fps = _int(raw.get("output_fps", 25), "recording.output_fps")
        chunk_size = _int(raw.get("chunk_size", 65536), "recording.chunk_size")
        if output_fps < 1:
            raise ValueError("recording.output_fps must be >= 1")
        if chunk_size < 1:
            raise ValueError("recording.chunk_size must be >= 1")
        return cls(
            ffmpeg_binary=_str(raw.get("ffmpeg_binary", "ffmpeg"), "recording.ffmpeg_binary"),
            filename_prefix=_str(raw.get("filename_prefix"), "recording.filename_prefix"),
            container=_str(raw.get("container", "webm"), "recording.container"),
            codec=_str(raw.get("codec", "libvpx-vp9"), "recording.codec"),
            output_fps=output_fps,
            chunk_size=chunk_size,
        )


@dataclass(frozen=True, slots=True)
class PathsConfig:
    build_root: Path
    frames_dir: Path
    recordings_dir: Path
    reports_dir: Path
    logs_dir: Path

    @property
    def build_directories(self) -> tuple[Path, ...]:
        return (
            self.build_root,
            self.frames_dir,
            self.recordings_dir,
            self.reports_dir,
            self.logs_dir,
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> PathsConfig:
        return cls(
            build_root=_path_from_cfg(raw.get("build_root"), "paths.build_root", root_dir),
            frames_dir=_path_from_cfg(raw.get("frames_dir"), "paths.frames_dir", root_dir),
            recordings_dir=_path_from_cfg(
                raw.get("recordings_dir"), "paths.recordings_dir", root_dir
            ),
            reports_dir=_path_from_cfg(raw.get("reports_dir"), "paths.reports_dir", root_dir),
            logs_dir=_path_from_cfg(raw.get("logs_dir"), "paths.logs_dir", root_dir),
        )


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path
    generator: GeneratorConfig
    cache: CacheConfig
    geometry: GeometryConfig
    map: MapConfig
    timeline: TimelineConfig
    playback: PlaybackConfig
    recording: RecordingConfig
    paths: PathsConfig

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path) -> AppConfig:
        root_dir = source_path.parent.resolve()
        cache_raw = raw.get("cache")
        return cls(
            source_path=source_path.resolve(),
            generator=GeneratorConfig.from_mapping(_mapping(raw.get("generator"), "generator")),
            cache=CacheConfig.from_mapping(
                {} if cache_raw is None else _mapping(cache_raw, "cache")
            ),
            geometry=GeometryConfig.from_mapping(
                _mapping(raw.get("geometry"), "geometry"), root_dir
            ),
            map=MapConfig.from_mapping(_mapping(raw.get("map"), "map")),
            timeline=TimelineConfig.from_mapping(_mapping(raw.get("timeline"), "timeline")),
            playback=PlaybackConfig.from_mapping(_mapping(raw.get("playback"), "playback")),
            recording=RecordingConfig.from_mapping(_mapping(raw.get("recording"), "recording")),
            paths=PathsConfig.from_mapping(_mapping(raw.get("paths"), "paths"), root_dir),
        )


def load_config(path: str | Path) -> AppConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return AppConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
