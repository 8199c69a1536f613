"""Shared pytest fixtures for the chronoatlas test suite.

Provides:
- anyio_backend: run async tests on asyncio only
- map_config: small map settings matching the shipped defaults
- features: three rectangular "countries" around the map center
- app_config_path: a complete config.yaml written to a temp dir
"""

from __future__ import annotations

from pathlib import Path

import pytest
from shapely.geometry import box

from chronoatlas.config import MapConfig, MapStyleConfig
from chronoatlas.models import MapFeature, OceanLabel, Regime, Snapshot


CONFIG_YAML = """\
generator:
  api_base_url: https://generativelanguage.example/v1beta/
  model: test-model
  api_key_env: CHRONOATLAS_TEST_KEY
  request_timeout_s: 5
  max_retries: 2
  retry_backoff_s: 0.5

geometry:
  source_url: https://geometry.example/world.geojson
  local_path: data/world.geojson

map:
  width_px: 1280
  height_px: 800
  dpi: 100
  center_lon: 15.0
  center_lat: 54.0
  style:
    ocean_color: "#dbeafe"
    unclaimed_color: "#cbd5e1"
    stroke_color: "#ffffff"
    stroke_width: 0.5
    highlight_stroke_color: "#000000"
    highlight_stroke_width: 1.5
    highlight_opacity: 0.8
    label_color: "#93c5fd"
    label_opacity: 0.6
    label_font_size: 14
    font_family: DejaVu Sans
  ocean_labels:
    - {name: 北海, lon: 3.0, lat: 56.0}

timeline:
  min_year: -2000
  max_year: 2000
  initial_year: 1000

playback:
  start_year: 1
  end_year: 1000
  step: 50
  pacing_delay_s: 2.0

recording:
  filename_prefix: europe_history_evolution

paths:
  build_root: build
  frames_dir: build/frames
  recordings_dir: build/recordings
  reports_dir: build/reports
  logs_dir: build/logs
"""


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def map_config() -> MapConfig:
    return MapConfig(
        width_px=1280,
        height_px=800,
        dpi=100,
        center_lon=15.0,
        center_lat=54.0,
        scale_divisor=1.5,
        min_scale=0.8,
        max_scale=8.0,
        zoom_in_factor=1.3,
        zoom_out_factor=0.7,
        style=MapStyleConfig(
            ocean_color="#dbeafe",
            unclaimed_color="#cbd5e1",
            stroke_color="#ffffff",
            stroke_width=0.5,
            highlight_stroke_color="#000000",
            highlight_stroke_width=1.5,
            highlight_opacity=0.8,
            label_color="#93c5fd",
            label_opacity=0.6,
            label_font_size=14.0,
            font_family="DejaVu Sans",
        ),
        ocean_labels=(OceanLabel(name="北海", lon=3.0, lat=56.0),),
    )


@pytest.fixture
def features() -> tuple[MapFeature, ...]:
    return (
        MapFeature("FRA", "France", box(-5.0, 43.0, 5.0, 50.0)),
        MapFeature("DEU", "Germany", box(6.0, 47.0, 16.0, 55.0)),
        MapFeature("ITA", "Italy", box(7.0, 37.0, 18.0, 46.0)),
    )


@pytest.fixture
def frankish_snapshot() -> Snapshot:
    return Snapshot(
        year=800,
        summary="查理曼帝国统一西欧大部。",
        regimes=(
            Regime(
                name="法兰克王国",
                color="#1d4ed8",
                region_codes=("FRA", "DEU"),
                events=("查理曼加冕", "亚琛宫廷学校", "萨克森战争", "阿瓦尔战争"),
            ),
            Regime(name="伦巴第", color="#b45309", region_codes=("ITA",)),
        ),
    )


@pytest.fixture
def app_config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    return path
