"""Tests for the offline geometry download."""

import json
from pathlib import Path

import requests

from chronoatlas.config import GeometryConfig
from chronoatlas.offline import download_geometry, format_download_lines


class StubResponse:
    def __init__(self, status_code: int, payload=None, text: str | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self._text = text

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._text is not None:
            return json.loads(self._text)
        return self._payload


class StubSession:
    def __init__(self, response: StubResponse | Exception) -> None:
        self.headers: dict[str, str] = {}
        self.response = response
        self.requested: list[str] = []

    def get(self, url: str, timeout: float) -> StubResponse:
        self.requested.append(url)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


FEATURES = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "id": "ISL",
            "properties": {"name": "Iceland"},
            "geometry": {"type": "Polygon", "coordinates": [[[-20, 64], [-14, 64], [-14, 66], [-20, 64]]]},
        },
        {"type": "Feature", "properties": {"name": "nameless"}, "geometry": None},
    ],
}


def _cfg(tmp_path: Path) -> GeometryConfig:
    return GeometryConfig(
        source_url="https://geometry.example/world.geojson",
        local_path=tmp_path / "data" / "world.geojson",
        request_timeout_s=5.0,
        user_agent="tests",
    )


class TestDownloadGeometry:
    def test_saves_to_local_path(self, tmp_path: Path) -> None:
        session = StubSession(StubResponse(200, FEATURES))
        report = download_geometry(_cfg(tmp_path), session=session)

        assert report.ok
        assert report.feature_count == 1
        assert report.output_path == tmp_path / "data" / "world.geojson"
        assert json.loads(report.output_path.read_text(encoding="utf-8")) == FEATURES
        assert session.headers["User-Agent"] == "tests"
        assert any("no id or geometry" in w for w in report.warnings)
        assert list(format_download_lines(report))[-1] == "[OK] Geometry is available offline."

    def test_explicit_output_path(self, tmp_path: Path) -> None:
        target = tmp_path / "elsewhere.geojson"
        report = download_geometry(
            _cfg(tmp_path), output_path=target, session=StubSession(StubResponse(200, FEATURES))
        )
        assert report.output_path == target
        assert target.exists()

    def test_http_error_reported(self, tmp_path: Path) -> None:
        report = download_geometry(_cfg(tmp_path), session=StubSession(StubResponse(404)))
        assert not report.ok
        assert not (tmp_path / "data" / "world.geojson").exists()

    def test_connection_error_reported(self, tmp_path: Path) -> None:
        session = StubSession(requests.ConnectionError("offline"))
        report = download_geometry(_cfg(tmp_path), session=session)
        assert any("Download failed" in e for e in report.errors)

    def test_non_json_reported(self, tmp_path: Path) -> None:
        report = download_geometry(
            _cfg(tmp_path), session=StubSession(StubResponse(200, text="<html>"))
        )
        assert any("did not return JSON" in e for e in report.errors)

    def test_empty_collection_reported(self, tmp_path: Path) -> None:
        empty = {"type": "FeatureCollection", "features": []}
        report = download_geometry(_cfg(tmp_path), session=StubSession(StubResponse(200, empty)))
        assert not report.ok
        assert list(format_download_lines(report))[-1].startswith("[ERROR]")
