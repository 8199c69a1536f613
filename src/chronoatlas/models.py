"""Domain models shared across the atlas modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from .years import normalize_year


BACKGROUND_AREA = "background"
FALLBACK_SUMMARY = "该时期数据暂不可用，请尝试其他年份。"


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _str_items(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"Expected list for '{field_name}'")
    out: list[str] = []
    for idx, item in enumerate(value):
        if not isinstance(item, str):
            raise ValueError(f"Expected string for '{field_name}[{idx}]'")
        stripped = item.strip()
        if stripped:
            out.append(stripped)
    return out


def _normalize_region_code(value: str) -> str:
    return value.strip().upper()


@dataclass(frozen=True, slots=True)
class Regime:
    """One political entity of a snapshot and the region codes it holds."""

    name: str
    color: str
    region_codes: tuple[str, ...]
    events: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Regime:
        name = _require_str(data.get("name"), "regimes[].name")
        color = _require_str(data.get("color"), "regimes[].color")
        codes_raw = data.get("regionCodes", data.get("isoCodes"))
        if codes_raw is None:
            raise ValueError(f"Regime '{name}' is missing 'regionCodes'")
        codes = tuple(
            _normalize_region_code(code)
            for code in _str_items(codes_raw, "regimes[].regionCodes")
        )
        if "events" not in data:
            raise ValueError(f"Regime '{name}' is missing 'events'")
        events = tuple(_str_items(data["events"], "regimes[].events"))
        return cls(name=name, color=color, region_codes=codes, events=events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "color": self.color,
            "regionCodes": list(self.region_codes),
            "events": list(self.events),
        }


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Political situation for one committed year."""

    year: int
    summary: str
    regimes: tuple[Regime, ...] = ()
    is_fallback: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, year: int) -> Snapshot:
        """Build a snapshot from a generated payload.

        The payload must carry its own `year`, but the requested year wins
        since the generator may renumber BCE years.
        """
        missing = [key for key in ("year", "summary", "regimes") if key not in data]
        if missing:
            raise ValueError(f"Missing required field(s): {', '.join(missing)}")
        payload_year = data["year"]
        if isinstance(payload_year, bool) or not isinstance(payload_year, int):
            raise ValueError("Expected integer for 'year'")
        summary_raw = data["summary"]
        if not isinstance(summary_raw, str):
            raise ValueError("Expected string for 'summary'")
        summary = summary_raw.strip()
        regimes_raw = data.get("regimes")
        if not isinstance(regimes_raw, list):
            raise ValueError("Expected list for 'regimes'")
        regimes: list[Regime] = []
        for idx, item in enumerate(regimes_raw):
            if not isinstance(item, Mapping):
                raise ValueError(f"Expected mapping at regimes[{idx}]")
            regimes.append(Regime.from_mapping(item))
        return cls(year=normalize_year(year), summary=summary, regimes=tuple(regimes))

    @classmethod
    def fallback(cls, year: int) -> Snapshot:
        return cls(
            year=normalize_year(year),
            summary=FALLBACK_SUMMARY,
            regimes=(),
            is_fallback=True,
        )

    def regime_named(self, name: str) -> Regime | None:
        for regime in self.regimes:
            if regime.name == name:
                return regime
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "summary": self.summary,
            "regimes": [regime.to_dict() for regime in self.regimes],
            "is_fallback": self.is_fallback,
        }


@dataclass(frozen=True, slots=True)
class MapFeature:
    """Static map region; `geometry` is a shapely shape in lon/lat degrees."""

    region_code: str
    display_name: str
    geometry: Any = field(compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class Selection:
    """Result of clicking the map."""

    regime: Regime | None = None
    area_name: str | None = None

    @classmethod
    def cleared(cls) -> Selection:
        return cls(regime=None, area_name=None)

    @property
    def is_empty(self) -> bool:
        return self.regime is None and self.area_name in (None, BACKGROUND_AREA)


@dataclass(frozen=True, slots=True)
class OceanLabel:
    name: str
    lon: float
    lat: float


@dataclass(frozen=True, slots=True)
class PlaybackManifest:
    """Record of one playback run and the files it produced."""

    generated_at_utc: str
    config_hash_sha256: str
    start_year: int
    end_year: int
    step: int
    years: tuple[int, ...]
    fallback_years: tuple[int, ...]
    artifacts: Mapping[str, str]

    @classmethod
    def create(
        cls,
        *,
        config_hash_sha256: str,
        start_year: int,
        end_year: int,
        step: int,
        snapshots: tuple[Snapshot, ...],
        artifacts: Mapping[str, str],
    ) -> PlaybackManifest:
        return cls(
            generated_at_utc=datetime.now(timezone.utc).isoformat(),
            config_hash_sha256=config_hash_sha256,
            start_year=start_year,
            end_year=end_year,
            step=step,
            years=tuple(s.year for s in snapshots),
            fallback_years=tuple(s.year for s in snapshots if s.is_fallback),
            artifacts=artifacts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at_utc": self.generated_at_utc,
            "config_hash_sha256": self.config_hash_sha256,
            "start_year": self.start_year,
            "end_year": self.end_year,
            "step": self.step,
            "years": list(self.years),
            "fallback_years": list(self.fallback_years),
            "artifacts": dict(self.artifacts),
        }
