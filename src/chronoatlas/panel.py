"""Information panel text and the HTML atlas index for playback runs."""

from __future__ import annotations

import os
from dataclasses import dataclass
from html import escape
from pathlib import Path
from typing import Sequence

from .models import Selection, Snapshot
from .region_index import find_conflicts
from .years import format_year


NO_EVENTS_TEXT = "暂无事件记录"
UNCLAIMED_AREA_TEXT = "该地区在此年份未被归类为主要统一政权，或属于独立/过渡状态。"


@dataclass(frozen=True, slots=True)
class AtlasEntry:
    year: int
    summary: str
    regime_count: int
    is_fallback: bool
    image_path: Path | None = None


def format_snapshot_lines(snapshot: Snapshot) -> list[str]:
    lines = [f"[INFO] {format_year(snapshot.year)}: {snapshot.summary}"]
    if snapshot.is_fallback:
        lines.append(f"[WARN] {format_year(snapshot.year)}: snapshot unavailable (fallback)")
        return lines
    for regime in snapshot.regimes:
        codes = ", ".join(regime.region_codes) or "-"
        lines.append(f"[INFO]   {regime.name} {regime.color} [{codes}]")
    conflicts = find_conflicts(snapshot)
    for code, names in sorted(conflicts.items()):
        lines.append(f"[WARN]   {code} claimed by {' / '.join(names)}; {names[-1]} wins")
    return lines


def format_selection_lines(selection: Selection, *, year: int) -> list[str]:
    if selection.is_empty:
        return ["[INFO] nothing selected"]
    if selection.regime is None:
        return [
            f"[INFO] {selection.area_name}",
            f"[INFO]   {UNCLAIMED_AREA_TEXT}",
        ]
    regime = selection.regime
    lines = [f"[INFO] {regime.name} ({selection.area_name})"]
    lines.append(f"[INFO]   {format_year(year)} 重大事件")
    events = regime.events or (NO_EVENTS_TEXT,)
    lines.extend(f"[INFO]   - {event}" for event in events)
    return lines


def write_atlas_index(
    *,
    entries: Sequence[AtlasEntry],
    output_html: Path,
    title: str = "欧洲时空图",
    thumbnail_width_px: int = 480,
) -> Path:
    """Write an HTML page listing each visited year with its rendered map."""
    cards: list[str] = []
    for entry in entries:
        status = "fallback" if entry.is_fallback else "ready"
        if entry.image_path is not None:
            rel = _relative_src(entry.image_path, output_html.parent)
            image_cell = (
                f"  <img src='{escape(rel)}' alt='{escape(format_year(entry.year))}' "
                f"width='{thumbnail_width_px}'>"
            )
        else:
            image_cell = "  <div class='placeholder'>Map not rendered</div>"
        cards.append(
            "\n".join(
                [
                    "<div class='card'>",
                    f"  <h3>{escape(format_year(entry.year))}</h3>",
                    f"  <p class='status {status}'>{status.upper()} | regimes: {entry.regime_count}</p>",
                    f"  <p class='summary'>{escape(entry.summary)}</p>",
                    image_cell,
                    "</div>",
                ]
            )
        )

    html = "\n".join(
        [
            "<!doctype html>",
            "<html lang='zh'>",
            "<head>",
            "  <meta charset='utf-8'>",
            "  <meta name='viewport' content='width=device-width, initial-scale=1'>",
            f"  <title>{escape(title)}</title>",
            "  <style>",
            "    body { font-family: Arial, sans-serif; margin: 16px; background: #f8fafc; }",
            "    .grid { display: grid; grid-template-columns: repeat(auto-fill, minmax(320px, 1fr)); gap: 16px; }",
            "    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; background: #fff; }",
            "    .card h3 { margin: 0 0 8px 0; font-size: 16px; }",
            "    .status { margin: 0 0 8px 0; font-weight: 700; font-size: 13px; }",
            "    .status.ready { color: #197a2f; }",
            "    .status.fallback { color: #b22d2d; }",
            "    .summary { margin: 0 0 8px 0; font-size: 13px; color: #333; }",
            "    img { display: block; max-width: 100%; }",
            "    .placeholder { border: 1px dashed #bbb; color: #666; border-radius: 6px; padding: 12px; font-size: 13px; }",
            "  </style>",
            "</head>",
            "<body>",
            f"  <h1>{escape(title)}</h1>",
            "  <div class='grid'>",
            *cards,
            "  </div>",
            "</body>",
            "</html>",
            "",
        ]
    )
    output_html.parent.mkdir(parents=True, exist_ok=True)
    output_html.write_text(html, encoding="utf-8")
    return output_html


def _relative_src(path: Path, base: Path) -> str:
    return Path(os.path.relpath(path.resolve(), base.resolve())).as_posix()
