"""CLI entrypoint for the chronoatlas historical map."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Sequence

from .cache import SnapshotCache
from .config import AppConfig, load_config
from .generator import SnapshotFetcher
from .geometry import MapGeometryStore
from .models import PlaybackManifest, Snapshot
from .offline import download_geometry, format_download_lines
from .panel import AtlasEntry, format_selection_lines, format_snapshot_lines, write_atlas_index
from .playback import PlaybackOrchestrator, PlaybackRangeError
from .recording import CapturePermissionError, FfmpegCaptureSource, RecordingSession
from .render import MapRenderer
from .session import AtlasSession
from .util import ensure_directories, setup_logging, sha256_file, write_json
from .validate import Validator, format_report_lines
from .years import format_year

LOGGER = logging.getLogger("chronoatlas.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chronoatlas",
        description="Historical political map of Europe, generated year by year.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default="config.yaml", help="Path to YAML config.")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    validate_p = subparsers.add_parser("validate", help="Validate config and environment.")
    add_common(validate_p)
    validate_p.add_argument(
        "--strict",
        action="store_true",
        help="Treat a missing API key or encoder as validation errors.",
    )

    render_p = subparsers.add_parser("render", help="Render one year's map to PNG.")
    add_common(render_p)
    render_p.add_argument("--year", type=int, required=True, help="Year to render (negative = BCE).")
    render_p.add_argument("--output", default=None, help="PNG path (default: frames dir).")

    locate_p = subparsers.add_parser("locate", help="Resolve what a map position shows in a year.")
    add_common(locate_p)
    locate_p.add_argument("--year", type=int, required=True, help="Year to inspect.")
    locate_p.add_argument("--x", type=float, default=None, help="Pixel x on the rendered map.")
    locate_p.add_argument("--y", type=float, default=None, help="Pixel y on the rendered map.")
    locate_p.add_argument("--lon", type=float, default=None, help="Longitude in degrees.")
    locate_p.add_argument("--lat", type=float, default=None, help="Latitude in degrees.")

    play_p = subparsers.add_parser("play", help="Step through a year range, saving each frame.")
    add_common(play_p)
    play_p.add_argument("--start", type=int, default=None, help="First year (default from config).")
    play_p.add_argument("--end", type=int, default=None, help="Last year (default from config).")
    play_p.add_argument("--step", type=int, default=None, help="Years per step (default from config).")
    play_p.add_argument(
        "--pacing",
        type=float,
        default=None,
        help="Seconds to hold each year (default from config).",
    )
    play_p.add_argument("--record", action="store_true", help="Also record a video of the run.")

    download_p = subparsers.add_parser(
        "download-geometry",
        help="Save the map geometry locally for offline use.",
    )
    add_common(download_p)
    download_p.add_argument("--output", default=None, help="GeoJSON path (default from config).")

    return parser


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    log_path = cfg.paths.logs_dir / "chronoatlas.log"
    setup_logging(log_path, verbose=args.verbose)
    ensure_directories(cfg.paths.build_directories)
    return cfg


def _new_session(cfg: AppConfig, fetcher: SnapshotFetcher) -> AtlasSession:
    return AtlasSession(
        timeline=cfg.timeline,
        cache=SnapshotCache(fetcher, max_entries=cfg.cache.max_entries),
        geometry=MapGeometryStore(cfg.geometry),
        renderer=MapRenderer(cfg.map),
    )


def _year_slug(year: int) -> str:
    return f"bce{abs(year):04d}" if year < 0 else f"ce{year:04d}"


def _run_validate(cfg: AppConfig, *, strict: bool) -> int:
    report = Validator(cfg).run(strict=strict)
    for line in format_report_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


async def _run_render(cfg: AppConfig, *, year: int, output: Path | None) -> int:
    fetcher = SnapshotFetcher(cfg.generator)
    try:
        session = _new_session(cfg, fetcher)
        if not await session.load_geometry():
            LOGGER.error("[ERROR] Map geometry unavailable: %s", session.geometry_error)
            return 1
        snapshot = await session.commit_year(year)
    finally:
        await fetcher.aclose()

    for line in format_snapshot_lines(snapshot):
        LOGGER.info(line)
    if session.error_banner:
        LOGGER.warning("[WARN] %s", session.error_banner)
    path = output or cfg.paths.frames_dir / f"year_{_year_slug(session.current_year)}.png"
    session.renderer.save_png(path)
    LOGGER.info("Map for %s written to %s", format_year(session.current_year), path)
    return 0


async def _run_locate(
    cfg: AppConfig,
    *,
    year: int,
    x: float | None,
    y: float | None,
    lon: float | None,
    lat: float | None,
) -> int:
    fetcher = SnapshotFetcher(cfg.generator)
    try:
        session = _new_session(cfg, fetcher)
        if not await session.load_geometry():
            LOGGER.error("[ERROR] Map geometry unavailable: %s", session.geometry_error)
            return 1
        await session.commit_year(year)
    finally:
        await fetcher.aclose()

    renderer = session.renderer
    if lon is not None and lat is not None:
        feature = renderer.feature_at_lonlat(lon, lat)
    else:
        feature = renderer.feature_at(float(x or 0.0), float(y or 0.0))
    renderer.on_pointer_click(feature)
    if session.error_banner:
        LOGGER.warning("[WARN] %s", session.error_banner)
    for line in format_selection_lines(session.selection, year=session.current_year):
        LOGGER.info(line)
    return 0


async def _run_play(
    cfg: AppConfig,
    *,
    start: int,
    end: int,
    step: int,
    pacing: float,
    record: bool,
) -> int:
    fetcher = SnapshotFetcher(cfg.generator)
    session = _new_session(cfg, fetcher)
    entries: list[AtlasEntry] = []
    snapshots: list[Snapshot] = []
    recorder: RecordingSession | None = None
    artifact: Path | None = None
    exit_code = 0
    try:
        if not await session.load_geometry():
            LOGGER.error("[ERROR] Map geometry unavailable: %s", session.geometry_error)
            return 1

        if record:
            recorder = RecordingSession(
                FfmpegCaptureSource(cfg.recording, input_fps=1.0 / pacing if pacing > 0 else 1.0),
                output_dir=cfg.paths.recordings_dir,
                filename_prefix=cfg.recording.filename_prefix,
                extension=cfg.recording.container,
            )
            try:
                await recorder.start()
            except CapturePermissionError as exc:
                LOGGER.error("[ERROR] Recording unavailable, continuing without it: %s", exc)
                recorder = None

        async def on_year(year: int, snapshot: Snapshot) -> None:
            session.show(year, snapshot)
            frame = session.renderer.to_png_bytes()
            frame_path = cfg.paths.frames_dir / f"year_{_year_slug(year)}.png"
            frame_path.write_bytes(frame)
            snapshots.append(snapshot)
            entries.append(
                AtlasEntry(
                    year=year,
                    summary=snapshot.summary,
                    regime_count=len(snapshot.regimes),
                    is_fallback=snapshot.is_fallback,
                    image_path=frame_path,
                )
            )
            if recorder is not None:
                await recorder.write_frame(frame)
            LOGGER.info("[playback] %s: %s", format_year(year), snapshot.summary)

        orchestrator = PlaybackOrchestrator(
            session.cache.get_snapshot,
            on_year,
            pacing_delay_s=pacing,
        )
        try:
            task = orchestrator.start(start, end, step)
        except PlaybackRangeError as exc:
            LOGGER.error("[ERROR] %s", exc)
            return 1
        if task is not None:
            await task
        if orchestrator.last_error is not None:
            LOGGER.error("[ERROR] Playback aborted: %s", orchestrator.last_error)
            exit_code = 1
    finally:
        if recorder is not None:
            artifact = await recorder.stop()
            await recorder.aclose()
        await fetcher.aclose()

    index_path = write_atlas_index(
        entries=entries,
        output_html=cfg.paths.reports_dir / "atlas_index.html",
    )
    LOGGER.info("Atlas index written to %s", index_path)
    artifacts = {
        "atlas_index": str(index_path),
        "frames_dir": str(cfg.paths.frames_dir),
        "recording": str(artifact) if artifact is not None else "",
    }
    manifest = PlaybackManifest.create(
        config_hash_sha256=sha256_file(cfg.source_path),
        start_year=start,
        end_year=end,
        step=step,
        snapshots=tuple(snapshots),
        artifacts=artifacts,
    )
    manifest_path = cfg.paths.reports_dir / "playback_manifest.json"
    write_json(manifest_path, manifest.to_dict())
    LOGGER.info("Playback manifest written to %s", manifest_path)
    if manifest.fallback_years:
        LOGGER.warning(
            "[WARN] %d of %d years were unavailable",
            len(manifest.fallback_years),
            len(manifest.years),
        )
    return exit_code


def _run_download_geometry(cfg: AppConfig, *, output: Path | None) -> int:
    report = download_geometry(cfg.geometry, output_path=output)
    for line in format_download_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "validate":
        return _run_validate(cfg, strict=bool(args.strict))
    if command == "render":
        output = Path(args.output) if args.output else None
        return asyncio.run(_run_render(cfg, year=int(args.year), output=output))
    if command == "locate":
        has_pixel = args.x is not None and args.y is not None
        has_lonlat = args.lon is not None and args.lat is not None
        if has_pixel == has_lonlat:
            LOGGER.error("[ERROR] locate needs either --x/--y or --lon/--lat")
            return 2
        return asyncio.run(
            _run_locate(cfg, year=int(args.year), x=args.x, y=args.y, lon=args.lon, lat=args.lat)
        )
    if command == "play":
        playback = cfg.playback
        return asyncio.run(
            _run_play(
                cfg,
                start=playback.start_year if args.start is None else int(args.start),
                end=playback.end_year if args.end is None else int(args.end),
                step=playback.step if args.step is None else int(args.step),
                pacing=playback.pacing_delay_s if args.pacing is None else max(float(args.pacing), 0.0),
                record=bool(args.record),
            )
        )
    if command == "download-geometry":
        output = Path(args.output) if args.output else None
        return _run_download_geometry(cfg, output=output)
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
