"""Capture of rendered frames into a single video artifact."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import shutil
import time
from pathlib import Path
from typing import Callable, Protocol

from .config import RecordingConfig
from .util import unique_path


_LOGGER = logging.getLogger("chronoatlas.recording")

ChunkCallback = Callable[[bytes], None]
EndedListener = Callable[[], None]


class CapturePermissionError(RuntimeError):
    """Raised when a capture resource cannot be acquired."""


class RecordingState(str, enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"


class CaptureHandle(Protocol):
    def add_ended_listener(self, listener: EndedListener) -> None: ...

    async def write_frame(self, frame: bytes) -> None: ...

    async def flush(self) -> None: ...

    async def stop_tracks(self) -> None: ...


class CaptureSource(Protocol):
    async def acquire(self, on_chunk: ChunkCallback) -> CaptureHandle: ...


class FfmpegCaptureHandle:
    """A running encoder: PNG frames in on stdin, container chunks out on stdout."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        on_chunk: ChunkCallback,
        *,
        chunk_size: int,
    ) -> None:
        self._process = process
        self._on_chunk = on_chunk
        self._chunk_size = chunk_size
        self._listeners: list[EndedListener] = []
        self._closing = False
        self._stopped = False
        self._stderr = bytearray()
        self._stdout_pump = asyncio.ensure_future(self._pump_stdout())
        self._stderr_pump = asyncio.ensure_future(self._pump_stderr())

    def add_ended_listener(self, listener: EndedListener) -> None:
        self._listeners.append(listener)

    async def write_frame(self, frame: bytes) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise BrokenPipeError("Encoder input is closed")
        stdin.write(frame)
        await stdin.drain()

    async def flush(self) -> None:
        """Close the input and wait until every encoded chunk was delivered."""
        self._closing = True
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()
            await stdin.wait_closed()
        await self._stdout_pump
        await self._stderr_pump
        returncode = await self._process.wait()
        if returncode != 0:
            detail = self._stderr.decode("utf-8", errors="replace").strip()
            raise OSError(f"ffmpeg exited with status {returncode}: {detail[-400:]}")

    async def stop_tracks(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._closing = True
        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
            await self._process.wait()
        for pump in (self._stdout_pump, self._stderr_pump):
            if not pump.done():
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump

    async def _pump_stdout(self) -> None:
        stdout = self._process.stdout
        if stdout is None:
            return
        while True:
            chunk = await stdout.read(self._chunk_size)
            if not chunk:
                break
            self._on_chunk(chunk)
        if not self._closing:
            for listener in tuple(self._listeners):
                listener()

    async def _pump_stderr(self) -> None:
        stderr = self._process.stderr
        if stderr is None:
            return
        while True:
            chunk = await stderr.read(4096)
            if not chunk:
                break
            self._stderr.extend(chunk)


class FfmpegCaptureSource:
    def __init__(self, cfg: RecordingConfig, *, input_fps: float) -> None:
        self.cfg = cfg
        self.input_fps = input_fps

    def command(self, binary: str) -> list[str]:
        return [
            binary,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "image2pipe",
            "-framerate",
            f"{self.input_fps:g}",
            "-c:v",
            "png",
            "-i",
            "-",
            # Encoders using yuv420p need even frame dimensions.
            "-vf",
            "pad=ceil(iw/2)*2:ceil(ih/2)*2",
            "-c:v",
            self.cfg.codec,
            "-pix_fmt",
            "yuv420p",
            "-r",
            str(self.cfg.output_fps),
            "-f",
            self.cfg.container,
            "pipe:1",
        ]

    async def acquire(self, on_chunk: ChunkCallback) -> FfmpegCaptureHandle:
        binary = shutil.which(self.cfg.ffmpeg_binary)
        if binary is None:
            raise CapturePermissionError(f"Encoder not found on PATH: {self.cfg.ffmpeg_binary}")
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command(binary),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CapturePermissionError(f"Could not start encoder: {exc}") from exc
        _LOGGER.debug("[record] encoder started (pid=%s)", process.pid)
        return FfmpegCaptureHandle(process, on_chunk, chunk_size=self.cfg.chunk_size)


class RecordingSession:
    """Start/stop lifecycle around one capture handle.

    Each recording yields at most one artifact. Finalization runs once
    whether it was triggered by `stop()` or by the capture ending on its
    own; a `stop()` that arrives while finalization is already running waits
    for it and returns None.
    """

    def __init__(
        self,
        source: CaptureSource,
        *,
        output_dir: Path,
        filename_prefix: str,
        extension: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._output_dir = output_dir
        self._filename_prefix = filename_prefix
        self._extension = extension.lstrip(".")
        self._clock = clock
        self._state = RecordingState.IDLE
        self._handle: CaptureHandle | None = None
        self._chunks: list[bytes] = []
        self._finalizing: asyncio.Future[Path | None] | None = None
        self.artifacts: list[Path] = []

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def recording(self) -> bool:
        return self._state is RecordingState.RECORDING

    async def start(self) -> None:
        if self._state is RecordingState.RECORDING:
            _LOGGER.warning("[record] already recording")
            return
        chunks: list[bytes] = []
        handle = await self._source.acquire(chunks.append)
        self._chunks = chunks
        self._handle = handle
        self._state = RecordingState.RECORDING
        handle.add_ended_listener(self._on_capture_ended)
        _LOGGER.info("[record] started")

    async def write_frame(self, frame: bytes) -> bool:
        """Forward one encoded frame; False when nothing is recording."""
        handle = self._handle
        if self._state is not RecordingState.RECORDING or handle is None or self._finalizing is not None:
            return False
        try:
            await handle.write_frame(frame)
        except OSError as exc:
            _LOGGER.warning("[record] frame dropped: %s", exc)
            return False
        return True

    async def stop(self) -> Path | None:
        pending = self._finalizing
        if pending is not None:
            await asyncio.shield(pending)
            return None
        if self._state is not RecordingState.RECORDING:
            return None
        self._finalizing = asyncio.ensure_future(self._finalize())
        return await asyncio.shield(self._finalizing)

    async def aclose(self) -> None:
        pending = self._finalizing
        if pending is not None:
            await asyncio.shield(pending)
        elif self._state is RecordingState.RECORDING:
            await self.stop()

    def _on_capture_ended(self) -> None:
        if self._state is not RecordingState.RECORDING or self._finalizing is not None:
            return
        _LOGGER.warning("[record] capture ended externally; finalizing")
        self._finalizing = asyncio.ensure_future(self._finalize())
        self._finalizing.add_done_callback(_log_finalize_failure)

    async def _finalize(self) -> Path | None:
        handle = self._handle
        chunks = self._chunks
        try:
            if handle is not None:
                try:
                    await handle.flush()
                except OSError as exc:
                    _LOGGER.warning("[record] flush failed: %s", exc)
            if not chunks:
                _LOGGER.warning("[record] no data captured; nothing written")
                return None
            self._output_dir.mkdir(parents=True, exist_ok=True)
            stamp = int(self._clock() * 1000)
            path = unique_path(
                self._output_dir / f"{self._filename_prefix}_{stamp}.{self._extension}"
            )
            path.write_bytes(b"".join(chunks))
            self.artifacts.append(path)
            _LOGGER.info("[record] wrote %s (%d bytes)", path, path.stat().st_size)
            return path
        finally:
            if handle is not None:
                await handle.stop_tracks()
            self._handle = None
            self._chunks = []
            self._state = RecordingState.IDLE
            self._finalizing = None


def _log_finalize_failure(future: asyncio.Future[Path | None]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        _LOGGER.error("[record] finalizing after external end failed: %s", exc)
