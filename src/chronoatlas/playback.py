"""Automatic stepping through a year range."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from .models import Snapshot
from .years import format_year, normalize_year


_LOGGER = logging.getLogger("chronoatlas.playback")

SnapshotGetter = Callable[[int], Awaitable[Snapshot]]
YearObserver = Callable[[int, Snapshot], Any]
Sleep = Callable[[float], Awaitable[Any]]


class PlaybackRangeError(ValueError):
    """Raised when a playback range or step is unusable."""


class CancellationToken:
    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass(slots=True)
class PlaybackSession:
    start_year: int
    end_year: int
    step: int
    current_year: int
    running: bool = True
    token: CancellationToken = field(default_factory=CancellationToken)


class PlaybackOrchestrator:
    """Walk `[start, end]` in steps, publishing each year's snapshot in order.

    Each iteration awaits the snapshot, hands it to `on_year` (plain or async
    callable), then waits `pacing_delay_s` before advancing. Stopping is
    cooperative: the token is checked after the fetch and after the pacing
    delay, so a stop never interrupts a notification half way.
    """

    def __init__(
        self,
        get_snapshot: SnapshotGetter,
        on_year: YearObserver,
        *,
        pacing_delay_s: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if pacing_delay_s < 0:
            raise ValueError("pacing_delay_s must be >= 0")
        self._get_snapshot = get_snapshot
        self._on_year = on_year
        self._pacing_delay_s = pacing_delay_s
        self._sleep = sleep
        self._session: PlaybackSession | None = None
        self._task: asyncio.Task[None] | None = None
        self.last_error: BaseException | None = None

    @property
    def running(self) -> bool:
        return self._session is not None and self._session.running

    @property
    def session(self) -> PlaybackSession | None:
        return self._session

    def start(self, start_year: int, end_year: int, step: int) -> asyncio.Task[None] | None:
        """Begin a run, or stop the current one if playback is already active.

        Returns the task driving the run, or None when the call acted as stop.
        """
        if self.running:
            self.stop()
            return None
        if start_year > end_year:
            raise PlaybackRangeError(
                f"Start year {format_year(start_year)} is after end year {format_year(end_year)}"
            )
        if step <= 0:
            raise PlaybackRangeError(f"Playback step must be positive, got {step}")

        session = PlaybackSession(
            start_year=start_year,
            end_year=end_year,
            step=step,
            current_year=start_year,
        )
        self._session = session
        self.last_error = None
        _LOGGER.info(
            "[playback] %s -> %s every %d years",
            format_year(normalize_year(start_year)),
            format_year(normalize_year(end_year)),
            step,
        )
        self._task = asyncio.get_running_loop().create_task(self._run(session))
        return self._task

    def stop(self) -> None:
        session = self._session
        if session is None or not session.running:
            return
        session.token.cancel()
        session.running = False
        _LOGGER.info("[playback] stop requested at %s", format_year(normalize_year(session.current_year)))

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self, session: PlaybackSession) -> None:
        token = session.token
        last_committed: int | None = None
        try:
            while session.current_year <= session.end_year:
                year = normalize_year(session.current_year)
                if last_committed is not None and year <= last_committed:
                    # 0 and 1 both commit year 1
                    session.current_year += session.step
                    continue
                snapshot = await self._get_snapshot(year)
                if token.cancelled:
                    return
                result = self._on_year(year, snapshot)
                if inspect.isawaitable(result):
                    await result
                last_committed = year
                await self._sleep(self._pacing_delay_s)
                if token.cancelled:
                    return
                session.current_year += session.step
            _LOGGER.info("[playback] finished at %s", format_year(normalize_year(session.end_year)))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.last_error = exc
            _LOGGER.exception("[playback] aborted at %s", format_year(normalize_year(session.current_year)))
        finally:
            session.running = False
            if self._session is session:
                self._session = None
