"""Tests for the playback orchestrator."""

import asyncio

import pytest

from chronoatlas.models import Snapshot
from chronoatlas.playback import CancellationToken, PlaybackOrchestrator, PlaybackRangeError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class Recorder:
    def __init__(self) -> None:
        self.fetched: list[int] = []
        self.notified: list[int] = []
        self.sleeps: list[float] = []

    async def get_snapshot(self, year: int) -> Snapshot:
        self.fetched.append(year)
        return Snapshot(year=year, summary=str(year))

    def on_year(self, year: int, snapshot: Snapshot) -> None:
        assert snapshot.year == year
        self.notified.append(year)

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)


def _orchestrator(recorder: Recorder, **kwargs) -> PlaybackOrchestrator:
    return PlaybackOrchestrator(
        recorder.get_snapshot,
        kwargs.pop("on_year", recorder.on_year),
        pacing_delay_s=kwargs.pop("pacing_delay_s", 2.0),
        sleep=kwargs.pop("sleep", recorder.sleep),
    )


# ===================================================================
# Stepping
# ===================================================================


class TestStepping:
    @pytest.mark.anyio
    async def test_visits_range_in_order(self) -> None:
        rec = Recorder()
        orchestrator = _orchestrator(rec)
        task = orchestrator.start(1, 1000, 50)
        assert orchestrator.running
        await task

        expected = list(range(1, 1001, 50))
        assert rec.notified == expected
        assert rec.fetched == expected
        assert rec.sleeps == [2.0] * len(expected)
        assert not orchestrator.running
        assert orchestrator.session is None
        assert orchestrator.last_error is None

    @pytest.mark.anyio
    async def test_single_year_range(self) -> None:
        rec = Recorder()
        await _orchestrator(rec).start(476, 476, 10)
        assert rec.notified == [476]

    @pytest.mark.anyio
    async def test_range_crossing_zero_commits_one(self) -> None:
        rec = Recorder()
        await _orchestrator(rec).start(-100, 100, 50)
        assert rec.notified == [-100, -50, 1, 50, 100]
        assert 0 not in rec.fetched

    @pytest.mark.anyio
    async def test_unit_step_across_zero_visits_year_one_once(self) -> None:
        rec = Recorder()
        await _orchestrator(rec).start(-2, 2, 1)
        assert rec.notified == [-2, -1, 1, 2]
        assert rec.fetched == [-2, -1, 1, 2]
        assert len(rec.sleeps) == 4

    @pytest.mark.anyio
    async def test_fifty_year_steps_through_two_centuries(self) -> None:
        rec = Recorder()
        await _orchestrator(rec).start(1000, 1200, 50)
        assert rec.notified == [1000, 1050, 1100, 1150, 1200]

    @pytest.mark.anyio
    async def test_async_observer_is_awaited(self) -> None:
        rec = Recorder()
        seen: list[int] = []

        async def on_year(year: int, snapshot: Snapshot) -> None:
            await asyncio.sleep(0)
            seen.append(year)

        await _orchestrator(rec, on_year=on_year).start(10, 30, 10)
        assert seen == [10, 20, 30]


# ===================================================================
# Rejection
# ===================================================================


class TestRejection:
    @pytest.mark.anyio
    async def test_start_after_end(self) -> None:
        rec = Recorder()
        orchestrator = _orchestrator(rec)
        with pytest.raises(PlaybackRangeError):
            orchestrator.start(500, 100, 10)
        assert not orchestrator.running
        assert rec.fetched == []

    @pytest.mark.anyio
    @pytest.mark.parametrize("step", [0, -5])
    async def test_non_positive_step(self, step: int) -> None:
        orchestrator = _orchestrator(Recorder())
        with pytest.raises(PlaybackRangeError):
            orchestrator.start(1, 100, step)
        assert orchestrator.session is None

    def test_negative_pacing_rejected(self) -> None:
        with pytest.raises(ValueError):
            _orchestrator(Recorder(), pacing_delay_s=-1.0)


# ===================================================================
# Cancellation
# ===================================================================


class TestCancellation:
    def test_token(self) -> None:
        token = CancellationToken()
        assert not token.cancelled
        token.cancel()
        assert token.cancelled

    @pytest.mark.anyio
    async def test_stop_during_fetch_skips_notification(self) -> None:
        rec = Recorder()
        gate = asyncio.Event()

        async def slow_snapshot(year: int) -> Snapshot:
            rec.fetched.append(year)
            await gate.wait()
            return Snapshot(year=year, summary="")

        orchestrator = PlaybackOrchestrator(slow_snapshot, rec.on_year, sleep=rec.sleep)
        task = orchestrator.start(1, 1000, 50)
        await asyncio.sleep(0)
        orchestrator.stop()
        gate.set()
        await task

        assert rec.fetched == [1]
        assert rec.notified == []
        assert rec.sleeps == []

    @pytest.mark.anyio
    async def test_stop_during_delay_prevents_next_fetch(self) -> None:
        rec = Recorder()
        holder: dict[str, PlaybackOrchestrator] = {}

        async def stopping_sleep(delay: float) -> None:
            rec.sleeps.append(delay)
            holder["o"].stop()

        orchestrator = _orchestrator(rec, sleep=stopping_sleep)
        holder["o"] = orchestrator
        await orchestrator.start(1, 1000, 50)

        assert rec.notified == [1]
        assert rec.fetched == [1]

    @pytest.mark.anyio
    async def test_stop_after_1050_never_reaches_1100(self) -> None:
        rec = Recorder()
        holder: dict[str, PlaybackOrchestrator] = {}

        async def stopping_sleep(delay: float) -> None:
            rec.sleeps.append(delay)
            if rec.notified[-1] == 1050:
                holder["o"].stop()

        orchestrator = _orchestrator(rec, sleep=stopping_sleep)
        holder["o"] = orchestrator
        await orchestrator.start(1000, 1200, 50)

        assert rec.notified == [1000, 1050]
        assert 1100 not in rec.fetched
        assert not orchestrator.running

    @pytest.mark.anyio
    async def test_start_while_running_toggles_off(self) -> None:
        rec = Recorder()
        gate = asyncio.Event()

        async def gated_sleep(delay: float) -> None:
            await gate.wait()

        orchestrator = _orchestrator(rec, sleep=gated_sleep)
        task = orchestrator.start(1, 1000, 50)
        await asyncio.sleep(0)
        assert orchestrator.start(1, 1000, 50) is None
        assert not orchestrator.running
        gate.set()
        await task
        assert rec.notified == [1]

    @pytest.mark.anyio
    async def test_stop_is_idempotent(self) -> None:
        orchestrator = _orchestrator(Recorder())
        orchestrator.stop()
        task = orchestrator.start(1, 10, 5)
        orchestrator.stop()
        orchestrator.stop()
        await task
        assert not orchestrator.running

    @pytest.mark.anyio
    async def test_restart_after_stop(self) -> None:
        rec = Recorder()
        orchestrator = _orchestrator(rec)
        first = orchestrator.start(1, 1000, 50)
        orchestrator.stop()
        await first
        rec.notified.clear()
        await orchestrator.start(100, 200, 50)
        assert rec.notified == [100, 150, 200]


# ===================================================================
# Failures
# ===================================================================


class TestFailures:
    @pytest.mark.anyio
    async def test_observer_error_ends_run(self) -> None:
        rec = Recorder()

        def broken(year: int, snapshot: Snapshot) -> None:
            raise RuntimeError("renderer exploded")

        orchestrator = _orchestrator(rec, on_year=broken)
        await orchestrator.start(1, 100, 10)
        assert isinstance(orchestrator.last_error, RuntimeError)
        assert rec.fetched == [1]
        assert not orchestrator.running
