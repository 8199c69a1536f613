"""Year-keyed snapshot cache in front of the generative source."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Protocol

from .generator import FetchError
from .models import Snapshot
from .years import format_year, normalize_year


_LOGGER = logging.getLogger("chronoatlas.cache")


class SnapshotSource(Protocol):
    async def fetch(self, year: int) -> Snapshot: ...


class SnapshotCache:
    """Memoize generated snapshots per year for the lifetime of a session.

    Successful snapshots are stored and returned as the same object on every
    later request. Failures degrade to `Snapshot.fallback(year)`, which is
    never stored, so the next request for that year tries the source again.
    Concurrent requests for an uncached year share a single in-flight fetch.

    With `max_entries=None` nothing is ever evicted. A bound turns the store
    into a least-recently-used cache.
    """

    def __init__(self, source: SnapshotSource, *, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1 when provided")
        self._source = source
        self._max_entries = max_entries
        self._entries: OrderedDict[int, Snapshot] = OrderedDict()
        self._inflight: dict[int, asyncio.Future[Snapshot]] = {}

    def __contains__(self, year: object) -> bool:
        return isinstance(year, int) and normalize_year(year) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, year: int) -> Snapshot | None:
        return self._entries.get(normalize_year(year))

    @property
    def years(self) -> tuple[int, ...]:
        return tuple(sorted(self._entries))

    async def get_snapshot(self, year: int) -> Snapshot:
        year = normalize_year(year)
        cached = self._lookup(year)
        if cached is not None:
            return cached

        pending = self._inflight.get(year)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_and_store(year))
            self._inflight[year] = pending
            pending.add_done_callback(lambda _fut, key=year: self._inflight.pop(key, None))
        # One waiter being cancelled must not cancel the fetch for the others.
        return await asyncio.shield(pending)

    def _lookup(self, year: int) -> Snapshot | None:
        snapshot = self._entries.get(year)
        if snapshot is not None and self._max_entries is not None:
            self._entries.move_to_end(year)
        return snapshot

    async def _fetch_and_store(self, year: int) -> Snapshot:
        try:
            snapshot = await self._source.fetch(year)
        except FetchError as exc:
            _LOGGER.error("Snapshot for %s unavailable: %s", format_year(year), exc)
            return Snapshot.fallback(year)
        if snapshot.year != year:
            snapshot = Snapshot(
                year=year,
                summary=snapshot.summary,
                regimes=snapshot.regimes,
                is_fallback=snapshot.is_fallback,
            )
        self._store(year, snapshot)
        return snapshot

    def _store(self, year: int, snapshot: Snapshot) -> None:
        self._entries[year] = snapshot
        if self._max_entries is None:
            return
        self._entries.move_to_end(year)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            _LOGGER.debug("Evicted cached snapshot for %s", format_year(evicted))
