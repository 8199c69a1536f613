"""Region-code to regime lookup derived from one snapshot."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping

from .models import Regime, Snapshot


_LOGGER = logging.getLogger("chronoatlas.region_index")

EMPTY_INDEX: Mapping[str, Regime] = MappingProxyType({})


def build_index(snapshot: Snapshot | None) -> Mapping[str, Regime]:
    """Return a read-only region-code -> regime mapping for `snapshot`.

    When several regimes claim the same code the last one in snapshot order
    owns it.
    """
    if snapshot is None:
        return EMPTY_INDEX
    index: dict[str, Regime] = {}
    for regime in snapshot.regimes:
        for code in regime.region_codes:
            index[code] = regime
    conflicts = find_conflicts(snapshot)
    if conflicts:
        _LOGGER.debug(
            "Year %d has %d region codes claimed by several regimes: %s",
            snapshot.year,
            len(conflicts),
            ", ".join(sorted(conflicts)),
        )
    return MappingProxyType(index)


def find_conflicts(snapshot: Snapshot) -> dict[str, tuple[str, ...]]:
    """Region codes listed by more than one regime, with claimants in order."""
    claimants: dict[str, list[str]] = {}
    for regime in snapshot.regimes:
        for code in dict.fromkeys(regime.region_codes):
            claimants.setdefault(code, []).append(regime.name)
    return {code: tuple(names) for code, names in claimants.items() if len(names) > 1}
