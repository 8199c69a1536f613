"""Year normalization and display helpers.

The historical calendar has no year zero: 1 BCE is followed directly by 1 CE.
Every entry point that commits a year to the pipeline goes through
`normalize_year` so a zero never reaches the cache or the renderer.
"""

from __future__ import annotations


def normalize_year(year: int) -> int:
    """Map year 0 onto year 1; every other year passes through."""
    value = int(year)
    return 1 if value == 0 else value


def commit_year(year: int | None, *, min_year: int, max_year: int) -> int:
    """Clamp a user-entered year into the timeline range, then normalize it."""
    if min_year > max_year:
        raise ValueError(f"Invalid timeline range: {min_year} > {max_year}")
    value = min_year if year is None else int(year)
    value = max(min_year, min(max_year, value))
    return normalize_year(value)


def format_year(year: int) -> str:
    if year < 0:
        return f"公元前 {abs(year)}"
    return f"公元 {year}"
