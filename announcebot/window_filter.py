"""Title and time-window selection of calendar entries.

The window is the half-open interval ``[now, now + horizon)`` computed once
per run from a single ``now`` snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .models import CalendarEntry, EntryKind

logger = logging.getLogger(__name__)

DEFAULT_HORIZON = timedelta(days=6.5)


@dataclass
class WindowSelection:
    """Result of ``select`` with the counts needed for the run summary."""

    window_start: datetime
    window_end: datetime
    total: int = 0
    events: int = 0
    matching_title: int = 0
    selected: list[CalendarEntry] = field(default_factory=list)


def compute_window(now: datetime, horizon: timedelta = DEFAULT_HORIZON) -> tuple[datetime, datetime]:
    """Return ``(now, now + horizon)``.

    Raises:
        ValueError: if ``now`` is naive or ``horizon`` is not positive.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    if horizon <= timedelta(0):
        raise ValueError("horizon must be positive")
    return now, now + horizon


def matches_title(entry: CalendarEntry, prefix: str) -> bool:
    """Exact, case-sensitive prefix match on the entry title."""
    return bool(prefix) and entry.title.startswith(prefix)


def in_window(entry: CalendarEntry, start: datetime, end: datetime) -> bool:
    """True when ``start <= entry.start_utc < end``."""
    if entry.start_utc is None:
        return False
    return start <= entry.start_utc < end


def select(
    entries: Iterable[CalendarEntry],
    now: datetime,
    horizon: timedelta,
    prefix: str,
) -> WindowSelection:
    """Select events whose title starts with ``prefix`` and that start in the window."""
    start, end = compute_window(now, horizon)
    result = WindowSelection(window_start=start, window_end=end)

    for entry in entries:
        result.total += 1
        if entry.kind is not EntryKind.EVENT:
            continue
        result.events += 1
        if not matches_title(entry, prefix):
            continue
        result.matching_title += 1
        if in_window(entry, start, end):
            result.selected.append(entry)
        else:
            logger.debug("Outside window: %r starts %s", entry.title, entry.start_utc)

    logger.debug(
        "Window %s - %s: %d events, %d matching, %d selected",
        start.isoformat(),
        end.isoformat(),
        result.events,
        result.matching_title,
        len(result.selected),
    )
    return result
