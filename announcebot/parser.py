"""iCalendar feed parser.

Turns the raw feed text into ``CalendarEntry`` records. Every top-level
component of the calendar becomes one entry; non-events are kept as
``EntryKind.OTHER`` and filtered out downstream.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from icalendar import Calendar

from .exceptions import FeedParseError
from .models import CalendarEntry, EntryKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/Zurich"


def parse_calendar(raw_text: str | bytes, default_tz: str = DEFAULT_TIMEZONE) -> list[CalendarEntry]:
    """Parse ``raw_text`` into calendar entries.

    Floating times and all-day dates are interpreted in the calendar's
    ``X-WR-TIMEZONE`` when present, otherwise in ``default_tz``.

    Raises:
        FeedParseError: if the text is not an iCalendar document.
    """
    text = raw_text.decode("utf-8", "replace") if isinstance(raw_text, bytes) else raw_text
    if not text or not text.strip():
        raise FeedParseError("Calendar feed is empty")

    try:
        calendar = Calendar.from_ical(text)
    except Exception as exc:
        raise FeedParseError(f"Calendar feed is not valid iCalendar: {exc}") from exc

    feed_tz = _resolve_zone(_get_text(calendar, "X-WR-TIMEZONE"), default_tz)

    entries: list[CalendarEntry] = []
    for component in calendar.subcomponents:
        entries.append(_to_entry(component, feed_tz))

    events = sum(1 for e in entries if e.kind is EntryKind.EVENT)
    logger.debug("Parsed %d calendar components (%d events)", len(entries), events)
    return entries


def _to_entry(component: Any, feed_tz: ZoneInfo) -> CalendarEntry:
    name = str(getattr(component, "name", "") or "").upper()
    kind = EntryKind.EVENT if name == "VEVENT" else EntryKind.OTHER

    start_utc: Optional[datetime] = None
    if kind is EntryKind.EVENT:
        try:
            start_utc = _start_as_utc(component.get("DTSTART"), feed_tz)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Ignoring unreadable DTSTART on %s: %s", _get_text(component, "UID") or name, exc
            )

    return CalendarEntry(
        kind=kind,
        title=_get_text(component, "SUMMARY") or "",
        start_utc=start_utc,
        description=_get_text(component, "DESCRIPTION"),
        uid=_get_text(component, "UID"),
        component=name or "UNKNOWN",
    )


def _get_text(component: Any, key: str) -> Optional[str]:
    value = component.get(key)
    if value is None:
        return None
    if isinstance(value, list):
        # Repeated property; the first occurrence wins.
        value = value[0] if value else None
        if value is None:
            return None
    return str(value)


def _start_as_utc(prop: Any, feed_tz: ZoneInfo) -> Optional[datetime]:
    if prop is None:
        return None
    value = getattr(prop, "dt", prop)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=feed_tz)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        # All-day: midnight local time.
        return datetime.combine(value, time.min, tzinfo=feed_tz).astimezone(timezone.utc)

    raise TypeError(f"unsupported DTSTART value {value!r}")


def _resolve_zone(name: Optional[str], fallback: str) -> ZoneInfo:
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown time zone %r in calendar feed; ignoring", candidate)
    return ZoneInfo("UTC")
