"""Locale-aware date and time formatting for announcements.

Weekday and month names come from Babel's CLDR data. When Babel has no data
for the configured locale, the built-in German tables below are used so a
missing locale never aborts a run.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache

from babel import Locale, UnknownLocaleError
from babel.dates import format_date

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "de_CH"

# Index 1..7 = Monday..Sunday (ISO weekday), 1..12 = January..December.
WEEKDAYS = ("", "Montag", "Dienstag", "Mittwoch", "Donnerstag", "Freitag", "Samstag", "Sonntag")
MONTHS = (
    "",
    "Januar",
    "Februar",
    "März",
    "April",
    "Mai",
    "Juni",
    "Juli",
    "August",
    "September",
    "Oktober",
    "November",
    "Dezember",
)


@lru_cache(maxsize=8)
def resolve_locale(locale: str) -> Locale | None:
    """Return Babel's Locale for ``locale`` or None when it has no data."""
    try:
        return Locale.parse(locale)
    except (UnknownLocaleError, ValueError) as exc:
        logger.warning("Locale %r unavailable (%s); using built-in month and weekday names", locale, exc)
        return None


def format_long_date(dt: datetime, locale: str = DEFAULT_LOCALE) -> str:
    """``Weekday, D. Month Y``, e.g. ``Montag, 19. Oktober 2026``."""
    babel_locale = resolve_locale(locale)
    if babel_locale is None:
        return f"{WEEKDAYS[dt.isoweekday()]}, {dt.day}. {MONTHS[dt.month]} {dt.year}"
    return format_date(dt.date(), "EEEE, d. MMMM y", locale=babel_locale)


def format_short_date(dt: datetime) -> str:
    """``D.M.Y`` without zero padding, e.g. ``9.3.2026``."""
    return f"{dt.day}.{dt.month}.{dt.year}"


def format_time(dt: datetime) -> str:
    """24-hour ``HH:MM``."""
    return dt.strftime("%H:%M")
