"""Shared fixtures for announcebot tests."""

from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pytest

from announcebot.config_loader import Settings

FIXED_NOW = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


def make_event(
    uid: str,
    summary: Optional[str],
    dtstart: Optional[str],
    description: Optional[str] = None,
    extra: Iterable[str] = (),
) -> str:
    """Return one VEVENT block. ``dtstart`` is the full property line value part,
    e.g. ``":20261020T170000Z"`` or ``";VALUE=DATE:20261021"``."""
    lines = ["BEGIN:VEVENT", f"UID:{uid}", "DTSTAMP:20261001T000000Z"]
    if dtstart is not None:
        lines.append(f"DTSTART{dtstart}")
    if summary is not None:
        lines.append(f"SUMMARY:{summary}")
    if description is not None:
        lines.append(f"DESCRIPTION:{description}")
    lines.extend(extra)
    lines.append("END:VEVENT")
    return "\r\n".join(lines)


def make_calendar(*components: str, tz: Optional[str] = "Europe/Zurich") -> str:
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//announcebot tests//EN"]
    if tz:
        lines.append(f"X-WR-TIMEZONE:{tz}")
    lines.extend(components)
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


TODO_COMPONENT = "\r\n".join(
    ["BEGIN:VTODO", "UID:todo-1", "DTSTAMP:20261001T000000Z", "SUMMARY:MakerTalk: a todo", "END:VTODO"]
)


@pytest.fixture
def fixed_now() -> datetime:
    """Deterministic run snapshot: Monday 2026-10-19 08:00 UTC."""
    return FIXED_NOW


@pytest.fixture
def settings_data(tmp_path: Path) -> dict[str, Any]:
    """Plain mapping accepted by Settings.from_dict, isolated under tmp_path."""
    return {
        "feed_url": "https://calendar.example.org/basic.ics",
        "state_path": str(tmp_path / "sent_messages.json"),
        "capture_path": str(tmp_path / "output.eml"),
        "title_prefix": "MakerTalk:",
        "timezone": "Europe/Zurich",
        "locale": "de_CH",
        "sender": "info@makertalk.example",
        "smtp": {
            "host": "smtp.example.org",
            "port": 587,
            "username": "sender@makertalk.example",
            "password": "s3cret",
        },
        "recipients": [
            {"address": "list@makertalk.example", "headers": {"Approved": "mod-pass"}},
            {"address": "newsletter@example.org"},
        ],
    }


@pytest.fixture
def settings(settings_data: dict[str, Any]) -> Settings:
    return Settings.from_dict(settings_data)


@pytest.fixture
def sample_calendar() -> str:
    """Feed with one announceable talk, one talk outside the window, one
    unrelated event and one VTODO."""
    return make_calendar(
        make_event(
            "talk-1@test",
            "MakerTalk: Lasercutting",
            ":20261020T170000Z",
            "Referent: Jane Doe<br>Wir schneiden Holz.",
        ),
        make_event(
            "talk-2@test",
            "MakerTalk: Far away",
            ":20261105T180000Z",
            "Later.",
        ),
        make_event("open-1@test", "Open Lab", ":20261021T170000Z", "Everyone welcome"),
        TODO_COMPONENT,
    )
