"""Data models for the announcement pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntryKind(str, Enum):
    """Kind of a calendar feed item."""

    EVENT = "event"
    OTHER = "other"


class CalendarEntry(BaseModel):
    """One top-level item of the calendar feed.

    Non-event items (timezones, todos, journals) are kept as ``OTHER`` so the
    run summary can report the full feed size.
    """

    kind: EntryKind
    title: str = ""
    start_utc: Optional[datetime] = None
    description: Optional[str] = None
    uid: Optional[str] = None
    component: str = Field(default="VEVENT", description="iCalendar component name")

    model_config = ConfigDict(frozen=True)

    @field_validator("start_utc")
    @classmethod
    def _require_aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            raise ValueError("start_utc must be timezone-aware")
        return value


class AnnouncementCandidate(BaseModel):
    """An entry that passed the title and window filters, ready to render."""

    title: str
    presented_by: Optional[str] = None
    presenter_heading: Optional[str] = None
    body_html: str = ""
    start_local: datetime

    model_config = ConfigDict(frozen=True)


class RenderedMessage(BaseModel):
    """Rendered announcement.

    ``fingerprint`` is derived from ``html`` only; ``plain_text`` is excluded
    from identity.
    """

    subject: str
    html: str
    plain_text: str
    fingerprint: str

    model_config = ConfigDict(frozen=True)


class DeliveryAttempt(BaseModel):
    """One (message, recipient) pair."""

    recipient: str
    extra_headers: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class DeliveryResult(BaseModel):
    """Outcome of one delivery attempt as reported by the transport."""

    recipient: str
    ok: bool
    error: Optional[str] = None
    refused: dict[str, str] = Field(default_factory=dict)
    response: Optional[str] = None


class DispatchOutcome(BaseModel):
    """Outcome of dispatching one message to all recipients."""

    fingerprint: str
    subject: str
    mode: str
    results: list[DeliveryResult] = Field(default_factory=list)
    capture_path: Optional[Path] = None

    @property
    def failures(self) -> list[DeliveryResult]:
        """Results that did not reach their recipient."""
        return [r for r in self.results if not r.ok]


class RunSummary(BaseModel):
    """Per-run counters printed at the end of a run."""

    total_entries: int = 0
    events: int = 0
    matching_title: int = 0
    in_window: int = 0
    already_sent: int = 0
    skipped_malformed: int = 0
    dispatched: int = 0
    delivery_failures: int = 0
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    outcomes: list[DispatchOutcome] = Field(default_factory=list)

    @property
    def not_sent_yet(self) -> int:
        """Candidates in the window that were not in the ledger at check time."""
        return self.in_window - self.already_sent - self.skipped_malformed
