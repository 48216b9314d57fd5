"""Announcement pipeline.

fetch -> parse -> window filter -> (per candidate) extract -> render ->
dedup gate -> dispatch -> ledger update.

Candidates are processed strictly one after another: the ledger is persisted
after message N before message N+1 is checked, so a crash between two
messages never loses the record of the first.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Callable, Optional

from dateutil import parser as date_parser

from .config_loader import Settings
from .deduplicator import is_new
from .dispatcher import Dispatcher
from .exceptions import MalformedEntryError
from .fetcher import fetch_feed
from .field_extractor import extract_presenter
from .models import AnnouncementCandidate, CalendarEntry, RunSummary
from .parser import parse_calendar
from .renderer import AnnouncementRenderer
from .state_store import SentLedger
from .window_filter import select

logger = logging.getLogger(__name__)

NOW_ENV = "ANNOUNCEBOT_NOW"

FeedSource = Callable[[str], Awaitable[str]]


def now_utc() -> datetime:
    """Current UTC time as an aware datetime.

    ``ANNOUNCEBOT_NOW`` (ISO 8601) overrides the wall clock for reproducing a
    run; naive values are taken as UTC.
    """
    override = os.environ.get(NOW_ENV)
    if override:
        try:
            dt = date_parser.isoparse(override)
        except ValueError as exc:
            logger.warning("Ignoring unparseable %s=%r: %s", NOW_ENV, override, exc)
        else:
            if dt.tzinfo is None:
                return dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)
    return datetime.now(timezone.utc)


def build_candidate(entry: CalendarEntry, settings: Settings) -> AnnouncementCandidate:
    """Turn a selected entry into an announcement candidate.

    Raises:
        MalformedEntryError: if the entry lacks a start, a description, or a
            title after the marker prefix.
    """
    label = entry.uid or entry.title
    if entry.start_utc is None:
        raise MalformedEntryError(f"{label!r} has no start time", uid=entry.uid)
    if entry.description is None:
        raise MalformedEntryError(f"{label!r} has no description", uid=entry.uid)

    # Used in the Subject header: no line breaks.
    title = " ".join(entry.title[len(settings.title_prefix) :].split())
    if not title:
        raise MalformedEntryError(f"{label!r} has no title after the marker", uid=entry.uid)

    fields = extract_presenter(entry.description, settings.presenter_label)
    return AnnouncementCandidate(
        title=title,
        presented_by=fields.presenter,
        presenter_heading=fields.heading,
        body_html=fields.body,
        start_local=entry.start_utc.astimezone(settings.zone),
    )


class AnnouncementPipeline:
    """One run of the announcement pipeline."""

    def __init__(
        self,
        settings: Settings,
        ledger: SentLedger,
        dispatcher: Dispatcher,
        renderer: Optional[AnnouncementRenderer] = None,
        feed_source: Optional[FeedSource] = None,
    ) -> None:
        self.settings = settings
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.renderer = renderer or AnnouncementRenderer(settings)
        self._feed_source = feed_source or fetch_feed

    def prepare_state(self) -> None:
        """Load the ledger and prove it is writable before any side effect.

        Raises:
            StateUnavailableError: if the ledger cannot be written.
        """
        self.ledger.load()
        self.ledger.verify_writable()
        logger.debug("%d fingerprints already recorded", len(self.ledger))

    async def run(self, now: Optional[datetime] = None) -> RunSummary:
        """Execute the pipeline once.

        ``now`` is captured once and used for the whole run.

        Raises:
            StateUnavailableError, FeedUnavailableError, RenderError: abort the run.
        """
        now = now or now_utc()
        self.prepare_state()

        raw = await self._feed_source(self.settings.feed_url)
        entries = parse_calendar(raw, self.settings.timezone)
        selection = select(entries, now, self.settings.horizon, self.settings.title_prefix)

        summary = RunSummary(
            total_entries=selection.total,
            events=selection.events,
            matching_title=selection.matching_title,
            in_window=len(selection.selected),
            window_start=selection.window_start,
            window_end=selection.window_end,
        )

        for entry in selection.selected:
            try:
                candidate = build_candidate(entry, self.settings)
            except MalformedEntryError as exc:
                logger.warning("Skipping malformed calendar entry: %s", exc)
                summary.skipped_malformed += 1
                continue

            message = self.renderer.render(candidate)
            if not is_new(message.fingerprint, self.ledger.fingerprints):
                logger.debug("Already sent: %r", message.subject)
                summary.already_sent += 1
                continue

            outcome = await self.dispatcher.dispatch(message, self.ledger)
            summary.dispatched += 1
            summary.delivery_failures += len(outcome.failures)
            summary.outcomes.append(outcome)

        return summary


def format_summary(summary: RunSummary, label: str) -> str:
    """Human-readable run summary for stdout."""
    start = summary.window_start.isoformat() if summary.window_start else "?"
    end = summary.window_end.isoformat() if summary.window_end else "?"
    lines = [
        f"{summary.total_entries} entries in calendar ({summary.events} events)",
        f"{summary.matching_title} {label}",
        f"{summary.in_window} in interval {start} - {end}",
        f"{summary.not_sent_yet} not sent yet",
    ]
    if summary.skipped_malformed:
        lines.append(f"{summary.skipped_malformed} skipped as malformed")
    for outcome in summary.outcomes:
        for result in outcome.results:
            status = "ok" if result.ok else f"FAILED: {result.error}"
            lines.append(f"[{outcome.mode}] {outcome.subject} -> {result.recipient}: {status}")
        if outcome.capture_path is not None:
            lines.append(f"message written to {outcome.capture_path}")
    if summary.delivery_failures:
        lines.append(f"{summary.delivery_failures} delivery failures")
    return "\n".join(lines)
