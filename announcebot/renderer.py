"""Announcement rendering: HTML from a Jinja2 template, plain text derived from it."""

from __future__ import annotations

import logging
from typing import Optional

from babel.core import UnknownLocaleError
from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape
from markupsafe import Markup

from .config_loader import Settings
from .date_format import format_long_date, format_short_date, format_time
from .deduplicator import fingerprint
from .exceptions import RenderError
from .html_to_text import HtmlToText, announcement_formats
from .models import AnnouncementCandidate, RenderedMessage

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "announcement.html"


def create_environment() -> Environment:
    """Jinja2 environment for the package templates.

    Autoescaping is on; description-derived fields are passed as ``Markup``
    because they already are HTML.
    """
    return Environment(
        loader=PackageLoader("announcebot", "templates"),
        autoescape=select_autoescape(["html"]),
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


class AnnouncementRenderer:
    """Render candidates into ``RenderedMessage`` objects.

    Any formatting failure raises ``RenderError``; a half-rendered
    announcement must never reach the dispatcher.
    """

    def __init__(self, settings: Settings, environment: Optional[Environment] = None) -> None:
        self.settings = settings
        self._env = environment or create_environment()
        self._converter = HtmlToText(
            wrap_width=settings.wrap_width, formats=announcement_formats()
        )

    def render(self, candidate: AnnouncementCandidate) -> RenderedMessage:
        html = self.render_html(candidate)
        plain_text = self.render_text(html)
        message = RenderedMessage(
            subject=self.render_subject(candidate),
            html=html,
            plain_text=plain_text,
            fingerprint=fingerprint(html),
        )
        logger.debug("Rendered %r (fingerprint %s)", message.subject, message.fingerprint[:12])
        return message

    def render_html(self, candidate: AnnouncementCandidate) -> str:
        start = candidate.start_local
        begin = start + self.settings.begin_offset
        try:
            template = self._env.get_template(TEMPLATE_NAME)
            return template.render(
                intro=self.settings.intro,
                date_line=format_long_date(start, self.settings.locale),
                door_label=self.settings.door_label,
                door_time=format_time(start),
                begin_label=self.settings.begin_label,
                begin_time=format_time(begin),
                title=candidate.title,
                presenter_heading=Markup(candidate.presenter_heading)
                if candidate.presenter_heading
                else None,
                body=Markup(candidate.body_html),
            )
        except (TemplateError, UnknownLocaleError, ValueError, KeyError) as exc:
            raise RenderError(f"Cannot render announcement {candidate.title!r}: {exc}") from exc

    def render_text(self, html: str) -> str:
        try:
            return self._converter.convert(html)
        except ValueError as exc:
            raise RenderError(f"Cannot derive plain text: {exc}") from exc

    def render_subject(self, candidate: AnnouncementCandidate) -> str:
        try:
            subject = self.settings.subject_template.format(
                date=format_short_date(candidate.start_local),
                title=candidate.title,
            )
        except (KeyError, IndexError, ValueError) as exc:
            raise RenderError(
                f"Invalid subject_template {self.settings.subject_template!r}: {exc}"
            ) from exc
        if "\r" in subject or "\n" in subject:
            raise RenderError(f"Subject contains a line break: {subject!r}")
        return subject
