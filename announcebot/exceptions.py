"""Exception hierarchy for announcebot.

Each failure class maps to one propagation rule of the run:

- ``StateUnavailableError`` and ``FeedUnavailableError`` abort the run before
  (or instead of) any mail side effect.
- ``MalformedEntryError`` is caught per calendar entry; the entry is skipped
  and logged, the run continues.
- ``RenderError`` aborts the run so a half-rendered announcement is never
  recorded as sent.
- ``TransportError`` never aborts: it is recorded in the delivery result and
  surfaced in the run output.
"""


class AnnounceBotError(Exception):
    """Base exception for all announcebot errors."""


class ConfigError(AnnounceBotError):
    """Configuration file missing, unreadable or incomplete."""


class StateUnavailableError(AnnounceBotError):
    """The sent ledger cannot be written.

    Raised when:
    - the pre-flight writability check fails at startup
    - persisting a freshly recorded fingerprint fails

    Unreadable or corrupt ledgers are not an error; they load as empty.
    """


class FeedUnavailableError(AnnounceBotError):
    """The calendar feed could not be retrieved."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FeedParseError(FeedUnavailableError):
    """The calendar feed was retrieved but is not a readable iCalendar document."""


class MalformedEntryError(AnnounceBotError):
    """A matched calendar entry lacks a field needed to announce it."""

    def __init__(self, message: str, uid: str | None = None) -> None:
        super().__init__(message)
        self.uid = uid


class RenderError(AnnounceBotError):
    """Template rendering or date formatting failed for a candidate."""


class TransportError(AnnounceBotError):
    """Mail transport rejected a message or the connection failed."""

    def __init__(
        self,
        message: str,
        recipient: str | None = None,
        refused: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.recipient = recipient
        self.refused = dict(refused or {})
