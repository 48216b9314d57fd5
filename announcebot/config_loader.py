"""announcebot.config_loader

Config loader for announcebot.

- Reads a YAML mapping (PyYAML); JSON is valid YAML and is accepted as well.
- Exposes a typed dataclass ``Settings`` with ``from_dict`` coercion and a
  ``load_config()`` helper that accepts an optional path override.
- Secrets live in the same file (or in ``ANNOUNCEBOT_SMTP_PASSWORD``) and are
  never logged; use ``Settings.redacted()`` for diagnostics.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .exceptions import ConfigError
from .models import DeliveryAttempt

logger = logging.getLogger(__name__)

CONFIG_ENV = "ANNOUNCEBOT_CONFIG"
PASSWORD_ENV = "ANNOUNCEBOT_SMTP_PASSWORD"
DEFAULT_CONFIG_PATH = "config.yaml"

_REDACTED = "***"


@dataclass
class SmtpSettings:
    """Outbound mail host and credentials."""

    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    starttls: bool = True

    @property
    def complete(self) -> bool:
        return bool(self.host and self.username and self.password)


@dataclass
class Settings:
    """Typed configuration for one deployment.

    Fields:
        feed_url: public iCalendar URL
        state_path: JSON ledger of sent fingerprints
        capture_path: file receiving the serialized message in dry-run mode
        title_prefix: marker an event title must start with (case-sensitive)
        summary_label: what matching events are called in the run summary
        horizon_days: forward window length in days
        timezone: IANA zone used for display and for floating feed times
        locale: locale for weekday and month names
        begin_offset_minutes: minutes between door opening and begin
        wrap_width: column width of the plain-text part
        presenter_label: label introducing the presenter line
        intro, door_label, begin_label, subject_template: message wording
        sender: From address
        smtp: outbound mail settings
        recipients: static recipient list with per-recipient extra headers
        log_level: logging level name
    """

    feed_url: str = ""
    state_path: str = "sent_messages.json"
    capture_path: str = "output.eml"
    title_prefix: str = "MakerTalk:"
    summary_label: str = "MakerTalks"
    horizon_days: float = 6.5
    timezone: str = "Europe/Zurich"
    locale: str = "de_CH"
    begin_offset_minutes: int = 30
    wrap_width: int = 72
    presenter_label: str = "Referent"
    intro: str = "Nächster MakerTalk im FabLab Winti:"
    door_label: str = "Türöffnung"
    begin_label: str = "Beginn"
    subject_template: str = "MakerTalk am {date}: {title}"
    sender: str = ""
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    recipients: list[DeliveryAttempt] = field(default_factory=list)
    log_level: str = "INFO"

    @property
    def horizon(self) -> timedelta:
        return timedelta(days=self.horizon_days)

    @property
    def begin_offset(self) -> timedelta:
        return timedelta(minutes=self.begin_offset_minutes)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Settings:
        """Create Settings from a plain mapping, applying defaults and validation.

        Numeric values are coerced; invalid ones fall back to the default with
        a warning. Structural errors (unknown time zone, malformed recipients)
        raise ``ConfigError``.
        """
        if data is None:
            data = {}
        defaults = cls()

        def _coerce(key: str, kind: type, default: Any) -> Any:
            raw = data.get(key, default)
            try:
                return kind(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not a valid %s; using default %r", key, raw, kind.__name__, default)
                return default

        horizon_days = _coerce("horizon_days", float, defaults.horizon_days)
        if horizon_days <= 0:
            logger.warning("horizon_days %r must be positive; using %r", horizon_days, defaults.horizon_days)
            horizon_days = defaults.horizon_days

        wrap_width = _coerce("wrap_width", int, defaults.wrap_width)
        if wrap_width < 20:
            logger.warning("wrap_width %d below minimum; coercing to 20", wrap_width)
            wrap_width = 20

        tz_name = str(data.get("timezone") or defaults.timezone)
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown time zone {tz_name!r}") from exc

        def _text(key: str) -> str:
            value = data.get(key)
            return str(value) if value is not None else getattr(defaults, key)

        return cls(
            feed_url=_text("feed_url"),
            state_path=_text("state_path"),
            capture_path=_text("capture_path"),
            title_prefix=_text("title_prefix"),
            summary_label=_text("summary_label"),
            horizon_days=horizon_days,
            timezone=tz_name,
            locale=_text("locale"),
            begin_offset_minutes=_coerce("begin_offset_minutes", int, defaults.begin_offset_minutes),
            wrap_width=wrap_width,
            presenter_label=_text("presenter_label"),
            intro=_text("intro"),
            door_label=_text("door_label"),
            begin_label=_text("begin_label"),
            subject_template=_text("subject_template"),
            sender=_text("sender"),
            smtp=_smtp_from_dict(data.get("smtp")),
            recipients=_recipients_from_list(data.get("recipients")),
            log_level=_text("log_level").upper(),
        )

    def validate_for_live(self) -> None:
        """Raise ``ConfigError`` unless everything live delivery needs is present."""
        missing = []
        if not self.sender:
            missing.append("sender")
        if not self.smtp.host:
            missing.append("smtp.host")
        if not self.smtp.username:
            missing.append("smtp.username")
        if not self.smtp.password:
            missing.append(f"smtp.password (or {PASSWORD_ENV})")
        if not self.recipients:
            missing.append("recipients")
        if missing:
            raise ConfigError("Missing configuration for live delivery: " + ", ".join(missing))

    def redacted(self) -> dict[str, Any]:
        """Mapping of the settings safe to log: passwords and header values masked."""
        data = asdict(self)
        data["smtp"]["password"] = _REDACTED if self.smtp.password else ""
        data["recipients"] = [
            {"recipient": r.recipient, "extra_headers": {k: _REDACTED for k in r.extra_headers}}
            for r in self.recipients
        ]
        return data


def _smtp_from_dict(raw: Any) -> SmtpSettings:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Config `smtp` must be a mapping")
    try:
        port = int(raw.get("port", 587))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config smtp.port={raw.get('port')!r} is not an int") from exc

    # The environment wins over the config file.
    password = os.environ.get(PASSWORD_ENV) or raw.get("password") or ""
    return SmtpSettings(
        host=str(raw.get("host") or ""),
        port=port,
        username=str(raw.get("username") or ""),
        password=str(password),
        starttls=bool(raw.get("starttls", True)),
    )


def _recipients_from_list(raw: Any) -> list[DeliveryAttempt]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ConfigError("Config `recipients` must be a list")

    recipients: list[DeliveryAttempt] = []
    for item in raw:
        if isinstance(item, str):
            recipients.append(DeliveryAttempt(recipient=item))
            continue
        if not isinstance(item, dict) or not item.get("address"):
            raise ConfigError(f"Recipient entry needs an `address`: {item!r}")
        headers = item.get("headers") or {}
        if not isinstance(headers, dict):
            raise ConfigError(f"Recipient headers must be a mapping for {item['address']!r}")
        recipients.append(
            DeliveryAttempt(
                recipient=str(item["address"]),
                extra_headers={str(k): str(v) for k, v in headers.items()},
            )
        )
    return recipients


def resolve_config_path(path: str | None = None) -> Path:
    """``path`` if given, else ``$ANNOUNCEBOT_CONFIG``, else ``./config.yaml``."""
    return Path(path or os.environ.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH)


def load_config(path: str | None = None) -> Settings:
    """Load configuration from a YAML file and return a Settings instance.

    Raises:
        ConfigError: if the file is missing, unreadable, not a mapping, or
            contains invalid values. There is no usable default recipient
            list, so a missing file is an error.
    """
    p = resolve_config_path(path)
    logger.debug("Loading config from %s", p)
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file {p} not found") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {p}: {exc}") from exc

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {p} is not valid YAML: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {p} must contain a mapping at top level")

    settings = Settings.from_dict(raw)
    logger.info("Loaded configuration from %s", p)
    logger.debug("Configuration values: %s", settings.redacted())
    return settings
