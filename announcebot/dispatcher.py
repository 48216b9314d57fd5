"""Message delivery: live SMTP or local capture.

Both modes build the outgoing message with ``compose_message`` so a captured
message is byte-for-byte what live mode would transmit (apart from the
Date and Message-ID headers).

After an attempt the fingerprint is recorded in the ledger and persisted
immediately, whatever the transport reported. Transport failures are
returned in the outcome and logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from collections.abc import Sequence
from email import policy
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from .config_loader import Settings, SmtpSettings
from .exceptions import TransportError
from .models import DeliveryAttempt, DeliveryResult, DispatchOutcome, RenderedMessage
from .state_store import SentLedger

logger = logging.getLogger(__name__)

LIVE = "live"
CAPTURE = "capture"

# CRLF line endings, as transmitted on the wire.
WIRE_POLICY = policy.SMTP


def compose_message(message: RenderedMessage, sender: str, attempt: DeliveryAttempt) -> EmailMessage:
    """Build the multipart/alternative message for one recipient."""
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = attempt.recipient
    msg["Subject"] = message.subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid(domain=sender.rpartition("@")[2] or None)
    for name, value in attempt.extra_headers.items():
        msg[name] = value
    msg.set_content(message.plain_text)
    msg.add_alternative(message.html, subtype="html")
    return msg


def serialize(msg: EmailMessage) -> bytes:
    return msg.as_bytes(policy=WIRE_POLICY)


class Transport(Protocol):
    """Sends one composed message; reports failures in the result."""

    def send(self, msg: EmailMessage, attempt: DeliveryAttempt) -> DeliveryResult:
        ...


class SmtpTransport:
    """One authenticated SMTP session per message and recipient."""

    def __init__(
        self,
        smtp: SmtpSettings,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self.smtp = smtp
        self._smtp_factory = smtp_factory

    def send(self, msg: EmailMessage, attempt: DeliveryAttempt) -> DeliveryResult:
        try:
            self._transmit(msg, attempt)
        except TransportError as exc:
            return DeliveryResult(
                recipient=exc.recipient or attempt.recipient,
                ok=False,
                error=str(exc),
                refused=exc.refused,
            )
        return DeliveryResult(
            recipient=attempt.recipient,
            ok=True,
            response=f"accepted by {self.smtp.host}",
        )

    def _transmit(self, msg: EmailMessage, attempt: DeliveryAttempt) -> None:
        """Run one SMTP session.

        Raises:
            TransportError: on connection, TLS, auth or protocol failures and
                when the server refuses a recipient.
        """
        try:
            with self._smtp_factory(self.smtp.host, self.smtp.port) as server:
                if self.smtp.starttls:
                    server.starttls(context=ssl.create_default_context())
                server.login(self.smtp.username, self.smtp.password)
                refused = server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}", recipient=attempt.recipient) from exc

        refused_map = {addr: _format_refusal(reply) for addr, reply in (refused or {}).items()}
        if refused_map:
            raise TransportError(
                f"Recipient refused by {self.smtp.host}",
                recipient=attempt.recipient,
                refused=refused_map,
            )


class CaptureTransport:
    """No network I/O; keeps the serialized message per recipient."""

    def __init__(self) -> None:
        self.messages: dict[str, bytes] = {}

    def send(self, msg: EmailMessage, attempt: DeliveryAttempt) -> DeliveryResult:
        data = serialize(msg)
        self.messages[attempt.recipient] = data
        return DeliveryResult(
            recipient=attempt.recipient, ok=True, response=f"captured {len(data)} bytes"
        )


def _format_refusal(reply: Any) -> str:
    if isinstance(reply, tuple) and len(reply) == 2:
        code, text = reply
        if isinstance(text, bytes):
            text = text.decode("utf-8", "replace")
        return f"{code} {text}"
    return str(reply)


class Dispatcher:
    """Deliver rendered messages to the configured recipients."""

    def __init__(
        self,
        sender: str,
        recipients: Sequence[DeliveryAttempt],
        transport: Transport,
        mode: str = LIVE,
        capture_path: Optional[Path] = None,
    ) -> None:
        if mode not in (LIVE, CAPTURE):
            raise ValueError(f"unknown dispatch mode {mode!r}")
        if mode == CAPTURE and capture_path is None:
            raise ValueError("capture mode needs a capture_path")
        self.sender = sender
        self.recipients = list(recipients)
        self.transport = transport
        self.mode = mode
        self.capture_path = capture_path

    @classmethod
    def from_settings(cls, settings: Settings, dry_run: bool) -> Dispatcher:
        if dry_run:
            return cls(
                settings.sender,
                settings.recipients,
                CaptureTransport(),
                mode=CAPTURE,
                capture_path=Path(settings.capture_path),
            )
        settings.validate_for_live()
        return cls(settings.sender, settings.recipients, SmtpTransport(settings.smtp), mode=LIVE)

    async def deliver(self, message: RenderedMessage) -> list[DeliveryResult]:
        """Send ``message`` to every recipient concurrently.

        A transport that raises instead of reporting still yields a failed
        result for its recipient; the other recipients are unaffected.
        """
        tasks = [
            asyncio.to_thread(
                self.transport.send, compose_message(message, self.sender, attempt), attempt
            )
            for attempt in self.recipients
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: list[DeliveryResult] = []
        for attempt, outcome in zip(self.recipients, outcomes):
            if isinstance(outcome, DeliveryResult):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            logger.error(
                "Transport crashed sending to %s", attempt.recipient, exc_info=outcome
            )
            results.append(
                DeliveryResult(
                    recipient=attempt.recipient,
                    ok=False,
                    error=f"{type(outcome).__name__}: {outcome}",
                )
            )
        return results

    async def dispatch(self, message: RenderedMessage, ledger: SentLedger) -> DispatchOutcome:
        """Deliver ``message`` and record its fingerprint.

        Raises:
            StateUnavailableError: if the ledger cannot be persisted.
        """
        if not self.recipients:
            logger.warning("No recipients configured; %r is recorded without delivery", message.subject)

        results = await self.deliver(message)
        capture_path = self._write_capture(results) if self.mode == CAPTURE else None
        outcome = DispatchOutcome(
            fingerprint=message.fingerprint,
            subject=message.subject,
            mode=self.mode,
            results=results,
            capture_path=capture_path,
        )

        ledger.record(message.fingerprint)

        for result in results:
            if result.ok:
                logger.info("Delivered %r to %s (%s)", message.subject, result.recipient, result.response)
            else:
                logger.error(
                    "Delivery of %r to %s failed: %s %s",
                    message.subject,
                    result.recipient,
                    result.error,
                    result.refused or "",
                )
        return outcome

    def _write_capture(self, results: list[DeliveryResult]) -> Optional[Path]:
        if (
            not self.recipients
            or self.capture_path is None
            or not isinstance(self.transport, CaptureTransport)
        ):
            return None
        first = self.recipients[0].recipient
        data = self.transport.messages.get(first)
        if data is None:
            return None
        try:
            self.capture_path.write_bytes(data)
        except OSError as exc:
            logger.error("Cannot write captured message to %s: %s", self.capture_path, exc)
            results[0] = DeliveryResult(recipient=first, ok=False, error=f"capture failed: {exc}")
            return None
        logger.info("Message written to %s", self.capture_path)
        return self.capture_path
