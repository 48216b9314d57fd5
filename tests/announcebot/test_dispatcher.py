"""Tests for message composition and delivery."""

import email
import smtplib
from email import policy
from email.message import EmailMessage
from pathlib import Path
from typing import Any

import pytest

from announcebot.config_loader import Settings, SmtpSettings
from announcebot.dispatcher import (
    CAPTURE,
    LIVE,
    CaptureTransport,
    Dispatcher,
    SmtpTransport,
    compose_message,
    serialize,
)
from announcebot.exceptions import ConfigError, StateUnavailableError, TransportError
from announcebot.models import DeliveryAttempt, DeliveryResult, RenderedMessage
from announcebot.state_store import SentLedger

MESSAGE = RenderedMessage(
    subject="MakerTalk am 20.10.2026: Lasercutting",
    html="<h2>Lasercutting</h2>\n<p>Wir schneiden Holz.</p>\n",
    plain_text="------\n  Lasercutting\n------\n\nWir schneiden Holz.",
    fingerprint="f" * 64,
)

SMTP = SmtpSettings(host="smtp.example.org", port=587, username="user", password="pw")


class FakeSMTP:
    """Records the session calls of smtplib.SMTP."""

    sessions: list["FakeSMTP"] = []
    refuse: dict[str, tuple[int, bytes]] = {}

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.calls: list[str] = []
        self.sent: list[EmailMessage] = []
        FakeSMTP.sessions.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.calls.append("quit")

    def starttls(self, context: Any = None) -> None:
        self.calls.append("starttls")

    def login(self, user: str, password: str) -> None:
        self.calls.append(f"login:{user}")

    def send_message(self, msg: EmailMessage) -> dict[str, tuple[int, bytes]]:
        self.sent.append(msg)
        return dict(FakeSMTP.refuse)


@pytest.fixture
def fake_smtp():
    FakeSMTP.sessions = []
    FakeSMTP.refuse = {}
    yield FakeSMTP
    FakeSMTP.sessions = []
    FakeSMTP.refuse = {}


@pytest.fixture
def recipients() -> list[DeliveryAttempt]:
    return [
        DeliveryAttempt(recipient="list@makertalk.example", extra_headers={"Approved": "mod-pass"}),
        DeliveryAttempt(recipient="newsletter@example.org"),
    ]


@pytest.fixture
def ledger(tmp_path: Path) -> SentLedger:
    store = SentLedger(tmp_path / "sent.json")
    store.load()
    return store


def _parts(data: bytes) -> dict[str, Any]:
    parsed = email.message_from_bytes(data, policy=policy.default)
    plain = parsed.get_body(preferencelist=("plain",))
    html = parsed.get_body(preferencelist=("html",))
    return {
        "to": parsed["To"],
        "subject": parsed["Subject"],
        "approved": parsed["Approved"],
        "plain": plain.get_payload(decode=True).replace(b"\r\n", b"\n"),
        "html": html.get_payload(decode=True).replace(b"\r\n", b"\n"),
        "content_type": parsed.get_content_type(),
    }


class TestComposeMessage:
    def test_multipart_alternative_with_both_parts(self, recipients: list[DeliveryAttempt]) -> None:
        msg = compose_message(MESSAGE, "info@makertalk.example", recipients[0])

        parts = _parts(serialize(msg))

        assert parts["content_type"] == "multipart/alternative"
        assert parts["subject"] == MESSAGE.subject
        assert parts["to"] == "list@makertalk.example"
        assert parts["approved"] == "mod-pass"
        assert parts["html"].decode("utf-8") == MESSAGE.html
        assert parts["plain"].decode("utf-8").rstrip("\n") == MESSAGE.plain_text

    def test_extra_headers_only_for_their_recipient(self, recipients: list[DeliveryAttempt]) -> None:
        msg = compose_message(MESSAGE, "info@makertalk.example", recipients[1])

        assert msg["Approved"] is None

    def test_serialized_message_uses_crlf(self, recipients: list[DeliveryAttempt]) -> None:
        data = serialize(compose_message(MESSAGE, "info@makertalk.example", recipients[0]))

        assert b"\r\n" in data
        assert b"\n" not in data.replace(b"\r\n", b"")


class TestSmtpTransport:
    def test_send_runs_tls_login_send(self, fake_smtp, recipients: list[DeliveryAttempt]) -> None:
        transport = SmtpTransport(SMTP, smtp_factory=fake_smtp)

        result = transport.send(compose_message(MESSAGE, "a@b.example", recipients[0]), recipients[0])

        assert result.ok
        (session,) = fake_smtp.sessions
        assert (session.host, session.port) == ("smtp.example.org", 587)
        assert session.calls == ["starttls", "login:user", "quit"]
        assert len(session.sent) == 1

    def test_send_when_connection_fails_then_failed_result(self, recipients: list[DeliveryAttempt]) -> None:
        def refuse_connection(host: str, port: int) -> Any:
            raise ConnectionRefusedError("connection refused")

        result = SmtpTransport(SMTP, smtp_factory=refuse_connection).send(
            compose_message(MESSAGE, "a@b.example", recipients[0]), recipients[0]
        )

        assert not result.ok
        assert "ConnectionRefusedError" in result.error

    def test_send_when_auth_fails_then_failed_result(self, recipients: list[DeliveryAttempt]) -> None:
        class RejectingSMTP(FakeSMTP):
            def login(self, user: str, password: str) -> None:
                raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

        result = SmtpTransport(SMTP, smtp_factory=RejectingSMTP).send(
            compose_message(MESSAGE, "a@b.example", recipients[0]), recipients[0]
        )

        assert not result.ok
        assert "SMTPAuthenticationError" in result.error

    def test_send_when_recipient_refused_then_failed_result(
        self, fake_smtp, recipients: list[DeliveryAttempt]
    ) -> None:
        fake_smtp.refuse = {"list@makertalk.example": (550, b"no such user")}

        result = SmtpTransport(SMTP, smtp_factory=fake_smtp).send(
            compose_message(MESSAGE, "a@b.example", recipients[0]), recipients[0]
        )

        assert not result.ok
        assert result.refused == {"list@makertalk.example": "550 no such user"}

    def test_transmit_when_recipient_refused_then_raises_with_details(
        self, fake_smtp, recipients: list[DeliveryAttempt]
    ) -> None:
        fake_smtp.refuse = {"list@makertalk.example": (550, b"no such user")}
        transport = SmtpTransport(SMTP, smtp_factory=fake_smtp)

        with pytest.raises(TransportError) as excinfo:
            transport._transmit(compose_message(MESSAGE, "a@b.example", recipients[0]), recipients[0])

        assert excinfo.value.recipient == "list@makertalk.example"
        assert excinfo.value.refused == {"list@makertalk.example": "550 no such user"}


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_capture_writes_first_recipient_message_and_records(
        self, tmp_path: Path, recipients: list[DeliveryAttempt], ledger: SentLedger
    ) -> None:
        capture = tmp_path / "output.eml"
        dispatcher = Dispatcher(
            "info@makertalk.example", recipients, CaptureTransport(), mode=CAPTURE, capture_path=capture
        )

        outcome = await dispatcher.dispatch(MESSAGE, ledger)

        assert outcome.capture_path == capture
        assert outcome.failures == []
        assert _parts(capture.read_bytes())["to"] == "list@makertalk.example"
        assert MESSAGE.fingerprint in ledger
        assert SentLedger(ledger.path).load() == {MESSAGE.fingerprint}

    @pytest.mark.asyncio
    async def test_capture_matches_live_wire_content(
        self, fake_smtp, tmp_path: Path, recipients: list[DeliveryAttempt], ledger: SentLedger
    ) -> None:
        capture = tmp_path / "output.eml"
        captured = Dispatcher(
            "info@makertalk.example", recipients, CaptureTransport(), mode=CAPTURE, capture_path=capture
        )
        live = Dispatcher("info@makertalk.example", recipients, SmtpTransport(SMTP, smtp_factory=fake_smtp))

        await captured.dispatch(MESSAGE, ledger)
        await live.dispatch(MESSAGE, ledger)

        live_first = next(
            s.sent[0] for s in fake_smtp.sessions if s.sent[0]["To"] == "list@makertalk.example"
        )
        assert _parts(capture.read_bytes()) == _parts(serialize(live_first))

    @pytest.mark.asyncio
    async def test_live_sends_to_every_recipient(
        self, fake_smtp, recipients: list[DeliveryAttempt], ledger: SentLedger
    ) -> None:
        dispatcher = Dispatcher("info@makertalk.example", recipients, SmtpTransport(SMTP, smtp_factory=fake_smtp))

        outcome = await dispatcher.dispatch(MESSAGE, ledger)

        assert outcome.mode == LIVE
        assert sorted(r.recipient for r in outcome.results) == sorted(a.recipient for a in recipients)
        assert len(fake_smtp.sessions) == 2

    @pytest.mark.asyncio
    async def test_transport_failure_is_reported_and_still_recorded(
        self, recipients: list[DeliveryAttempt], ledger: SentLedger
    ) -> None:
        def refuse_connection(host: str, port: int) -> Any:
            raise OSError("network unreachable")

        dispatcher = Dispatcher(
            "info@makertalk.example", recipients, SmtpTransport(SMTP, smtp_factory=refuse_connection)
        )

        outcome = await dispatcher.dispatch(MESSAGE, ledger)

        assert len(outcome.failures) == 2
        assert MESSAGE.fingerprint in SentLedger(ledger.path).load()

    @pytest.mark.asyncio
    async def test_raising_transport_fails_only_its_recipient(
        self, recipients: list[DeliveryAttempt], ledger: SentLedger
    ) -> None:
        class HalfBrokenTransport:
            def send(self, msg: EmailMessage, attempt: DeliveryAttempt) -> DeliveryResult:
                if attempt.recipient == "list@makertalk.example":
                    raise RuntimeError("socket closed")
                return DeliveryResult(recipient=attempt.recipient, ok=True, response="ok")

        dispatcher = Dispatcher("info@makertalk.example", recipients, HalfBrokenTransport())

        outcome = await dispatcher.dispatch(MESSAGE, ledger)

        (failure,) = outcome.failures
        assert failure.recipient == "list@makertalk.example"
        assert failure.error == "RuntimeError: socket closed"
        assert [r.ok for r in outcome.results] == [False, True]
        assert SentLedger(ledger.path).load() == {MESSAGE.fingerprint}

    @pytest.mark.asyncio
    async def test_ledger_failure_propagates(
        self, tmp_path: Path, recipients: list[DeliveryAttempt]
    ) -> None:
        ledger = SentLedger(tmp_path / "missing" / "sent.json")
        dispatcher = Dispatcher(
            "info@makertalk.example",
            recipients,
            CaptureTransport(),
            mode=CAPTURE,
            capture_path=tmp_path / "output.eml",
        )

        with pytest.raises(StateUnavailableError):
            await dispatcher.dispatch(MESSAGE, ledger)

    @pytest.mark.asyncio
    async def test_capture_write_failure_is_reported(
        self, tmp_path: Path, recipients: list[DeliveryAttempt], ledger: SentLedger
    ) -> None:
        dispatcher = Dispatcher(
            "info@makertalk.example",
            recipients,
            CaptureTransport(),
            mode=CAPTURE,
            capture_path=tmp_path / "missing" / "output.eml",
        )

        outcome = await dispatcher.dispatch(MESSAGE, ledger)

        assert outcome.capture_path is None
        assert [r.recipient for r in outcome.failures] == ["list@makertalk.example"]


class TestFromSettings:
    def test_dry_run_uses_capture(self, settings: Settings) -> None:
        dispatcher = Dispatcher.from_settings(settings, dry_run=True)

        assert dispatcher.mode == CAPTURE
        assert isinstance(dispatcher.transport, CaptureTransport)
        assert dispatcher.capture_path == Path(settings.capture_path)

    def test_live_uses_smtp(self, settings: Settings) -> None:
        dispatcher = Dispatcher.from_settings(settings, dry_run=False)

        assert dispatcher.mode == LIVE
        assert isinstance(dispatcher.transport, SmtpTransport)

    def test_live_when_credentials_missing_then_config_error(
        self, settings_data: dict[str, Any], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("ANNOUNCEBOT_SMTP_PASSWORD", raising=False)
        settings_data["smtp"] = {"host": "smtp.example.org", "username": "u"}

        with pytest.raises(ConfigError):
            Dispatcher.from_settings(Settings.from_dict(settings_data), dry_run=False)

    def test_dry_run_does_not_need_credentials(self, settings_data: dict[str, Any]) -> None:
        settings_data["smtp"] = {}

        assert Dispatcher.from_settings(Settings.from_dict(settings_data), dry_run=True).mode == CAPTURE
