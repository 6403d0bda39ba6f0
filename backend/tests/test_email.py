import smtplib
import socket

import pytest

from eventotp.core.config import Settings
from eventotp.core.errors import TransportError
from eventotp.services import email as email_service
from eventotp.services.email import OTPDelivery, SMTPTransport, render_otp_email

from conftest import EMAIL, FakeTransport


class FakeSMTP:
    """Minimal smtplib.SMTP replacement recording the conversation."""

    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None, context=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.calls = []
        self.sent = []
        FakeSMTP.instances.append(self)
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user))

    def sendmail(self, from_addr, to_addrs, msg):
        self.sent.append((from_addr, to_addrs, msg))
        return {}

    def noop(self):
        self.calls.append("noop")

    def close(self):
        pass


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def make_transport(**overrides):
    settings = Settings(
        SMTP_HOST="smtp.relay.test",
        SMTP_PORT=587,
        SMTP_USER="mailer",
        SMTP_PASSWORD="secret",
        SMTP_FROM_EMAIL="events@school.org",
        SMTP_FROM_NAME="School Event Manager",
        SMTP_TIMEOUT_SECONDS=5,
        **overrides,
    )
    return SMTPTransport.from_settings(settings)


def test_render_states_code_and_expiry():
    msg = render_otp_email("042913", expire_minutes=10)
    text, html = [part.get_payload() for part in msg.get_payload()]
    assert "042913" in text and "042913" in html
    assert "expire in 10 minutes" in text
    assert "expire in 10 minutes" in html
    assert "Verification Code" in msg["Subject"]


def test_transport_sends_through_relay(fake_smtp):
    transport = make_transport()
    transport.send(render_otp_email("123456"), EMAIL)

    (server,) = fake_smtp.instances
    assert (server.host, server.port, server.timeout) == ("smtp.relay.test", 587, 5)
    assert server.calls[:2] == ["starttls", ("login", "mailer")]
    from_addr, to_addrs, raw = server.sent[0]
    assert from_addr == "events@school.org"
    assert to_addrs == [EMAIL]
    assert "School Event Manager <events@school.org>" in raw


def test_unconfigured_transport_raises():
    transport = SMTPTransport(host="")
    with pytest.raises(TransportError):
        transport.send(render_otp_email("123456"), EMAIL)


@pytest.mark.parametrize(
    "error",
    [
        socket.timeout("timed out"),
        ConnectionRefusedError("refused"),
        smtplib.SMTPServerDisconnected("gone"),
    ],
)
def test_relay_failures_become_transport_errors(fake_smtp, error):
    fake_smtp.fail_with = error
    with pytest.raises(TransportError):
        make_transport().send(render_otp_email("123456"), EMAIL)


def test_authentication_failure_is_transport_error(fake_smtp, monkeypatch):
    def bad_login(self, user, password):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    monkeypatch.setattr(FakeSMTP, "login", bad_login)
    with pytest.raises(TransportError) as exc_info:
        make_transport().send(render_otp_email("123456"), EMAIL)
    assert "credentials" in exc_info.value.message


def test_refused_recipient_is_transport_error(fake_smtp, monkeypatch):
    monkeypatch.setattr(FakeSMTP, "sendmail", lambda self, f, t, m: {EMAIL: (550, b"no such user")})
    with pytest.raises(TransportError):
        make_transport().send(render_otp_email("123456"), EMAIL)


def test_check_logs_in_without_sending(fake_smtp):
    make_transport().check()
    (server,) = fake_smtp.instances
    assert "noop" in server.calls
    assert server.sent == []


def test_delivery_retries_once_then_succeeds():
    transport = FakeTransport()
    transport.failures = 1
    OTPDelivery(transport, retries=1).deliver(EMAIL, "654321")
    assert len(transport.sent) == 1
    assert transport.last_code() == "654321"


def test_delivery_surfaces_error_after_retries():
    transport = FakeTransport()
    transport.failures = 2
    with pytest.raises(TransportError):
        OTPDelivery(transport, retries=1).deliver(EMAIL, "654321")
    assert transport.sent == []
    assert transport.failures == 0


def test_delivery_without_retry():
    transport = FakeTransport()
    transport.failures = 1
    with pytest.raises(TransportError):
        OTPDelivery(transport, retries=1).deliver(EMAIL, "654321", retries=0)
