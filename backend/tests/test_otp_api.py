import threading
from concurrent.futures import ThreadPoolExecutor

from eventotp.core.errors import TransportError
from eventotp.models.otp_challenge import ChallengeStatus
from eventotp.routers.otp import request_otp
from eventotp.schemas.otp import RequestOTPSubmit
from eventotp.services.email import OTPDelivery
from eventotp.services.verification import verify_otp

from conftest import EMAIL, FakeTransport


def request_code(client, email=EMAIL):
    return client.post("/request-otp", json={"email": email})


def test_request_otp_issues_and_emails_code(client, transport, store):
    res = request_code(client)
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["expires_in_seconds"] == 600
    assert body["resend_after_seconds"] == 60
    assert "error" not in body

    code = transport.last_code()
    assert code not in res.text
    assert store.lookup(EMAIL).code == code


def test_request_otp_transport_failure(client, transport, store):
    transport.failures = 2  # first attempt and the retry
    res = request_code(client)
    assert res.status_code == 500
    assert res.json() == {"success": False, "error": "Could not send code, try again."}
    assert store.lookup(EMAIL) is None
    assert store.latest(EMAIL).status == ChallengeStatus.expired


def test_request_otp_retries_once(client, transport):
    transport.failures = 1
    res = request_code(client)
    assert res.status_code == 200
    assert len(transport.sent) == 1


def test_request_otp_invalid_email(client):
    res = request_code(client, "not-an-email")
    assert res.status_code == 422


def test_verify_flow(client, transport, clock):
    request_code(client)
    code = transport.last_code()
    clock.advance(5)

    res = client.post("/verify-otp", json={"email": EMAIL, "code": code})
    assert res.status_code == 200
    assert res.json() == {"verified": True, "message": "Email verified. You can continue."}

    res = client.post("/verify-otp", json={"email": EMAIL, "code": code})
    assert res.status_code == 200
    body = res.json()
    assert body["verified"] is False
    assert body["reason"] == "not_found"


def test_verify_mismatch_reports_attempts(client, transport):
    request_code(client)
    code = transport.last_code()
    bad = "000000" if code != "000000" else "111111"

    bodies = [client.post("/verify-otp", json={"email": EMAIL, "code": bad}).json() for _ in range(5)]
    assert [b["reason"] for b in bodies] == ["mismatch"] * 4 + ["attempts_exhausted"]
    assert [b["attempts_remaining"] for b in bodies] == [4, 3, 2, 1, 0]

    body = client.post("/verify-otp", json={"email": EMAIL, "code": code}).json()
    assert body["verified"] is False
    assert body["reason"] == "attempts_exhausted"


def test_verify_expired(client, transport, clock):
    request_code(client)
    code = transport.last_code()
    clock.advance(601)
    body = client.post("/verify-otp", json={"email": EMAIL, "code": code}).json()
    assert body["verified"] is False
    assert body["reason"] == "expired"
    assert body["message"] == "The verification code has expired."


def test_resend_invalidates_previous_code(client, transport, clock):
    request_code(client)
    first = transport.last_code()
    clock.advance(60)
    request_code(client)
    second = transport.last_code()

    if first != second:
        body = client.post("/verify-otp", json={"email": EMAIL, "code": first}).json()
        assert body["reason"] == "mismatch"
    body = client.post("/verify-otp", json={"email": EMAIL, "code": second}).json()
    assert body["verified"] is True


def test_verify_rejects_malformed_code(client, store):
    request_code(client)
    res = client.post("/verify-otp", json={"email": EMAIL, "code": "12ab56"})
    assert res.status_code == 400
    assert "6-digit" in res.json()["detail"]
    assert store.lookup(EMAIL).attempts_remaining == 5


def test_send_otp_delivers_given_code(client, transport, store):
    res = client.post("/send-otp", json={"email": EMAIL, "otp": "482913"})
    assert res.status_code == 200
    assert res.json() == {"success": True, "message": "OTP sent successfully"}
    assert transport.last_code() == "482913"
    assert store.latest(EMAIL) is None


def test_send_otp_transport_failure(client, transport):
    transport.failures = 1
    res = client.post("/send-otp", json={"email": EMAIL, "otp": "482913"})
    assert res.status_code == 500
    body = res.json()
    assert body["success"] is False
    assert body["error"]
    assert transport.sent == []


def test_send_otp_rejects_bad_code(client, transport):
    res = client.post("/send-otp", json={"email": EMAIL, "otp": "48291"})
    assert res.status_code == 400
    assert transport.sent == []


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "database": "connected"}


class StallingTransport(FakeTransport):
    """First send hangs until released and then fails; later sends go through."""

    def __init__(self):
        super().__init__()
        self.stalled = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def send(self, msg, to_email):
        self.calls += 1
        if self.calls == 1:
            self.stalled.set()
            self.release.wait(5)
            raise TransportError("Timed out talking to the email relay.")
        super().send(msg, to_email)


def test_failed_delivery_does_not_expire_newer_code(store, settings):
    transport = StallingTransport()
    delivery = OTPDelivery(transport, expire_minutes=10, retries=0)
    body = RequestOTPSubmit(email=EMAIL)

    with ThreadPoolExecutor(max_workers=1) as pool:
        slow = pool.submit(request_otp, body, store, delivery, settings)
        assert transport.stalled.wait(5)
        resent = request_otp(body, store, delivery, settings)
        transport.release.set()
        failed = slow.result(5)

    assert resent.success is True
    assert failed.status_code == 500
    code = transport.last_code()
    assert store.lookup(EMAIL).code == code
    assert verify_otp(store, EMAIL, code).verified
