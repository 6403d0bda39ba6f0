from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from eventotp.core.config import Settings
from eventotp.core.errors import TransportError
from eventotp.main import create_app
from eventotp.models import Base
from eventotp.services.challenges import ChallengeStore
from eventotp.services.email import OTPDelivery

EMAIL = "alice@x.com"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeTransport:
    """Stands in for SMTPTransport; records messages and can fail the next N sends."""

    def __init__(self):
        self.sent = []
        self.failures = 0

    def send(self, msg, to_email):
        if self.failures:
            self.failures -= 1
            raise TransportError("Email relay unreachable.")
        self.sent.append((to_email, msg))

    def last_code(self, to_email=EMAIL):
        for address, msg in reversed(self.sent):
            if address == to_email:
                text = msg.get_payload()[0].get_payload()
                return text.split("Your verification code is: ")[1][:6]
        raise AssertionError(f"nothing sent to {to_email}")


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(session_factory, clock):
    return ChallengeStore(session_factory, ttl_seconds=600, max_attempts=5, clock=clock)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def delivery(transport):
    return OTPDelivery(transport, expire_minutes=10, retries=1)


@pytest.fixture
def settings():
    return Settings(CORS_ORIGINS=["http://testserver"], SMTP_HOST="", LOG_LEVEL="WARNING")


@pytest.fixture
def app(settings, session_factory, transport, store):
    return create_app(
        settings=settings,
        session_factory=session_factory,
        transport=transport,
        challenge_store=store,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
