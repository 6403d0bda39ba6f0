from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from eventotp.core.config import Settings
from eventotp.services.challenges import ChallengeStore
from eventotp.services.email import OTPDelivery


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_challenge_store(request: Request) -> ChallengeStore:
    return request.app.state.challenge_store


def get_delivery(request: Request) -> OTPDelivery:
    return request.app.state.otp_delivery
