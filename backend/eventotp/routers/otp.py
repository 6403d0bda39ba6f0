import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from eventotp.core.config import Settings
from eventotp.core.deps import get_challenge_store, get_delivery, get_settings
from eventotp.core.errors import TransportError, rejection_error
from eventotp.core.validation import normalize_code
from eventotp.models.otp_challenge import ChallengeStatus
from eventotp.schemas.otp import (
    RequestOTPResponse,
    RequestOTPSubmit,
    SendOTPResponse,
    SendOTPSubmit,
    VerifyOTPResponse,
    VerifyOTPSubmit,
)
from eventotp.services.challenges import ChallengeStore
from eventotp.services.email import OTPDelivery
from eventotp.services.verification import verify_otp

logger = logging.getLogger(__name__)

router = APIRouter()

SEND_FAILED_MESSAGE = "Could not send code, try again."

# Sync routes run in the threadpool and finish even if the client disconnects.


@router.post(
    "/send-otp",
    response_model=SendOTPResponse,
    response_model_exclude_none=True,
    responses={500: {"model": SendOTPResponse}},
)
def send_otp(body: SendOTPSubmit, delivery: OTPDelivery = Depends(get_delivery)):
    """
    Delivery leg only: email a code that was generated elsewhere.
    200 once the relay accepted the message, 500 with ``error`` otherwise.
    """
    code = normalize_code(body.otp)
    logger.info("Sending OTP to %s", body.email)
    try:
        delivery.deliver(body.email, code, retries=0)
    except TransportError as e:
        return JSONResponse(
            status_code=500,
            content=SendOTPResponse(success=False, error=e.message).model_dump(exclude_none=True),
        )
    return SendOTPResponse(success=True, message="OTP sent successfully")


@router.post(
    "/request-otp",
    response_model=RequestOTPResponse,
    response_model_exclude_none=True,
    responses={500: {"model": RequestOTPResponse}},
)
def request_otp(
    body: RequestOTPSubmit,
    store: ChallengeStore = Depends(get_challenge_store),
    delivery: OTPDelivery = Depends(get_delivery),
    settings: Settings = Depends(get_settings),
):
    """
    Issue a fresh challenge for the email (superseding any pending one) and email the code.
    The code itself is never part of the response.
    """
    challenge = store.issue(body.email)
    try:
        delivery.deliver(challenge.subject_email, challenge.code)
    except TransportError:
        # An undelivered code must not stay pending; a newer one issued meanwhile is left alone
        store.invalidate(challenge.subject_email, ChallengeStatus.expired, challenge_id=challenge.id)
        return JSONResponse(
            status_code=500,
            content=RequestOTPResponse(success=False, error=SEND_FAILED_MESSAGE).model_dump(exclude_none=True),
        )
    return RequestOTPResponse(
        success=True,
        message=f"Verification code sent to {challenge.subject_email}. Enter the 6-digit code on the next screen.",
        expires_in_seconds=store.ttl_seconds,
        resend_after_seconds=settings.OTP_RESEND_COOLDOWN_SECONDS,
    )


@router.post("/verify-otp", response_model=VerifyOTPResponse, response_model_exclude_none=True)
def verify_otp_code(body: VerifyOTPSubmit, store: ChallengeStore = Depends(get_challenge_store)):
    """Check a submitted code. Rejections are normal 200 responses carrying a ``reason``."""
    result = verify_otp(store, body.email, body.code)
    if result.verified:
        return VerifyOTPResponse(verified=True)
    return VerifyOTPResponse(
        verified=False,
        reason=result.reason,
        message=rejection_error(result.reason).message,
        attempts_remaining=result.attempts_remaining,
    )
