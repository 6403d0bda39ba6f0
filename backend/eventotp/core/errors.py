"""Error taxonomy for OTP issuance, delivery and verification."""

import enum
from typing import Optional


class RejectReason(str, enum.Enum):
    not_found = "not_found"
    expired = "expired"
    attempts_exhausted = "attempts_exhausted"
    mismatch = "mismatch"


class OTPError(Exception):
    """Base class for all OTP errors."""

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or ""
        super().__init__(self.message)


class ValidationError(OTPError):
    """Malformed email or code; rejected before touching the store."""


class TransportError(OTPError):
    """Email relay unreachable, refused the message or timed out. Retryable."""


class ChallengeRejected(OTPError):
    """Verification failed for the current challenge."""

    reason: RejectReason

    def __init__(self, message: str = "", attempts_remaining: Optional[int] = None):
        super().__init__(message)
        self.attempts_remaining = attempts_remaining


class ChallengeNotFound(ChallengeRejected):
    """No active verification code for this email."""

    reason = RejectReason.not_found


class ExpiredChallenge(ChallengeRejected):
    """The verification code has expired."""

    reason = RejectReason.expired


class AttemptsExhausted(ChallengeRejected):
    """Too many incorrect attempts for this verification code."""

    reason = RejectReason.attempts_exhausted


class CodeMismatch(ChallengeRejected):
    """The verification code is incorrect."""

    reason = RejectReason.mismatch


_REJECTIONS = {
    cls.reason: cls
    for cls in (ChallengeNotFound, ExpiredChallenge, AttemptsExhausted, CodeMismatch)
}


def rejection_error(reason: RejectReason, attempts_remaining: Optional[int] = None) -> ChallengeRejected:
    """Build the exception matching a structured rejection reason."""
    return _REJECTIONS[RejectReason(reason)](attempts_remaining=attempts_remaining)
