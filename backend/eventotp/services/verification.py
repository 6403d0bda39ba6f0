import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from eventotp.core.errors import RejectReason, rejection_error
from eventotp.core.validation import normalize_code, normalize_email
from eventotp.models.otp_challenge import ChallengeStatus
from eventotp.services.challenges import ChallengeStore, as_utc

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    verified: bool
    reason: Optional[RejectReason] = None
    attempts_remaining: Optional[int] = None

    @classmethod
    def rejected(cls, reason: RejectReason, attempts_remaining: Optional[int] = None) -> "VerificationResult":
        return cls(verified=False, reason=reason, attempts_remaining=attempts_remaining)

    def raise_for_rejection(self) -> None:
        if not self.verified:
            raise rejection_error(self.reason, self.attempts_remaining)


# Why there is nothing to verify, judged from the most recent challenge
_DEAD_CHALLENGE_REASONS = {
    ChallengeStatus.attempts_exhausted: RejectReason.attempts_exhausted,
    ChallengeStatus.expired: RejectReason.expired,
}


def verify_otp(store: ChallengeStore, email: str, submitted_code: str) -> VerificationResult:
    """
    Match submitted_code against the pending challenge for email.

    Raises ValidationError for a malformed email or code. Every other outcome
    is returned as a VerificationResult; a verified challenge is consumed.
    """
    email = normalize_email(email)
    submitted_code = normalize_code(submitted_code)

    with store.locked(email) as db:
        challenge = store.pending_for_update(db, email)
        if challenge is None:
            latest = store.latest_in(db, email)
            reason = RejectReason.not_found
            if latest is not None:
                reason = _DEAD_CHALLENGE_REASONS.get(latest.status, RejectReason.not_found)
            result = VerificationResult.rejected(reason)
        elif store.now() > as_utc(challenge.expires_at):
            store.transition(challenge, ChallengeStatus.expired)
            result = VerificationResult.rejected(RejectReason.expired)
        elif challenge.attempts_remaining <= 0:
            store.transition(challenge, ChallengeStatus.attempts_exhausted)
            result = VerificationResult.rejected(RejectReason.attempts_exhausted, 0)
        elif hmac.compare_digest(submitted_code.encode("ascii"), challenge.code.encode("ascii")):
            store.transition(challenge, ChallengeStatus.verified)
            result = VerificationResult(verified=True)
        else:
            challenge.attempts_remaining = max(challenge.attempts_remaining - 1, 0)
            if challenge.attempts_remaining == 0:
                store.transition(challenge, ChallengeStatus.attempts_exhausted)
                result = VerificationResult.rejected(RejectReason.attempts_exhausted, 0)
            else:
                challenge.updated_at = store.now()
                result = VerificationResult.rejected(RejectReason.mismatch, challenge.attempts_remaining)

    if result.verified:
        logger.info("OTP verified for %s", email)
    else:
        logger.info("OTP rejected for %s: %s", email, result.reason.value)
    return result
