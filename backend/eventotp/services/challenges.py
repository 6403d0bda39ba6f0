"""OTP code generation and the challenge store.

Every mutation of a challenge goes through ``ChallengeStore.locked``, which
serializes work per email inside this process and reads pending rows with
``SELECT ... FOR UPDATE`` so concurrent workers cannot interleave a resend
with an in-flight verification.
"""

import logging
import secrets
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from eventotp.core.validation import CODE_LENGTH, normalize_email
from eventotp.models.otp_challenge import ChallengeStatus, OTPChallenge

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600
DEFAULT_MAX_ATTEMPTS = 5
LOCK_STRIPES = 64

# Statuses a pending challenge may be forced into from outside a verification
INVALIDATION_REASONS = (
    ChallengeStatus.expired,
    ChallengeStatus.superseded,
    ChallengeStatus.attempts_exhausted,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


class ChallengeStore:
    def __init__(
        self,
        session_factory: sessionmaker,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
        lock_stripes: int = LOCK_STRIPES,
    ):
        self._session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.clock = clock
        # Fixed pool: emails hashing to the same stripe share a lock, memory stays bounded
        self._locks = [threading.Lock() for _ in range(lock_stripes)]

    def now(self) -> datetime:
        return as_utc(self.clock())

    def _lock_for(self, email: str) -> threading.Lock:
        return self._locks[hash(email) % len(self._locks)]

    @contextmanager
    def locked(self, email: str) -> Iterator[Session]:
        """
        Atomic lookup–compare–mutate scope for one (normalised) email.
        Commits on normal exit, rolls back if the body raises.
        Never nest: two emails may share a stripe.
        """
        with self._lock_for(email):
            db = self._session_factory(expire_on_commit=False)
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def pending_for_update(self, db: Session, email: str) -> Optional[OTPChallenge]:
        return (
            db.query(OTPChallenge)
            .filter(
                OTPChallenge.subject_email == email,
                OTPChallenge.status == ChallengeStatus.pending,
            )
            .with_for_update()
            .first()
        )

    def latest_in(self, db: Session, email: str) -> Optional[OTPChallenge]:
        return (
            db.query(OTPChallenge)
            .filter(OTPChallenge.subject_email == email)
            .order_by(OTPChallenge.issue_seq.desc())
            .first()
        )

    def transition(self, challenge: OTPChallenge, status: ChallengeStatus) -> None:
        logger.info(
            "OTP challenge %s for %s: %s -> %s",
            challenge.id,
            challenge.subject_email,
            challenge.status.value,
            status.value,
        )
        challenge.status = status
        challenge.updated_at = self.now()

    def issue(self, email: str) -> OTPChallenge:
        """
        Create a new pending challenge for email, superseding any pending one.
        The returned object carries the code for the delivery step only.

        Another worker issuing for the same email at the same moment trips one
        of the unique indexes; the loser retries once against the winner's row.
        """
        email = normalize_email(email)
        try:
            challenge = self._issue_once(email)
        except IntegrityError:
            logger.warning("Concurrent OTP issue for %s, retrying", email)
            challenge = self._issue_once(email)
        logger.info(
            "Issued OTP challenge %s for %s (expires in %s s)", challenge.id, email, self.ttl_seconds
        )
        return challenge

    def _issue_once(self, email: str) -> OTPChallenge:
        with self.locked(email) as db:
            previous = self.pending_for_update(db, email)
            if previous is not None:
                self.transition(previous, ChallengeStatus.superseded)
                db.flush()
            last_seq = (
                db.query(func.max(OTPChallenge.issue_seq))
                .filter(OTPChallenge.subject_email == email)
                .scalar()
            )
            now = self.now()
            challenge = OTPChallenge(
                id=str(uuid.uuid4()),
                subject_email=email,
                code=generate_code(),
                created_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
                attempts_remaining=self.max_attempts,
                status=ChallengeStatus.pending,
                issue_seq=(last_seq or 0) + 1,
            )
            db.add(challenge)
        return challenge

    def lookup(self, email: str) -> Optional[OTPChallenge]:
        """Current pending challenge for email, if any."""
        email = normalize_email(email)
        db = self._session_factory(expire_on_commit=False)
        try:
            return (
                db.query(OTPChallenge)
                .filter(
                    OTPChallenge.subject_email == email,
                    OTPChallenge.status == ChallengeStatus.pending,
                )
                .first()
            )
        finally:
            db.close()

    def latest(self, email: str) -> Optional[OTPChallenge]:
        """Most recently issued challenge for email in any status."""
        email = normalize_email(email)
        db = self._session_factory(expire_on_commit=False)
        try:
            return self.latest_in(db, email)
        finally:
            db.close()

    def invalidate(
        self, email: str, reason: ChallengeStatus, challenge_id: Optional[str] = None
    ) -> bool:
        """
        Force the pending challenge for email out of pending. With ``challenge_id``
        only that challenge is touched, so a newer challenge issued meanwhile survives.
        Returns False if nothing was invalidated.
        """
        reason = ChallengeStatus(reason)
        if reason not in INVALIDATION_REASONS:
            raise ValueError(f"Cannot invalidate a challenge as {reason.value}")
        email = normalize_email(email)
        with self.locked(email) as db:
            challenge = self.pending_for_update(db, email)
            if challenge is None:
                return False
            if challenge_id is not None and challenge.id != challenge_id:
                logger.info(
                    "OTP challenge %s for %s already replaced by %s", challenge_id, email, challenge.id
                )
                return False
            if reason is ChallengeStatus.attempts_exhausted:
                challenge.attempts_remaining = 0
            self.transition(challenge, reason)
        return True
