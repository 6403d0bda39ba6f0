from sqlalchemy import Column, String, Integer, DateTime, Enum, Index, text
import enum

from eventotp.core.database import Base


class ChallengeStatus(str, enum.Enum):
    pending = "pending"
    verified = "verified"
    expired = "expired"
    attempts_exhausted = "attempts_exhausted"
    superseded = "superseded"


class OTPChallenge(Base):
    __tablename__ = "otp_challenges"

    id = Column(String(36), primary_key=True, index=True)
    subject_email = Column(String(255), nullable=False, index=True)  # normalised, lower-case
    code = Column(String(6), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    attempts_remaining = Column(Integer, nullable=False)
    status = Column(
        Enum(ChallengeStatus, name="otp_challenge_status"),
        default=ChallengeStatus.pending,
        nullable=False,
        index=True,
    )
    updated_at = Column(DateTime(timezone=True), nullable=True)
    issue_seq = Column(Integer, nullable=False)  # 1, 2, ... per email, in issue order

    # At most one pending challenge per email, even across processes
    __table_args__ = (
        Index(
            "uq_otp_challenges_pending_email",
            "subject_email",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("uq_otp_challenges_email_seq", "subject_email", "issue_seq", unique=True),
    )

    def __repr__(self) -> str:
        return f"<OTPChallenge {self.id} {self.subject_email} {self.status.value}>"
