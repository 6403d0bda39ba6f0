from eventotp.core.database import Base
from eventotp.models.otp_challenge import ChallengeStatus, OTPChallenge

__all__ = [
    "Base",
    "ChallengeStatus",
    "OTPChallenge",
]
