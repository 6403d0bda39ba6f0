import enum
from typing import NamedTuple, Optional

from eventotp.core.errors import RejectReason


class NextAction(str, enum.Enum):
    retry_input = "retry_input"
    wait_for_resend = "wait_for_resend"
    resend = "resend"
    restart = "restart"


class UserMessage(NamedTuple):
    text: str
    next_action: NextAction


SEND_FAILED = UserMessage("Could not send code, try again.", NextAction.resend)
VERIFY_UNREACHABLE = UserMessage("Could not reach the server. Check your connection and try again.", NextAction.retry_input)


def code_sent(email: str) -> UserMessage:
    return UserMessage(f"We've sent a 6-digit verification code to {email}", NextAction.retry_input)


def describe(reason: RejectReason, attempts_remaining: Optional[int] = None) -> UserMessage:
    """User-facing text and allowed next step for a rejected verification."""
    reason = RejectReason(reason)
    if reason is RejectReason.mismatch:
        text = "Incorrect code."
        if attempts_remaining is not None:
            noun = "attempt" if attempts_remaining == 1 else "attempts"
            text = f"Incorrect code. {attempts_remaining} {noun} left."
        return UserMessage(text, NextAction.retry_input)
    if reason is RejectReason.attempts_exhausted:
        return UserMessage("Too many incorrect attempts. Request a new code.", NextAction.resend)
    if reason is RejectReason.expired:
        return UserMessage("This code has expired. Request a new code.", NextAction.resend)
    return UserMessage("This code is no longer valid. Please sign in again.", NextAction.restart)
