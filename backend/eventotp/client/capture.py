"""
Six-cell verification code capture with resend countdown.

The capture runs on a single asyncio loop: input events, the countdown tick
and the awaited network calls interleave cooperatively. Network calls are
reached through ``api`` (an ``OTPApiClient`` or anything with the same
``request_code`` / ``verify`` coroutines).
"""

import asyncio
import enum
import logging
from typing import Callable, List, Optional

from eventotp.client import messages
from eventotp.client.messages import NextAction, UserMessage
from eventotp.core.errors import RejectReason, TransportError, ValidationError

logger = logging.getLogger(__name__)

CELL_COUNT = 6
RESEND_COUNTDOWN_SECONDS = 60

# Rejections after which typing another code cannot help
_LOCKING_REASONS = (
    RejectReason.attempts_exhausted,
    RejectReason.expired,
    RejectReason.not_found,
)


class CaptureState(str, enum.Enum):
    collecting = "collecting"
    complete = "complete"
    verifying = "verifying"
    accepted = "accepted"
    locked = "locked"


class Countdown:
    """
    Cancellable per-second countdown. With a loop it schedules itself via
    ``call_later``; without one it only moves when ``tick()`` is called.
    """

    def __init__(
        self,
        seconds: int = RESEND_COUNTDOWN_SECONDS,
        on_finished: Optional[Callable[[], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        interval: float = 1.0,
    ):
        self.seconds = seconds
        self.on_finished = on_finished
        self.loop = loop
        self.interval = interval
        self.remaining = 0
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def running(self) -> bool:
        return self.remaining > 0

    def start(self) -> None:
        self.cancel()
        self.remaining = self.seconds
        self._schedule()

    def _schedule(self) -> None:
        if self.loop is not None and self.remaining > 0:
            self._handle = self.loop.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self.tick()
        self._schedule()

    def tick(self) -> None:
        if self.remaining <= 0:
            return
        self.remaining -= 1
        if self.remaining == 0:
            self.cancel()
            if self.on_finished is not None:
                self.on_finished()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def stop(self) -> None:
        """Cancel and drop to zero without firing on_finished."""
        self.cancel()
        self.remaining = 0


class OTPCapture:
    def __init__(
        self,
        email: str,
        api,
        countdown_seconds: int = RESEND_COUNTDOWN_SECONDS,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.email = email
        self.api = api
        self.cells: List[str] = [""] * CELL_COUNT
        self.focus = 0
        self.state = CaptureState.collecting
        self.message: Optional[UserMessage] = None
        self.attempts_remaining: Optional[int] = None
        self.sending = False
        self.countdown = Countdown(countdown_seconds, on_finished=self._on_countdown_finished, loop=loop)

    # -- derived UI flags -------------------------------------------------

    @property
    def code(self) -> str:
        return "".join(self.cells)

    @property
    def is_filled(self) -> bool:
        return all(self.cells)

    @property
    def cells_disabled(self) -> bool:
        return self.state in (CaptureState.verifying, CaptureState.accepted, CaptureState.locked)

    @property
    def can_submit(self) -> bool:
        return self.is_filled and not self.cells_disabled

    @property
    def can_resend(self) -> bool:
        return (
            not self.countdown.running
            and not self.sending
            and self.state not in (CaptureState.verifying, CaptureState.accepted)
        )

    @property
    def show_countdown(self) -> bool:
        return self.countdown.running

    @property
    def next_action(self) -> Optional[NextAction]:
        if self.message is None:
            return None
        if self.message.next_action is NextAction.resend and self.countdown.running:
            return NextAction.wait_for_resend
        return self.message.next_action

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> bool:
        """Request the first code. The countdown only starts if it was sent."""
        return await self._request_code()

    def unmount(self) -> None:
        self.countdown.cancel()

    def _on_countdown_finished(self) -> None:
        logger.debug("Resend available for %s", self.email)

    # -- input ------------------------------------------------------------

    async def enter_digit(self, index: int, char: str) -> bool:
        """Type into cell ``index``. Returns False (and changes nothing) for rejected input."""
        if self.cells_disabled or not 0 <= index < CELL_COUNT:
            return False
        if len(char) != 1 or char not in "0123456789":
            return False
        self.cells[index] = char
        self.state = CaptureState.collecting
        if index < CELL_COUNT - 1:
            self.focus = index + 1
        if self.is_filled:
            self.state = CaptureState.complete
            await self._verify()
        return True

    def backspace(self, index: int) -> None:
        if self.cells_disabled or not 0 <= index < CELL_COUNT:
            return
        if self.cells[index]:
            self.cells[index] = ""
            self.focus = index
        elif index > 0:
            self.focus = index - 1
        self.state = CaptureState.collecting

    async def submit(self) -> bool:
        """Explicit submit control; ignored while any cell is empty or a check is in flight."""
        if not self.can_submit:
            return False
        await self._verify()
        return True

    async def resend(self) -> bool:
        if not self.can_resend:
            return False
        self._clear_cells()
        sent = await self._request_code()
        if sent:
            self.state = CaptureState.collecting
        return sent

    # -- network ----------------------------------------------------------

    async def _request_code(self) -> bool:
        self.sending = True
        try:
            await self.api.request_code(self.email)
        except TransportError as e:
            logger.warning("Could not send code to %s: %s", self.email, e)
            self.countdown.stop()
            self.message = messages.SEND_FAILED
            return False
        finally:
            self.sending = False
        self.attempts_remaining = None
        self.countdown.start()
        self.message = messages.code_sent(self.email)
        return True

    async def _verify(self) -> None:
        self.state = CaptureState.verifying
        try:
            result = await self.api.verify(self.email, self.code)
        except TransportError as e:
            logger.warning("Verification request for %s failed: %s", self.email, e)
            self.state = CaptureState.collecting
            self.message = messages.VERIFY_UNREACHABLE
            return
        except ValidationError as e:
            self.state = CaptureState.collecting
            self.message = UserMessage(e.message, NextAction.retry_input)
            return
        except asyncio.CancelledError:
            # Abandoned by the user; the server finishes on its own
            self.state = CaptureState.collecting
            raise

        if result.verified:
            self.state = CaptureState.accepted
            self.message = None
            self.countdown.stop()
            return

        reason = RejectReason(result.reason)
        self.attempts_remaining = result.attempts_remaining
        self.message = messages.describe(reason, result.attempts_remaining)
        self._clear_cells()
        if reason in _LOCKING_REASONS:
            self.state = CaptureState.locked
        else:
            self.state = CaptureState.collecting

    def _clear_cells(self) -> None:
        self.cells = [""] * CELL_COUNT
        self.focus = 0
