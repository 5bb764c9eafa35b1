"""Countdown support for timed sessions.

The session controller never owns a thread. Time is advanced by a tick source
that calls back into :meth:`SessionController.update_timer`; the controller
arms the source while the clock runs and cancels it on pause, end and
submission.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator, Protocol

if TYPE_CHECKING:  # pragma: no cover
    from .session import SessionController

TIMED_MODES = frozenset({"exam", "instant"})

WARNING_THRESHOLD = 50
DANGER_THRESHOLD = 20


class Ticker(Protocol):
    @property
    def active(self) -> bool: ...

    def start(self, callback: Callable[[], None]) -> None: ...

    def cancel(self) -> None: ...


class ManualTicker:
    """Tick source advanced explicitly, used for deterministic tests."""

    def __init__(self) -> None:
        self._callback: Callable[[], None] | None = None
        self.start_count = 0
        self.cancel_count = 0

    @property
    def active(self) -> bool:
        return self._callback is not None

    def start(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self.start_count += 1

    def cancel(self) -> None:
        if self._callback is not None:
            self.cancel_count += 1
        self._callback = None

    def advance(self, seconds: int = 1) -> int:
        fired = 0
        for _ in range(seconds):
            if self._callback is None:
                break
            self._callback()
            fired += 1
        return fired


class ClockTicker:
    """Catch-up tick source driven by a clock function.

    ``pump()`` fires one callback per whole interval elapsed since the anchor
    and moves the anchor forward by the same amount, so partial seconds carry
    over between pumps. The anchor can be persisted and handed back to a new
    instance to continue counting across requests.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        interval: float = 1.0,
        anchor: float | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("Tick interval must be positive.")
        self._clock = clock
        self._interval = interval
        self._anchor = anchor
        self._callback: Callable[[], None] | None = None

    @property
    def active(self) -> bool:
        return self._callback is not None

    @property
    def anchor(self) -> float | None:
        return self._anchor

    def start(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        if self._anchor is None:
            self._anchor = self._clock()

    def cancel(self) -> None:
        self._callback = None
        self._anchor = None

    def pump(self) -> int:
        if self._callback is None or self._anchor is None:
            return 0
        due = int((self._clock() - self._anchor) // self._interval)
        fired = 0
        for _ in range(max(due, 0)):
            if self._callback is None:
                break
            self._anchor += self._interval
            self._callback()
            fired += 1
        return fired


@contextmanager
def ticking(controller: "SessionController", ticker: Any) -> Iterator[Any]:
    """Attach ``ticker`` to ``controller`` for the duration of the block.

    The tick is cancelled on every exit path, including exceptions.
    """

    controller.attach_ticker(ticker)
    try:
        yield ticker
    finally:
        controller.detach_ticker()


def format_clock(seconds: int) -> str:
    seconds = max(int(seconds), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def timer_level(remaining: int, total: int) -> str:
    """Presentation hint for the countdown: ``normal``, ``warning`` or ``danger``."""

    if total <= 0:
        return "normal"
    percentage_left = remaining / total * 100
    if percentage_left > WARNING_THRESHOLD:
        return "normal"
    if percentage_left > DANGER_THRESHOLD:
        return "warning"
    return "danger"


__all__ = [
    "ClockTicker",
    "ManualTicker",
    "TIMED_MODES",
    "Ticker",
    "format_clock",
    "ticking",
    "timer_level",
]
