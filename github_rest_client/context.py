"""Cancellation signal and deadline for a call."""

import threading
import time


class Context:
    """Cancellation handle a caller passes to ``Client.do``.

    ``cancel()`` may be called from any thread. A deadline (seconds on the
    ``time.monotonic`` clock) cancels the call once it passes.
    """

    def __init__(self, deadline: float | None = None):
        self._event = threading.Event()
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> "Context":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def done(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def reason(self) -> str:
        if self._event.is_set():
            return "context cancelled"
        return "context deadline exceeded"

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if the context finished meanwhile."""
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            return True
        self._event.wait(max(0.0, seconds))
        return self.done()
