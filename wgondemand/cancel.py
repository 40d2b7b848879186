"""Cancellation signal shared by every blocking wait in a provisioning run."""

import threading
import time

from .errors import ProvisionCancelled


class CancelToken:
    """Explicit cancel flag with an optional deadline.

    Every poll loop and remote command wait sleeps through this token, so
    a cancel (or the deadline passing) wakes them immediately instead of
    waiting out the current interval.

    :param timeout: Seconds from now after which the token counts as cancelled
    """

    def __init__(self, timeout: float | None = None):
        self._event = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        """:return: Seconds until the deadline, or None if there is none"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Block for up to `seconds`, returning early on cancellation.

        :return: True if the token is cancelled
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(max(0.0, seconds))
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ProvisionCancelled("Operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Sleep that raises ProvisionCancelled instead of finishing a doomed wait."""
        self.raise_if_cancelled()
        if self.wait(seconds):
            raise ProvisionCancelled("Operation cancelled")
