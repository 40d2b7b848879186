"""Bounded fixed-delay retry for eventually consistent cloud calls."""

from collections.abc import Callable
from typing import TypeVar

from tenacity import Retrying, retry_if_not_exception_type, stop_after_attempt, wait_fixed

from .cancel import CancelToken
from .errors import ProvisionCancelled
from .utils import debug

T = TypeVar("T")

RETRY_ATTEMPTS = 20
RETRY_DELAY = 1.0


def retry_call(
    fn: Callable[[], T],
    cancel: CancelToken,
    *,
    attempts: int = RETRY_ATTEMPTS,
    delay: float = RETRY_DELAY,
) -> T:
    """Call fn until it succeeds or the attempt budget runs out.

    No backoff and no jitter. Cancellation is never retried: it propagates
    from the first attempt that raises it, and a cancel during the delay
    between attempts aborts the loop.

    :param fn: Zero-argument operation to invoke
    :param cancel: Cancellation token observed between attempts
    :param attempts: Maximum number of invocations
    :param delay: Seconds to wait between invocations
    :return: Result of the first successful invocation
    :raises ProvisionCancelled: If cancelled
    :raises Exception: The last error once all attempts failed
    """

    def _before_sleep(retry_state) -> None:
        exc = retry_state.outcome.exception()
        debug(f"Attempt {retry_state.attempt_number}/{attempts} failed: {exc}")

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=retry_if_not_exception_type(ProvisionCancelled),
        sleep=cancel.sleep,
        before_sleep=_before_sleep,
        reraise=True,
    )
    return retrying(fn)
