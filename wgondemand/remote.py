"""Remote script execution contract and the host readiness gate."""

import time
from dataclasses import dataclass
from typing import Protocol

from .cancel import CancelToken
from .errors import ProvisionCancelled, ReadinessTimeout
from .utils import debug, log

READY_TIMEOUT = 300
READY_PROBE = "printf 1"


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


class RemoteExecutor(Protocol):
    """Runs a shell script on a provisioned host.

    Implementations raise RemoteCommandError (carrying captured
    stdout/stderr) when the script fails, and ProvisionCancelled when the
    token fires before the script finishes.
    """

    def run(self, target: str, script: str, cancel: CancelToken) -> CommandResult: ...


def wait_until_ready(
    executor: RemoteExecutor,
    target: str,
    cancel: CancelToken,
    *,
    timeout: float = READY_TIMEOUT,
    interval: float = 10,
) -> None:
    """Poll the host with a trivial command until it answers.

    The probe prints a literal 1; the host counts as ready once trimmed
    stdout equals "1".

    :param executor: Transport used for the probe
    :param target: Host identifier understood by the executor
    :param cancel: Cancellation token
    :param timeout: Overall readiness budget in seconds
    :param interval: Delay between probes in seconds
    :raises ReadinessTimeout: If the host never answered, chained to the last error
    """
    log(f"Waiting for '{target}' to accept commands...")
    deadline = time.monotonic() + timeout
    last_error: Exception | None = None
    attempt = 0
    while True:
        attempt += 1
        try:
            result = executor.run(target, READY_PROBE, cancel)
            if result.stdout.strip() == "1":
                log(f"'{target}' is ready")
                return
            debug(f"Probe {attempt} answered {result.stdout!r}")
        except ProvisionCancelled:
            raise
        except Exception as e:
            debug(f"Probe {attempt} failed: {e}")
            last_error = e

        if time.monotonic() + interval >= deadline:
            raise ReadinessTimeout(
                f"'{target}' not ready after {timeout:.0f}s ({attempt} probes)"
            ) from last_error
        cancel.sleep(interval)
