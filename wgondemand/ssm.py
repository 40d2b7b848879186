"""Run scripts through the SSM agent on an EC2 instance."""

from botocore.exceptions import BotoCoreError, ClientError

from .cancel import CancelToken
from .errors import ProvisionCancelled, RemoteCommandError
from .remote import CommandResult
from .utils import debug, warn

COMMAND_POLL_INTERVAL = 10

# Statuses after which the invocation will not change again
TERMINAL_STATUSES = ("Success", "Failed", "TimedOut", "Cancelling", "Cancelled")


class SSMExecutor:
    """Submits scripts as AWS-RunShellScript commands and polls for the result.

    A "Success" status only counts when the response code is also 0.
    Captured output is attached to every RemoteCommandError.

    :param ssm: boto3 SSM client
    :param poll_interval: Seconds between get_command_invocation calls
    """

    def __init__(self, ssm, *, poll_interval: float = COMMAND_POLL_INTERVAL):
        self.ssm = ssm
        self.poll_interval = poll_interval

    def run(self, target: str, script: str, cancel: CancelToken) -> CommandResult:
        """Run script on instance `target`.

        :param target: EC2 instance id
        :param script: Shell script text
        :param cancel: Cancellation token checked before every poll
        :return: Captured output of a successful run
        :raises RemoteCommandError: On a failed, timed out or cancelled invocation
        :raises ProvisionCancelled: If the token fires while waiting
        """
        cancel.raise_if_cancelled()
        debug(f"Sending command to '{target}'")
        response = self.ssm.send_command(
            InstanceIds=[target],
            DocumentName="AWS-RunShellScript",
            Parameters={"commands": [script]},
        )
        command_id = response["Command"]["CommandId"]

        while True:
            try:
                cancel.sleep(self.poll_interval)
            except ProvisionCancelled:
                self._cancel_command(command_id, target)
                raise

            try:
                result = self.ssm.get_command_invocation(
                    CommandId=command_id, InstanceId=target
                )
            except ClientError as e:
                if e.response["Error"]["Code"] == "InvocationDoesNotExist":
                    debug(f"Command '{command_id}' not registered yet")
                    continue
                raise

            status = result["Status"]
            debug(f"Command '{command_id}' status: {status}")
            if status not in TERMINAL_STATUSES:
                continue

            stdout = result.get("StandardOutputContent", "")
            stderr = result.get("StandardErrorContent", "")
            code = result.get("ResponseCode", -1)
            if status == "Success" and code == 0:
                return CommandResult(stdout=stdout, stderr=stderr, exit_code=0)
            raise RemoteCommandError(
                f"Command '{command_id}' on '{target}' ended {status} (response code {code})",
                stdout=stdout,
                stderr=stderr,
                exit_code=code,
            )

    def _cancel_command(self, command_id: str, target: str) -> None:
        try:
            self.ssm.cancel_command(CommandId=command_id, InstanceIds=[target])
        except (ClientError, BotoCoreError) as e:
            warn(f"Could not cancel command '{command_id}': {e}")
