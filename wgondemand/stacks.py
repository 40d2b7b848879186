"""CloudFormation stack lifecycle: create, poll, delete and roll back."""

from botocore.exceptions import BotoCoreError, ClientError

from .cancel import CancelToken
from .errors import StackCreateFailed, StackDeleteFailed
from .types import StackStatus
from .utils import debug, log, logger, warn

STACK_POLL_INTERVAL = 10


def _is_missing_stack(e: ClientError) -> bool:
    err = e.response["Error"]
    return err["Code"] == "ValidationError" and "does not exist" in err.get("Message", "")


class StackManager:
    """Drives stacks through create and delete by polling describe_stacks.

    Stacks are never updated in place: provisioning an existing stack
    deletes it first and creates it again.

    :param cloudformation: boto3 CloudFormation client
    :param cancel: Cancellation token observed by every poll
    :param poll_interval: Seconds between describe_stacks calls
    """

    def __init__(
        self,
        cloudformation,
        cancel: CancelToken,
        *,
        poll_interval: float = STACK_POLL_INTERVAL,
    ):
        self.cf = cloudformation
        self.cancel = cancel
        self.poll_interval = poll_interval

    def describe(self, name: str) -> dict | None:
        """:return: Stack description, or None if the stack does not exist"""
        try:
            response = self.cf.describe_stacks(StackName=name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise
        stacks = response.get("Stacks", [])
        return stacks[0] if stacks else None

    def status(self, name: str) -> StackStatus | None:
        """:return: Collapsed lifecycle state, or None if the stack does not exist"""
        stack = self.describe(name)
        if stack is None:
            return None
        return StackStatus.from_cloudformation(stack["StackStatus"])

    def exists(self, name: str) -> bool:
        return self.status(name) not in (None, StackStatus.DELETE_COMPLETE)

    def create(self, name: str, template_body: str, parameters: dict[str, str]) -> bool:
        """Submit a create request.

        :return: False if a stack with this name already exists
        """
        try:
            self.cf.create_stack(
                StackName=name,
                TemplateBody=template_body,
                Capabilities=["CAPABILITY_NAMED_IAM"],
                Parameters=[
                    {"ParameterKey": k, "ParameterValue": v}
                    for k, v in parameters.items()
                ],
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "AlreadyExistsException":
                log(f"Stack '{name}' already exists")
                return False
            raise
        log(f"Creating stack '{name}'...")
        return True

    def failure_reasons(self, name: str) -> list[str]:
        """Collect CREATE_FAILED reasons from the event history, oldest first.

        The first entry is the root cause; later ones are usually
        cancellations triggered by it.
        """
        reasons = []
        paginator = self.cf.get_paginator("describe_stack_events")
        for page in paginator.paginate(StackName=name):
            for event in page.get("StackEvents", []):
                if event.get("ResourceStatus") == "CREATE_FAILED":
                    reason = event.get("ResourceStatusReason")
                    if reason:
                        reasons.append(f"{event.get('LogicalResourceId', '?')}: {reason}")
        reasons.reverse()
        return reasons

    def rollback(self, name: str) -> None:
        """Issue a delete for a failed stack without waiting for it."""
        log(f"Cleaning up stack '{name}'")
        try:
            self.cf.delete_stack(StackName=name)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete stack '{name}': {e}")

    def wait_for_create(self, name: str) -> dict[str, str]:
        """Poll until the stack is created or reaches a failure status.

        On failure the error is enriched with reasons from the stack and
        its event history, the stack is rolled back, then the error raised.

        :return: Stack outputs as {OutputKey: OutputValue}
        :raises StackCreateFailed: On any failure-class status
        """
        debug(f"Waiting for stack '{name}' to be created")
        while True:
            self.cancel.sleep(self.poll_interval)
            try:
                stack = self.describe(name)
            except (ClientError, BotoCoreError):
                self.rollback(name)
                raise

            if stack is None:
                status, cfn_status = StackStatus.DELETE_COMPLETE, "DOES_NOT_EXIST"
            else:
                cfn_status = stack["StackStatus"]
                status = StackStatus.from_cloudformation(cfn_status)
            debug(f"Stack '{name}': {cfn_status}")

            if status is StackStatus.CREATED:
                return {o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])}

            if status.failed:
                reasons = []
                if stack is not None and stack.get("StackStatusReason"):
                    reasons.append(stack["StackStatusReason"])
                try:
                    reasons.extend(self.failure_reasons(name))
                except (ClientError, BotoCoreError) as e:
                    warn(f"Failed to get stack events for '{name}': {e}")
                err = StackCreateFailed(name, cfn_status, reasons)
                logger.error(str(err))
                self.rollback(name)
                raise err

    def delete(self, name: str) -> None:
        """Delete the stack and wait until it is gone.

        :raises StackDeleteFailed: If the stack enters DELETE_FAILED
        """
        debug(f"Deleting stack '{name}'")
        self.cf.delete_stack(StackName=name)
        while True:
            stack = self.describe(name)
            if stack is None or stack["StackStatus"] == "DELETE_COMPLETE":
                log(f"Stack '{name}' deleted")
                return
            if stack["StackStatus"] == "DELETE_FAILED":
                reasons = [stack["StackStatusReason"]] if stack.get("StackStatusReason") else []
                raise StackDeleteFailed(name, "DELETE_FAILED", reasons)
            debug(f"Deleting stack '{name}'...")
            self.cancel.sleep(self.poll_interval)

    def provision(
        self,
        name: str,
        template_body: str,
        parameters: dict[str, str] | None = None,
        *,
        recreate: bool = True,
    ) -> dict[str, str]:
        """Bring a stack up and return its outputs.

        :param name: Stack name
        :param template_body: Template text
        :param parameters: Template parameters
        :param recreate: Delete an existing stack of this name before creating
        :return: Stack outputs
        """
        if recreate and self.exists(name):
            log(f"Stack '{name}' exists, deleting before recreating...")
            self.delete(name)
        self.create(name, template_body, parameters or {})
        return self.wait_for_create(name)
