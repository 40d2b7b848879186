"""AWS backend: CloudFormation stacks, CDK asset publishing and SSM commands."""

from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .cancel import CancelToken
from .cdksim import AssetDeployer
from .config import Settings, get_aws_config
from .errors import ConfigurationError, ProtocolError, TeardownError
from .initscript import run_init_script
from .locations import AWS_LOCATIONS
from .remote import READY_TIMEOUT, wait_until_ready
from .retry import RETRY_ATTEMPTS, RETRY_DELAY
from .ssm import COMMAND_POLL_INTERVAL, SSMExecutor
from .stacks import STACK_POLL_INTERVAL, StackManager
from .teardown import TeardownTask, delete_bucket, run_teardown
from .templates import load_asset
from .types import (
    DeprovisionRequest,
    Location,
    ProviderName,
    ProvisionRequest,
    ProvisionResult,
)
from .utils import log

BOOTSTRAP_STACK_NAME = "wg-ondemand-bootstrap"
BOOTSTRAP_TEMPLATE = "bootstrap.template.yaml"
READY_INTERVAL = 10


def asset_bucket_name(qualifier: str, account: str, region: str) -> str:
    return f"cdk-{qualifier}-assets-{account}-{region}"


def check_aws_auth(session, profile: str | None = None) -> str:
    """Validate AWS credentials, failing fast if expired or missing.

    :param session: boto3 Session to check
    :param profile: Profile name, used only in the error message
    :return: Caller account id
    :raises ConfigurationError: If credentials are missing, expired, or invalid
    """
    try:
        identity = session.client("sts").get_caller_identity()
    except ClientError as e:
        error_code = e.response["Error"]["Code"]
        if error_code in ("ExpiredToken", "ExpiredTokenException"):
            login_cmd = f"aws sso login --profile {profile}" if profile else "aws sso login"
            raise ConfigurationError(f"AWS credentials expired. Run:\n  {login_cmd}") from e
        raise ConfigurationError(f"AWS authentication failed ({error_code}): {e}") from e
    except BotoCoreError as e:
        raise ConfigurationError(f"AWS authentication failed: {e}") from e
    return identity["Account"]


class AwsProvisioner:
    """Provisions the gateway as an EC2 instance from a CDK-synthesized stack.

    Provisioning is sequential: bootstrap stack, asset upload, primary
    stack (recreated if present), SSM readiness, init script. Teardown
    deletes the asset bucket and both stacks concurrently.
    """

    provider_name: ProviderName = "aws"

    def __init__(
        self,
        settings: Settings,
        *,
        session_factory=boto3.Session,
        cdk_out: Path | None = None,
        poll_interval: float = STACK_POLL_INTERVAL,
        command_poll_interval: float = COMMAND_POLL_INTERVAL,
        ready_timeout: float = READY_TIMEOUT,
        ready_interval: float = READY_INTERVAL,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.cdk_out = cdk_out
        self.poll_interval = poll_interval
        self.command_poll_interval = command_poll_interval
        self.ready_timeout = ready_timeout
        self.ready_interval = ready_interval
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    def _session(self, region: str):
        if not region:
            raise ConfigurationError("AWS region is required")
        config = get_aws_config(self.settings.aws_profile, region=region)
        return self.session_factory(**config)

    def provision(
        self, id: str, request: ProvisionRequest, cancel: CancelToken | None = None
    ) -> ProvisionResult:
        """Bring up a gateway stack named `id` and configure WireGuard on it.

        :param id: Stack name of the gateway
        :param request: Gateway configuration
        :param cancel: Cancellation token (default: never cancelled)
        :return: Public IP and server key of the running gateway
        """
        cancel = cancel or CancelToken()
        session = self._session(request.region)
        check_aws_auth(session, self.settings.aws_profile)
        log(f"Using AWS region '{request.region}'")

        stacks = StackManager(
            session.client("cloudformation"), cancel, poll_interval=self.poll_interval
        )

        log(f"Provisioning bootstrap stack '{BOOTSTRAP_STACK_NAME}'...")
        stacks.provision(
            BOOTSTRAP_STACK_NAME,
            load_asset(BOOTSTRAP_TEMPLATE, self.settings.qualifier),
            recreate=False,
        )

        deployer = AssetDeployer(
            session.client("sts"),
            region=request.region,
            qualifier=self.settings.qualifier,
            cdk_out=self.cdk_out,
            session_factory=self.session_factory,
        )
        deployer.deploy()
        cancel.raise_if_cancelled()

        log(f"Provisioning stack '{id}'...")
        outputs = stacks.provision(
            id, deployer.stack_template(), {"WgPort": str(request.port)}
        )

        try:
            missing = {"InstanceId", "ServerIp"} - outputs.keys()
            if missing:
                raise ProtocolError(f"Stack '{id}' has no output {', '.join(sorted(missing))}")
            instance_id, ip = outputs["InstanceId"], outputs["ServerIp"]
            log(f"Instance '{instance_id}' at {ip}")

            executor = SSMExecutor(
                session.client("ssm"), poll_interval=self.command_poll_interval
            )
            wait_until_ready(
                executor,
                instance_id,
                cancel,
                timeout=self.ready_timeout,
                interval=self.ready_interval,
            )
            outcome = run_init_script(
                request, lambda script: executor.run(instance_id, script, cancel).stdout
            )
        except Exception:
            stacks.rollback(id)
            raise

        return ProvisionResult(
            ip=ip,
            server_address=request.server_address,
            server_public_key=outcome.server_public_key,
        )

    def deprovision(
        self, id: str, request: DeprovisionRequest, cancel: CancelToken | None = None
    ) -> None:
        """Delete the asset bucket, the bootstrap stack and the gateway stack.

        Every task runs even if others fail.

        :raises TeardownError: Holding one exception per failed task
        """
        cancel = cancel or CancelToken()
        session = self._session(request.region)
        account = check_aws_auth(session, self.settings.aws_profile)

        stacks = StackManager(
            session.client("cloudformation"), cancel, poll_interval=self.poll_interval
        )
        s3 = session.client("s3")
        bucket = asset_bucket_name(self.settings.qualifier, account, request.region)

        tasks = [
            TeardownTask(f"bucket {bucket}", lambda: delete_bucket(s3, bucket)),
            TeardownTask(
                f"stack {BOOTSTRAP_STACK_NAME}", lambda: stacks.delete(BOOTSTRAP_STACK_NAME)
            ),
            TeardownTask(f"stack {id}", lambda: stacks.delete(id)),
        ]
        errors = run_teardown(
            tasks, cancel, attempts=self.retry_attempts, delay=self.retry_delay
        )
        if errors:
            raise TeardownError(f"{len(errors)} of {len(tasks)} teardown tasks failed", errors)
        log(f"Deprovisioned '{id}' in {request.region}")

    def locations(self) -> list[Location]:
        return list(AWS_LOCATIONS)
