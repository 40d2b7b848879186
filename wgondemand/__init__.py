"""wg-ondemand - On-demand WireGuard gateways on AWS and Hetzner Cloud."""

from .aws import AwsProvisioner
from .cancel import CancelToken
from .config import Settings, load_settings
from .errors import (
    ConfigurationError,
    MalformedOutputError,
    ProvisionCancelled,
    ProvisionError,
    RemoteCommandError,
    StackCreateFailed,
    StackDeleteFailed,
    TeardownError,
    UnknownPackagingError,
)
from .hetzner import HetznerProvisioner
from .provisioner import Provisioner, get_provisioner
from .types import (
    DeprovisionRequest,
    InitScriptOutcome,
    Location,
    ProviderName,
    ProvisionRequest,
    ProvisionResult,
)
from .utils import log, setup_logging, warn
