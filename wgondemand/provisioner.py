"""The provisioner capability shared by every backend."""

from typing import Protocol

from .aws import AwsProvisioner
from .cancel import CancelToken
from .config import Settings, load_settings
from .errors import ConfigurationError
from .hetzner import HetznerProvisioner
from .types import (
    DeprovisionRequest,
    Location,
    ProviderName,
    ProvisionRequest,
    ProvisionResult,
)

PROVIDERS: dict[str, type] = {
    "aws": AwsProvisioner,
    "hetzner": HetznerProvisioner,
}


class Provisioner(Protocol):
    provider_name: ProviderName

    def provision(
        self, id: str, request: ProvisionRequest, cancel: CancelToken | None = None
    ) -> ProvisionResult: ...

    def deprovision(
        self, id: str, request: DeprovisionRequest, cancel: CancelToken | None = None
    ) -> None: ...

    def locations(self) -> list[Location]: ...


def get_provisioner(name: str, settings: Settings | None = None, **kwargs) -> Provisioner:
    """Get a provisioner for a backend.

    :param name: Backend name (aws or hetzner)
    :param settings: Configuration (default: loaded from the environment)
    :param kwargs: Passed through to the provisioner constructor
    :raises ConfigurationError: For an unknown backend
    """
    if name not in PROVIDERS:
        raise ConfigurationError(
            f"Unknown provider: {name}. Available: {', '.join(PROVIDERS)}"
        )
    return PROVIDERS[name](settings or load_settings(), **kwargs)
