"""Type definitions for wg-ondemand."""

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, TypedDict

ProviderName = Literal["aws", "hetzner"]

DEFAULT_PORT = 51820
DEFAULT_CLIENT_ADDRESS = "172.30.0.2"
DEFAULT_SERVER_ADDRESS = "172.30.0.1"


def _host_address(value: str, what: str) -> str:
    try:
        return str(ipaddress.ip_address(str(value)))
    except ValueError:
        raise ValueError(f"Invalid {what} address: '{value}'") from None


@dataclass(frozen=True)
class ProvisionRequest:
    """Desired gateway configuration.

    Addresses are normalised on construction; invalid addresses or an
    out-of-range port raise ValueError.
    """

    client_public_key: str
    client_address: str = DEFAULT_CLIENT_ADDRESS
    server_address: str = DEFAULT_SERVER_ADDRESS
    port: int = DEFAULT_PORT
    provider: ProviderName = "aws"
    region: str = ""

    def __post_init__(self):
        if not self.client_public_key:
            raise ValueError("Client public key is required")
        object.__setattr__(
            self, "client_address", _host_address(self.client_address, "client")
        )
        object.__setattr__(
            self, "server_address", _host_address(self.server_address, "server")
        )
        if not 0 < int(self.port) < 65536:
            raise ValueError(f"Invalid listen port: {self.port}")
        object.__setattr__(self, "port", int(self.port))


@dataclass(frozen=True)
class ProvisionResult:
    """Outcome of a successful provision, never partially populated."""

    ip: str
    server_address: str
    server_public_key: str


@dataclass(frozen=True)
class DeprovisionRequest:
    region: str = ""


class Location(TypedDict):
    """A selectable deployment region."""

    key: str  # backend-native region id
    city: str
    country: str
    latitude: float
    longitude: float


@dataclass
class InitScriptOutcome:
    """Structured result parsed from the init script's output trailer."""

    fields: dict = field(default_factory=dict)

    @property
    def server_public_key(self) -> str:
        return self.fields["ServerWgPublicKey"]


class StackStatus(Enum):
    """Lifecycle state of a resource group, collapsed from CloudFormation's statuses."""

    PENDING = "pending"
    CREATED = "created"
    CREATE_FAILED = "create-failed"
    ROLLBACK_COMPLETE = "rollback-complete"
    ROLLBACK_FAILED = "rollback-failed"
    DELETE_FAILED = "delete-failed"
    DELETE_COMPLETE = "delete-complete"

    @classmethod
    def from_cloudformation(cls, status: str) -> "StackStatus":
        return _CFN_STATUS.get(status, cls.PENDING)

    @property
    def failed(self) -> bool:
        return self not in (StackStatus.PENDING, StackStatus.CREATED)


_CFN_STATUS = {
    "CREATE_COMPLETE": StackStatus.CREATED,
    "UPDATE_COMPLETE": StackStatus.CREATED,
    "CREATE_FAILED": StackStatus.CREATE_FAILED,
    "ROLLBACK_COMPLETE": StackStatus.ROLLBACK_COMPLETE,
    "ROLLBACK_FAILED": StackStatus.ROLLBACK_FAILED,
    "DELETE_FAILED": StackStatus.DELETE_FAILED,
    "DELETE_COMPLETE": StackStatus.DELETE_COMPLETE,
}
