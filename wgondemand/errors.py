"""Exception types raised while provisioning and tearing down gateways."""


class ProvisionError(Exception):
    """Base class for all provisioning failures."""


class ConfigurationError(ProvisionError):
    """Missing credentials or environment, or an unknown backend."""


class ProvisionCancelled(ProvisionError):
    """The caller cancelled the operation or its deadline passed.

    Never retried.
    """


class RemoteCommandError(ProvisionError):
    """A script run on the remote host did not succeed.

    Captured output is kept so callers can log it.
    """

    def __init__(
        self,
        message: str,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


class ReadinessTimeout(ProvisionError):
    """Host did not accept commands within the readiness timeout."""


class StackError(ProvisionError):
    """A resource group reached a terminal failure state."""

    def __init__(self, stack_name: str, status: str, reasons: list[str] | None = None):
        self.stack_name = stack_name
        self.status = status
        self.reasons = list(reasons or [])
        message = f"Stack '{stack_name}' entered {status}"
        if self.reasons:
            message += ": " + "; ".join(self.reasons)
        super().__init__(message)


class StackCreateFailed(StackError):
    pass


class StackDeleteFailed(StackError):
    pass


class TemplateError(ProvisionError):
    """A bundled template names a parameter that was not provided."""


class ProtocolError(ProvisionError):
    """Contract violation between the orchestrator and its scripts or templates."""


class MalformedOutputError(ProtocolError):
    """Init script stdout did not carry exactly one sentinel and a JSON trailer."""

    def __init__(self, message: str, stdout: str = ""):
        super().__init__(message)
        self.stdout = stdout


class UnknownPackagingError(ProtocolError):
    def __init__(self, packaging: str, path: str):
        super().__init__(f"Unknown packaging '{packaging}' for asset '{path}'")
        self.packaging = packaging
        self.path = path


class ManifestError(ProtocolError):
    """Deployment or asset manifest is missing or malformed."""


class TeardownError(ExceptionGroup):
    """Failures collected from independent teardown tasks."""

    def derive(self, excs):
        return TeardownError(self.message, excs)
