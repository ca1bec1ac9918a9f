"""
Error types raised by the vSphere machine driver.

Every error derives from VSphereMachineError so the CLI can report any driver
failure with a single handler.
"""


class VSphereMachineError(Exception):
    """Base class for all driver errors."""


class ConfigError(VSphereMachineError):
    """The machine configuration is unusable."""


class IncompleteConfigError(ConfigError):
    """A required configuration value (or expected local file) is missing."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Incomplete vSphere information: missing {field}")


class InvalidStateError(VSphereMachineError):
    """The machine is not in the lifecycle state the operation requires."""

    def __init__(self, machine: str) -> None:
        self.machine = machine
        super().__init__(f"Machine {machine} state invalid")


class BackendError(VSphereMachineError):
    """A backend operation failed."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"vSphere {operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class BackendQueryError(BackendError):
    """A read-only backend query (power state, guest IP) failed."""


class RemoveError(VSphereMachineError):
    """The machine could not be stopped before removal."""


class DownloadError(VSphereMachineError):
    """The boot image could not be fetched."""


class NetworkError(DownloadError):
    """The HTTP request for the boot image failed."""


class FilesystemError(DownloadError):
    """The boot image could not be written to local storage."""


class SSHKeyError(VSphereMachineError):
    """The SSH key pair could not be generated."""


class RemoteConfigError(VSphereMachineError):
    """A command run inside the guest over SSH failed."""


class UnsupportedOperationError(VSphereMachineError):
    """The operation is not supported by this driver."""
