"""Error classes for batchssh.

Request-level errors (bad inventory, bad configuration) are raised before any
host is contacted and abort the run. Per-host errors derive from HostError;
they are never raised past the executor but are attached to the host's
Result so the reporting layer can tell outcomes apart.
"""

import enum


class ExitCode(enum.IntEnum):
    """Process exit codes used by the command-line interface."""

    SUCCESS = 0
    GENERIC_ERROR = 1
    HOST_FAILED = 2
    KEYBOARD_INTERRUPT = 130


class BatchSSHError(Exception):
    """Base exception for all batchssh errors."""

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class InventoryError(BatchSSHError):
    """Inventory source unreadable, malformed, or resolved to zero hosts."""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        line: int | None = None,
        details: str | None = None,
    ) -> None:
        self.source = source
        self.line = line
        location = ""
        if source:
            location = f" ({source}"
            if line:
                location += f", line {line}"
            location += ")"
        super().__init__(f"{message}{location}", details)


class ConfigError(BatchSSHError):
    """Invalid configuration file or request value."""


class HostError(BatchSSHError):
    """Base for errors scoped to a single host.

    Attributes:
        host: Address of the host the error belongs to
    """

    def __init__(self, host: str, message: str, details: str | None = None) -> None:
        self.host = host
        super().__init__(message, details)


class AuthResolutionError(HostError):
    """No explicit key, password, or default key yielded a usable credential."""


class ConnectError(HostError):
    """Transport or handshake failure while connecting."""


class TransportTimeout(ConnectError):
    """Connect or session-open step did not finish within the timeout."""

    def __init__(self, host: str, timeout: float, step: str = "connect") -> None:
        self.timeout = timeout
        self.step = step
        super().__init__(host, f"{step} timed out after {timeout:g}s")


class TransportError(HostError):
    """The connection failed after it was established.

    Covers channel loss, SFTP failures and commands that ended without
    reporting an exit status.
    """


class LocalFileError(HostError):
    """A local script or upload source could not be read."""

    def __init__(self, host: str, path: str, details: str | None = None) -> None:
        self.path = path
        super().__init__(host, f"cannot read local file {path}", details)


class RemoteNonZeroExit(HostError):
    """The remote command ran and exited with a non-zero status.

    This is a legitimate outcome of the operation, not a system fault.
    """

    def __init__(self, host: str, exit_code: int) -> None:
        self.remote_exit_code = exit_code
        super().__init__(host, f"command exited with status {exit_code}")


class UploadConflict(HostError):
    """Upload destination already exists and neither force nor backup was set."""

    def __init__(self, host: str, path: str) -> None:
        self.path = path
        super().__init__(host, f"file exists, skipped: {path} (use --force/--backup)")


class CleanupWarning(HostError):
    """Temporary script removal failed after the script itself succeeded.

    Never raised. Its text is appended to the result's stderr.
    """

    def __init__(self, host: str, path: str, details: str | None = None) -> None:
        self.path = path
        super().__init__(host, f"warning: failed to remove temporary script {path}", details)


class RecoveredFault(HostError):
    """An unexpected exception inside a host task, converted to a failed result."""

    def __init__(self, host: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(host, "unexpected error", f"{type(cause).__name__}: {cause}")
