"""Type definitions for batchssh.

Core records shared by the inventory resolver, the SSH session client and the
concurrent executor. Results are frozen once a host task produces them; the
request object is built once per invocation and passed down explicitly.
"""

import enum
from dataclasses import dataclass, field
from getpass import getuser

from .exceptions import (
    AuthResolutionError,
    BatchSSHError,
    ConnectError,
    RecoveredFault,
    RemoteNonZeroExit,
    UploadConflict,
)

DEFAULT_PORT = 22
DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT = 30.0


def default_user() -> str:
    """Login name of the current user, or "" when it cannot be determined.

    getpass.getuser() raises when the uid has no passwd entry, which is
    common in containers.
    """
    try:
        return getuser()
    except (KeyError, OSError):
        return ""


@dataclass
class Host:
    """A target host resolved from an inventory source.

    Attributes:
        address: Hostname or IP address to connect to
        port: SSH port (default: 22)
        user: Per-host login user, empty to use the request default
        key_path: Per-host private key path, empty to use the request default
        groups: Group names in first-seen order, without duplicates

    Example:
        >>> host = Host(address="10.0.0.5", user="deploy", groups=["web"])
        >>> host.identity
        ('10.0.0.5', 22)
        >>> host.add_group("web")
        >>> host.add_group("db")
        >>> host.groups
        ['web', 'db']
    """

    address: str
    port: int = DEFAULT_PORT
    user: str = ""
    key_path: str = ""
    groups: list[str] = field(default_factory=list)

    @property
    def identity(self) -> tuple[str, int]:
        """Deduplication key for the host."""
        return (self.address, self.port)

    @property
    def label(self) -> str:
        """Display form: address, with the port only when it is not 22."""
        if self.port == DEFAULT_PORT:
            return self.address
        return f"{self.address}:{self.port}"

    def add_group(self, group: str) -> None:
        """Record membership in a group, keeping first-seen order."""
        if group not in self.groups:
            self.groups.append(group)


class Outcome(enum.Enum):
    """How a host's operation ended, as shown to the user."""

    SUCCEEDED = "succeeded"
    CONNECT_FAILED = "connect_failed"
    REMOTE_FAILED = "remote_failed"
    TRANSPORT_FAILED = "transport_failed"
    SKIPPED = "skipped"
    FAULT = "fault"


class TaskState(enum.Enum):
    """Lifecycle of one host task, with the progress percentage reported for it."""

    CONNECTING = ("connecting", 10)
    AUTHENTICATED = ("authenticated", 30)
    RUNNING = ("running", 60)
    SUCCEEDED = ("succeeded", 100)
    FAILED = ("failed", 100)

    def __init__(self, label: str, percent: int) -> None:
        self.label = label
        self.percent = percent


def outcome_for(error: BatchSSHError | None) -> Outcome:
    """Classify an attached error into an Outcome."""
    if error is None:
        return Outcome.SUCCEEDED
    if isinstance(error, UploadConflict):
        return Outcome.SKIPPED
    if isinstance(error, RemoteNonZeroExit):
        return Outcome.REMOTE_FAILED
    if isinstance(error, (ConnectError, AuthResolutionError)):
        return Outcome.CONNECT_FAILED
    if isinstance(error, RecoveredFault):
        return Outcome.FAULT
    return Outcome.TRANSPORT_FAILED


@dataclass(frozen=True)
class Result:
    """Result of one command, script or upload against one host.

    Attributes:
        host: Address of the host
        command: Command line, script path or upload description
        stdout: Captured standard output
        stderr: Captured standard error, plus any cleanup warning
        exit_code: Remote exit status; -1 when none was reported
        duration: Wall-clock seconds spent on the host
        error: Typed error, None on success

    Example:
        >>> result = Result(host="web01", command="true", exit_code=0)
        >>> result.success
        True
        >>> result.outcome
        <Outcome.SUCCEEDED: 'succeeded'>
    """

    host: str
    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0.0
    error: BatchSSHError | None = None

    @property
    def success(self) -> bool:
        """True when no error is attached and the exit status is zero."""
        return self.error is None and self.exit_code == 0

    @property
    def outcome(self) -> Outcome:
        return outcome_for(self.error)

    @classmethod
    def failure(
        cls,
        host: str,
        command: str,
        error: BatchSSHError,
        duration: float = 0.0,
        exit_code: int = -1,
    ) -> "Result":
        """Create a failed result whose stderr carries the error text.

        Args:
            host: Host address
            command: Command or operation description
            error: The error to attach
            duration: Seconds spent before failing
            exit_code: Exit code to report (default: -1)

        Returns:
            Result indicating failure
        """
        return cls(
            host=host,
            command=command,
            stderr=str(error),
            exit_code=exit_code,
            duration=duration,
            error=error,
        )


@dataclass(frozen=True)
class PingResult:
    """Result of a reachability probe against one host."""

    host: str
    success: bool
    duration: float = 0.0
    error: BatchSSHError | None = None

    @property
    def outcome(self) -> Outcome:
        return outcome_for(self.error)


@dataclass(frozen=True)
class ConnectionDefaults:
    """Request-level connection defaults applied to hosts that leave a field unset.

    Attributes:
        user: Default login user (default: current user)
        key_path: Default private key path
        password: Password for password authentication
        port: Default port, applied to literal addresses without one
        timeout: Connect timeout in seconds
    """

    user: str = field(default_factory=default_user)
    key_path: str = ""
    password: str = ""
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT


@dataclass(frozen=True)
class RunRequest:
    """Immutable per-invocation request.

    Built once by the command-line layer after merging explicit options,
    ansible.cfg defaults and built-in defaults, then passed explicitly to
    every layer that needs it.

    Attributes:
        inventory: Inventory source given explicitly (path or address list)
        inventory_paths: Inventory paths from ansible.cfg, used when no
            explicit source is given
        group: Group selection expression ("" or "all" selects everything)
        user: Default login user
        key_path: Default private key path
        password: Password for authentication
        port: Default SSH port
        concurrency: Maximum number of hosts worked on at once
        timeout: Connect timeout in seconds
        log_dir: Directory for JSON run logs, empty to disable
        config_file: ansible.cfg path the defaults were read from, if any

    Example:
        >>> request = RunRequest(inventory="hosts.ini", group="web", user="deploy")
        >>> request.defaults().user
        'deploy'
    """

    inventory: str = ""
    inventory_paths: tuple[str, ...] = ()
    group: str = ""
    user: str = field(default_factory=default_user)
    key_path: str = ""
    password: str = ""
    port: int = DEFAULT_PORT
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT
    log_dir: str = ""
    config_file: str = ""

    def defaults(self) -> ConnectionDefaults:
        """Connection defaults carried by this request."""
        return ConnectionDefaults(
            user=self.user,
            key_path=self.key_path,
            password=self.password,
            port=self.port,
            timeout=self.timeout,
        )
