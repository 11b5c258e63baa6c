"""Async SSH session client for batchssh.

One SessionClient owns one asyncssh connection for one operation against
one host: run a command, push and run a script, upload a file, or probe
reachability. Nothing is shared between hosts and connections are never
reused across operations.

Host keys are not verified (known_hosts=None).
"""

import asyncio
import dataclasses
import logging
import os
import shlex
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import asyncssh

from .exceptions import (
    AuthResolutionError,
    CleanupWarning,
    ConnectError,
    HostError,
    LocalFileError,
    RemoteNonZeroExit,
    TransportError,
    TransportTimeout,
    UploadConflict,
)
from .types import DEFAULT_PORT, DEFAULT_TIMEOUT, PingResult, Result

logger = logging.getLogger(__name__)

DEFAULT_KEY_FILES = ("~/.ssh/id_rsa", "~/.ssh/id_ed25519", "~/.ssh/id_ecdsa")
DEFAULT_UPLOAD_MODE = "0644"
SCRIPT_MODE = 0o755
TEMP_SCRIPT_PREFIX = "/tmp/batchssh_script"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

# Bound on waiting for a closed connection to finish shutting down
CLOSE_TIMEOUT = 5.0


def build_command(command: str, become: bool = False, become_user: str = "") -> str:
    """Wrap a command with sudo when elevation is requested.

    Example:
        >>> build_command("id", become=True)
        'sudo id'
        >>> build_command("id", become=True, become_user="postgres")
        'sudo -u postgres id'
    """
    if not become:
        return command
    if become_user and become_user != "root":
        return f"sudo -u {become_user} {command}"
    return f"sudo {command}"


def normalize_mode(mode: str | None) -> str:
    """Return the octal mode string, defaulting to 0644."""
    return mode or DEFAULT_UPLOAD_MODE


def backup_path_for(remote_path: str, now: datetime | None = None) -> str:
    """Backup destination: <path>.backup.YYYYMMDD-HHMMSS."""
    now = now or datetime.now()
    return f"{remote_path}.backup.{now.strftime(BACKUP_TIMESTAMP_FORMAT)}"


def temp_script_path() -> str:
    """Remote temporary script path from a monotonic clock and the local pid."""
    return f"{TEMP_SCRIPT_PREFIX}_{time.monotonic_ns()}_{os.getpid()}"


async def _release(conn: Any) -> None:
    """Close a connection, aborting it if the shutdown does not finish."""
    conn.close()
    try:
        await asyncio.wait_for(conn.wait_closed(), timeout=CLOSE_TIMEOUT)
    except asyncio.TimeoutError:
        logger.debug("Connection did not close cleanly, aborting")
        conn.abort()


class SessionClient:
    """SSH client for a single operation against a single host.

    The connection is opened on first use and released when the client is
    closed or its async context exits, on every path including errors and
    cancellation. Operations return Result objects with a typed error
    attached rather than raising; only connection setup failures
    (AuthResolutionError, ConnectError, TransportTimeout) are raised.

    Example:
        async with SessionClient("web01", user="deploy") as client:
            result = await client.execute("uptime")
            print(result.stdout)
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        user: str = "",
        key_path: str = "",
        password: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        connector: Callable[..., Any] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            host: Hostname or IP address
            port: SSH port
            user: Login user
            key_path: Explicit private key path (takes precedence over password)
            password: Password, used when no explicit key is given
            timeout: Connect timeout in seconds
            connector: Replacement for asyncssh.connect (used by tests)
        """
        self.host = host
        self.port = port
        self.user = user
        self.key_path = key_path
        self.password = password
        self.timeout = timeout
        self._connector = connector or asyncssh.connect
        self._conn: Any = None

    def resolve_credentials(self) -> dict[str, Any]:
        """Pick the authentication method and build asyncssh.connect() kwargs.

        Order: explicit key, explicit password, then the first default key
        under ~/.ssh that loads.

        Raises:
            AuthResolutionError: If no usable credential is found
        """
        options: dict[str, Any] = {"known_hosts": None}
        if self.user:
            options["username"] = self.user

        if self.key_path:
            path = os.path.expanduser(self.key_path)
            try:
                options["client_keys"] = [asyncssh.read_private_key(path)]
            except (OSError, asyncssh.KeyImportError) as e:
                raise AuthResolutionError(
                    self.host, f"cannot load private key {self.key_path}", str(e)
                ) from e
            return options

        if self.password:
            options["password"] = self.password
            options["client_keys"] = None
            return options

        for candidate in DEFAULT_KEY_FILES:
            path = os.path.expanduser(candidate)
            if not os.path.isfile(path):
                continue
            try:
                options["client_keys"] = [asyncssh.read_private_key(path)]
            except (OSError, asyncssh.KeyImportError) as e:
                logger.debug(f"Skipping default key {path}: {e}")
                continue
            return options

        raise AuthResolutionError(
            self.host, "no authentication method available (key or password)"
        )

    async def _open(self, timeout: float) -> Any:
        options = self.resolve_credentials()
        logger.debug(f"Connecting to {self.host}:{self.port}")
        try:
            conn = await asyncio.wait_for(
                self._connector(self.host, port=self.port, **options),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise TransportTimeout(self.host, timeout, "connect") from None
        except (asyncssh.Error, OSError) as e:
            raise ConnectError(self.host, "connection failed", str(e)) from e
        logger.debug(f"Connected to {self.host}:{self.port}")
        return conn

    async def connect(self) -> Any:
        """Open the connection if it is not open yet.

        Returns:
            The asyncssh connection

        Raises:
            AuthResolutionError: If no credential could be resolved
            TransportTimeout: If connecting took longer than the timeout
            ConnectError: On transport or handshake failure
        """
        if self._conn is None:
            self._conn = await self._open(self.timeout)
        return self._conn

    async def close(self) -> None:
        """Release the connection."""
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await _release(conn)
            logger.debug(f"Disconnected from {self.host}")

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def execute(
        self,
        command: str,
        become: bool = False,
        become_user: str = "",
    ) -> Result:
        """Run a command on the host.

        stdout and stderr are drained concurrently before waiting for the
        process to exit, so a full pipe on either stream cannot stall it.

        Args:
            command: Shell command line
            become: Run through sudo
            become_user: Target user for sudo (root when empty)

        Returns:
            Result with the remote exit status. A non-zero status attaches
            RemoteNonZeroExit. A missing status (killed by signal or lost
            channel) reports exit_code -1 with a TransportError.
        """
        start = time.monotonic()
        conn = await self.connect()
        final_command = build_command(command, become, become_user)
        logger.debug(f"Running on {self.host}: {final_command[:100]}")

        try:
            async with conn.create_process(final_command, errors="replace") as process:
                stdout, stderr = await asyncio.gather(
                    process.stdout.read(), process.stderr.read()
                )
                await process.wait()
                exit_status = process.exit_status
                exit_signal = process.exit_signal
        except (asyncssh.Error, OSError) as e:
            return Result.failure(
                self.host,
                command,
                TransportError(self.host, "command failed", str(e)),
                duration=time.monotonic() - start,
            )

        duration = time.monotonic() - start
        if exit_status is None or exit_status < 0:
            details = f"signal {exit_signal[0]}" if exit_signal else None
            return Result(
                host=self.host,
                command=command,
                stdout=stdout or "",
                stderr=stderr or "",
                exit_code=-1,
                duration=duration,
                error=TransportError(self.host, "command ended without an exit status", details),
            )

        logger.debug(f"Command completed on {self.host}: rc={exit_status}")
        return Result(
            host=self.host,
            command=command,
            stdout=stdout or "",
            stderr=stderr or "",
            exit_code=exit_status,
            duration=duration,
            error=RemoteNonZeroExit(self.host, exit_status) if exit_status else None,
        )

    async def _put(self, local_path: str, remote_path: str, mode: int) -> None:
        conn = await self.connect()
        async with conn.start_sftp_client() as sftp:
            await sftp.put(local_path, remote_path)
            await sftp.chmod(remote_path, mode)

    async def _remove(self, remote_path: str) -> str | None:
        """Best-effort rm -f; returns the failure text, or None."""
        if self._conn is None:
            return None
        try:
            completed = await self._conn.run(f"rm -f {shlex.quote(remote_path)}", check=False)
        except (asyncssh.Error, OSError) as e:
            return str(e)
        if completed.exit_status != 0:
            return (completed.stderr or "").strip() or f"exit status {completed.exit_status}"
        return None

    async def execute_script(
        self,
        local_path: str,
        become: bool = False,
        become_user: str = "",
        interpreter: str = "bash",
    ) -> Result:
        """Upload a local script to a temporary path, run it, then remove it.

        Removal is attempted whether or not the script succeeded. When it
        fails after a successful run, a warning is appended to stderr and
        the result stays successful.

        Args:
            local_path: Script on the local machine
            become: Run through sudo
            become_user: Target user for sudo
            interpreter: Program used to run the script

        Returns:
            Result whose command is the local script path
        """
        start = time.monotonic()
        if not os.path.isfile(local_path):
            return Result.failure(
                self.host, local_path, LocalFileError(self.host, local_path, "not a file")
            )

        remote_path = temp_script_path()
        try:
            await self._put(local_path, remote_path, SCRIPT_MODE)
            result = await self.execute(
                f"{interpreter or 'bash'} {shlex.quote(remote_path)}", become, become_user
            )
        except (asyncssh.Error, OSError) as e:
            result = Result.failure(
                self.host, local_path, TransportError(self.host, "script upload failed", str(e))
            )
        finally:
            cleanup_error = await self._remove(remote_path)

        stderr = result.stderr
        if cleanup_error and result.success:
            warning = CleanupWarning(self.host, remote_path, cleanup_error)
            logger.warning(f"{self.host}: {warning}")
            stderr = f"{stderr}\n{warning}" if stderr else str(warning)

        return dataclasses.replace(
            result,
            command=local_path,
            stderr=stderr,
            duration=time.monotonic() - start,
        )

    async def upload_file(
        self,
        local_path: str,
        remote_path: str,
        mode: str = "",
        backup: bool = False,
        force: bool = False,
    ) -> Result:
        """Upload a file, handling an existing destination.

        | exists | force | backup | action                                  |
        |--------|-------|--------|-----------------------------------------|
        | no     | -     | -      | upload                                  |
        | yes    | no    | no     | skip, exit_code 1 with UploadConflict   |
        | yes    | any   | yes    | copy to <path>.backup.<stamp>, upload   |
        | yes    | yes   | no     | overwrite                               |

        The remote parent directory must already exist, and a destination
        that is a directory is refused rather than written into.

        Args:
            local_path: Source file on the local machine
            remote_path: Destination path on the host
            mode: Octal permission string (default: 0644)
            backup: Keep a timestamped copy of an existing destination
            force: Overwrite an existing destination

        Returns:
            Result whose stdout names the destination and any backup
        """
        start = time.monotonic()
        command = f"upload {local_path} -> {remote_path}"

        if not os.path.isfile(local_path):
            return Result.failure(
                self.host, command, LocalFileError(self.host, local_path, "not a file")
            )
        mode_text = normalize_mode(mode)
        try:
            mode_bits = int(mode_text, 8)
        except ValueError:
            return Result.failure(
                self.host, command, HostError(self.host, f"invalid file mode '{mode_text}'")
            )

        conn = await self.connect()
        backup_path = ""
        try:
            async with conn.start_sftp_client() as sftp:
                if await sftp.isdir(remote_path):
                    return Result.failure(
                        self.host,
                        command,
                        HostError(self.host, "upload destination is a directory", remote_path),
                        duration=time.monotonic() - start,
                    )
                exists = await sftp.isfile(remote_path)
                if exists and not force and not backup:
                    return Result.failure(
                        self.host,
                        command,
                        UploadConflict(self.host, remote_path),
                        duration=time.monotonic() - start,
                        exit_code=1,
                    )

                if exists and backup:
                    backup_path = backup_path_for(remote_path)
                    completed = await conn.run(
                        f"cp {shlex.quote(remote_path)} {shlex.quote(backup_path)}",
                        check=False,
                    )
                    if completed.exit_status != 0:
                        return Result.failure(
                            self.host,
                            command,
                            TransportError(
                                self.host, "backup failed", (completed.stderr or "").strip()
                            ),
                            duration=time.monotonic() - start,
                        )

                await sftp.put(local_path, remote_path)
                await sftp.chmod(remote_path, mode_bits)
        except (asyncssh.Error, OSError) as e:
            return Result.failure(
                self.host,
                command,
                TransportError(self.host, "upload failed", str(e)),
                duration=time.monotonic() - start,
            )

        if backup_path:
            message = f"uploaded to {remote_path} (backup: {backup_path})"
        elif exists:
            message = f"overwrote {remote_path}"
        else:
            message = f"uploaded to {remote_path}"
        logger.info(f"{self.host}: {message}")

        return Result(
            host=self.host,
            command=command,
            stdout=message,
            exit_code=0,
            duration=time.monotonic() - start,
        )

    async def ping(self, timeout: float | None = None) -> PingResult:
        """Probe reachability by connecting and opening a session.

        The connect step and the session-open step are each bounded by
        timeout, since a handshake can succeed while session negotiation
        hangs. The probe uses its own connection and releases it on every
        path.

        Args:
            timeout: Seconds per step (default: the client's timeout)

        Returns:
            PingResult, never raises for host errors
        """
        timeout = self.timeout if timeout is None else timeout
        start = time.monotonic()
        conn = None
        try:
            conn = await self._open(timeout)
            try:
                channel, _ = await asyncio.wait_for(
                    conn.create_session(asyncssh.SSHClientSession),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                raise TransportTimeout(self.host, timeout, "session open") from None
            except (asyncssh.Error, OSError) as e:
                raise TransportError(self.host, "session open failed", str(e)) from e
            channel.close()
        except HostError as e:
            logger.debug(f"Ping failed for {self.host}: {e}")
            return PingResult(
                host=self.host, success=False, duration=time.monotonic() - start, error=e
            )
        finally:
            if conn is not None:
                await _release(conn)

        return PingResult(host=self.host, success=True, duration=time.monotonic() - start)
