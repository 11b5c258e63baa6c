"""Operation requests dispatched by the executor.

Each operation knows how to run itself against a connected SessionClient and
how to describe itself in a failed result produced before the client ran.
Operations that read a local file check it in validate(), before any
connection is opened.
"""

import enum
import os
from dataclasses import dataclass

from .exceptions import BatchSSHError, LocalFileError
from .ssh import SessionClient
from .types import PingResult, Result


class OperationKind(enum.Enum):
    COMMAND = "run"
    SCRIPT = "script"
    UPLOAD = "upload"
    PING = "ping"


@dataclass(frozen=True)
class CommandOperation:
    """Run a shell command, optionally through sudo."""

    command: str
    become: bool = False
    become_user: str = ""

    kind = OperationKind.COMMAND
    connects_first = True

    def describe(self) -> str:
        return self.command

    def validate(self, host: str) -> None:
        pass

    async def apply(self, client: SessionClient) -> Result:
        return await client.execute(self.command, self.become, self.become_user)

    def failure(self, host: str, error: BatchSSHError, duration: float) -> Result:
        return Result.failure(host, self.describe(), error, duration)


@dataclass(frozen=True)
class ScriptOperation:
    """Upload a local script, run it with an interpreter, then remove it."""

    script_path: str
    become: bool = False
    become_user: str = ""
    interpreter: str = "bash"

    kind = OperationKind.SCRIPT
    connects_first = True

    def describe(self) -> str:
        return self.script_path

    def validate(self, host: str) -> None:
        if not os.path.isfile(self.script_path):
            raise LocalFileError(host, self.script_path, "not a file")

    async def apply(self, client: SessionClient) -> Result:
        return await client.execute_script(
            self.script_path, self.become, self.become_user, self.interpreter
        )

    def failure(self, host: str, error: BatchSSHError, duration: float) -> Result:
        return Result.failure(host, self.describe(), error, duration)


@dataclass(frozen=True)
class UploadOperation:
    """Copy a local file to every host."""

    local_path: str
    remote_path: str
    mode: str = ""
    backup: bool = False
    force: bool = False

    kind = OperationKind.UPLOAD
    connects_first = True

    def describe(self) -> str:
        return f"upload {self.local_path} -> {self.remote_path}"

    def validate(self, host: str) -> None:
        if not os.path.isfile(self.local_path):
            raise LocalFileError(host, self.local_path, "not a file")

    async def apply(self, client: SessionClient) -> Result:
        return await client.upload_file(
            self.local_path, self.remote_path, self.mode, self.backup, self.force
        )

    def failure(self, host: str, error: BatchSSHError, duration: float) -> Result:
        return Result.failure(host, self.describe(), error, duration)


@dataclass(frozen=True)
class PingOperation:
    """Probe reachability; the probe manages its own connection."""

    timeout: float | None = None

    kind = OperationKind.PING
    connects_first = False

    def describe(self) -> str:
        return "ping"

    def validate(self, host: str) -> None:
        pass

    async def apply(self, client: SessionClient) -> PingResult:
        return await client.ping(self.timeout)

    def failure(self, host: str, error: BatchSSHError, duration: float) -> PingResult:
        return PingResult(host=host, success=False, duration=duration, error=error)


Operation = CommandOperation | ScriptOperation | UploadOperation | PingOperation
