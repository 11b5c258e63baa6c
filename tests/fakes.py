"""In-memory stand-ins for asyncssh connections and SessionClient."""

import asyncio
import shlex
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Iterable

from batchssh.exceptions import ConnectError, RemoteNonZeroExit, UploadConflict
from batchssh.types import PingResult, Result


class FakeStream:
    def __init__(self, data: str) -> None:
        self._data = data

    async def read(self) -> str:
        return self._data


class FakeProcess:
    """Mimics asyncssh.SSHClientProcess used as an async context manager."""

    def __init__(self, stdout: str, stderr: str, exit_status: int | None, exit_signal: Any = None) -> None:
        self.stdout = FakeStream(stdout)
        self.stderr = FakeStream(stderr)
        self.exit_status = exit_status
        self.exit_signal = exit_signal

    async def __aenter__(self) -> "FakeProcess":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        pass

    async def wait(self) -> "FakeProcess":
        return self


class FakeSFTP:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn

    async def __aenter__(self) -> "FakeSFTP":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        pass

    async def isfile(self, path: str) -> bool:
        return path in self.conn.files

    async def isdir(self, path: str) -> bool:
        return path in self.conn.dirs

    async def put(self, local_path: str, remote_path: str) -> None:
        if self.conn.fail_put:
            raise OSError("No such file")
        self.conn.files[remote_path] = Path(local_path).read_text()
        self.conn.puts.append(remote_path)

    async def chmod(self, path: str, mode: int) -> None:
        self.conn.modes[path] = mode


class FakeChannel:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    """Mimics the parts of asyncssh.SSHClientConnection that batchssh uses.

    Remote files live in the ``files`` dict. Commands run through
    create_process are answered by ``handler(command)``, which returns
    (stdout, stderr, exit_status).
    """

    def __init__(
        self,
        handler: Callable[[str], tuple[str, str, int | None]] | None = None,
        files: dict[str, str] | None = None,
        dirs: Iterable[str] = (),
        fail_rm: bool = False,
        fail_cp: bool = False,
        fail_put: bool = False,
        session_delay: float = 0.0,
        session_error: Exception | None = None,
        exit_signal: Any = None,
    ) -> None:
        self.handler = handler or (lambda command: ("", "", 0))
        self.files = dict(files or {})
        self.dirs = set(dirs)
        self.modes: dict[str, int] = {}
        self.puts: list[str] = []
        self.processes: list[str] = []
        self.runs: list[str] = []
        self.fail_rm = fail_rm
        self.fail_cp = fail_cp
        self.fail_put = fail_put
        self.session_delay = session_delay
        self.session_error = session_error
        self.exit_signal = exit_signal
        self.channels: list[FakeChannel] = []
        self.closed = False
        self.aborted = False

    def create_process(self, command: str, **kwargs: Any) -> FakeProcess:
        self.processes.append(command)
        stdout, stderr, status = self.handler(command)
        return FakeProcess(stdout, stderr, status, self.exit_signal)

    async def run(self, command: str, check: bool = False) -> SimpleNamespace:
        self.runs.append(command)
        argv = shlex.split(command)
        if argv[:2] == ["rm", "-f"]:
            if self.fail_rm:
                return SimpleNamespace(exit_status=1, stdout="", stderr="rm: permission denied\n")
            self.files.pop(argv[2], None)
        elif argv[0] == "cp":
            if self.fail_cp:
                return SimpleNamespace(exit_status=1, stdout="", stderr="cp: no space left\n")
            self.files[argv[2]] = self.files[argv[1]]
        return SimpleNamespace(exit_status=0, stdout="", stderr="")

    def start_sftp_client(self) -> FakeSFTP:
        return FakeSFTP(self)

    async def create_session(self, session_factory: Any) -> tuple[FakeChannel, None]:
        if self.session_delay:
            await asyncio.sleep(self.session_delay)
        if self.session_error is not None:
            raise self.session_error
        channel = FakeChannel()
        self.channels.append(channel)
        return channel, None

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass

    def abort(self) -> None:
        self.aborted = True


class FakeConnector:
    """Replacement for asyncssh.connect that hands out a FakeConnection."""

    def __init__(
        self,
        connection: FakeConnection | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.connection = connection or FakeConnection()
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, int, dict[str, Any]]] = []

    async def __call__(self, host: str, port: int = 22, **options: Any) -> FakeConnection:
        self.calls.append((host, port, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.connection


class FakeClientFactory:
    """Builds FakeSessionClients and tracks how many are active at once.

    Args:
        exit_codes: Remote exit status per host address (default 0)
        unreachable: Addresses whose connect() fails
        crash: Addresses whose operation raises an unexpected exception
        delays: Seconds each host's operation takes (default 0.001)
        conflicts: Addresses where an upload destination already exists
    """

    def __init__(
        self,
        exit_codes: dict[str, int] | None = None,
        unreachable: tuple[str, ...] = (),
        crash: tuple[str, ...] = (),
        delays: dict[str, float] | None = None,
        conflicts: tuple[str, ...] = (),
    ) -> None:
        self.exit_codes = exit_codes or {}
        self.unreachable = unreachable
        self.crash = crash
        self.delays = delays or {}
        self.conflicts = conflicts
        self.clients: list["FakeSessionClient"] = []
        self.active = 0
        self.peak = 0

    def __call__(self, host: str, **kwargs: Any) -> "FakeSessionClient":
        client = FakeSessionClient(self, host, **kwargs)
        self.clients.append(client)
        return client


class FakeSessionClient:
    def __init__(self, factory: FakeClientFactory, host: str, **kwargs: Any) -> None:
        self.factory = factory
        self.host = host
        self.options = kwargs
        self.connected = False
        self.closed = False

    async def __aenter__(self) -> "FakeSessionClient":
        self.factory.active += 1
        self.factory.peak = max(self.factory.peak, self.factory.active)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.factory.active -= 1
        self.closed = True

    async def connect(self) -> None:
        if self.host in self.factory.unreachable:
            raise ConnectError(self.host, "connection failed", "Connection refused")
        self.connected = True

    async def _work(self) -> None:
        await asyncio.sleep(self.factory.delays.get(self.host, 0.001))
        if self.host in self.factory.crash:
            raise RuntimeError("boom")

    async def execute(self, command: str, become: bool = False, become_user: str = "") -> Result:
        await self._work()
        code = self.factory.exit_codes.get(self.host, 0)
        return Result(
            host=self.host,
            command=command,
            stdout=f"{self.host}\n",
            exit_code=code,
            error=RemoteNonZeroExit(self.host, code) if code else None,
        )

    async def execute_script(
        self, local_path: str, become: bool = False, become_user: str = "", interpreter: str = "bash"
    ) -> Result:
        result = await self.execute(f"{interpreter} script")
        return Result(
            host=result.host,
            command=local_path,
            stdout=result.stdout,
            exit_code=result.exit_code,
            error=result.error,
        )

    async def upload_file(
        self, local_path: str, remote_path: str, mode: str = "", backup: bool = False, force: bool = False
    ) -> Result:
        await self._work()
        command = f"upload {local_path} -> {remote_path}"
        if self.host in self.factory.conflicts and not (force or backup):
            return Result.failure(self.host, command, UploadConflict(self.host, remote_path), exit_code=1)
        return Result(host=self.host, command=command, stdout=f"uploaded to {remote_path}")

    async def ping(self, timeout: float | None = None) -> PingResult:
        await self._work()
        if self.host in self.factory.unreachable:
            return PingResult(
                host=self.host,
                success=False,
                error=ConnectError(self.host, "connection failed", "Connection refused"),
            )
        return PingResult(host=self.host, success=True)
