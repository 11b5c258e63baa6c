"""Concurrent execution across a host list.

Each host gets its own asyncio task and its own SessionClient. A semaphore
bounds how many tasks work at once, any failure inside a task becomes that
host's failed result, and results come back in the order of the input hosts
no matter which task finishes first.
"""

import asyncio
import dataclasses
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .exceptions import HostError, RecoveredFault
from .logging import log_performance
from .operations import (
    CommandOperation,
    Operation,
    PingOperation,
    ScriptOperation,
    UploadOperation,
)
from .progress import NullProgressSink, ProgressSink
from .ssh import SessionClient
from .types import (
    DEFAULT_CONCURRENCY,
    ConnectionDefaults,
    Host,
    Outcome,
    PingResult,
    Result,
    TaskState,
)

logger = logging.getLogger(__name__)

HostResult = Result | PingResult


def normalize_concurrency(concurrency: int | None) -> int:
    """Concurrency limit to use; zero, negative or None means the default of 5."""
    if not concurrency or concurrency <= 0:
        return DEFAULT_CONCURRENCY
    return concurrency


@dataclass
class ExecutionSummary:
    """Statistics over one executor run.

    Attributes:
        results: Per-host results in host order
        duration: Wall-clock seconds for the whole run
        total_hosts: Number of hosts
        successful: Hosts whose operation succeeded
        failed: Hosts whose operation failed or was skipped
        outcomes: Count of results per Outcome

    Example:
        >>> summary = ExecutionSummary(results=[Result(host="a", command="true")])
        >>> summary.successful, summary.failed
        (1, 0)
    """

    results: list[HostResult] = field(default_factory=list)
    duration: float = 0.0
    total_hosts: int = 0
    successful: int = 0
    failed: int = 0
    outcomes: dict[Outcome, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Calculate statistics from results."""
        if not self.results:
            return

        self.total_hosts = len(self.results)
        self.successful = sum(1 for r in self.results if r.success)
        self.failed = self.total_hosts - self.successful
        self.outcomes = dict(Counter(r.outcome for r in self.results))

    def is_success(self) -> bool:
        """Check if every host succeeded."""
        return self.failed == 0


class ConcurrentExecutor:
    """Runs one operation against every host with bounded concurrency.

    Hosts fall back to the request defaults for any of user, key and port
    they leave unset. One host's failure never affects another host or the
    completion of the run.

    Attributes:
        hosts: Resolved hosts, in the order results are returned
        defaults: Request-level connection defaults
        client_factory: Builds the SessionClient for each host

    Example:
        >>> executor = ConcurrentExecutor(hosts, ConnectionDefaults(user="deploy"))
        >>> results = await executor.run_command("uptime", concurrency=10)
        >>> [r.exit_code for r in results]
        [0, 0, 0]
    """

    def __init__(
        self,
        hosts: Sequence[Host],
        defaults: ConnectionDefaults | None = None,
        client_factory: Callable[..., Any] = SessionClient,
    ) -> None:
        self.hosts = list(hosts)
        self.defaults = defaults or ConnectionDefaults()
        self.client_factory = client_factory

    def effective_host(self, host: Host) -> Host:
        """Apply request defaults to the fields a host leaves unset."""
        return dataclasses.replace(
            host,
            user=host.user or self.defaults.user,
            key_path=host.key_path or self.defaults.key_path,
            port=host.port or self.defaults.port,
            groups=list(host.groups),
        )

    def _client_for(self, host: Host) -> Any:
        effective = self.effective_host(host)
        return self.client_factory(
            effective.address,
            port=effective.port,
            user=effective.user,
            key_path=effective.key_path,
            password=self.defaults.password,
            timeout=self.defaults.timeout,
        )

    async def run(
        self,
        operation: Operation,
        concurrency: int = DEFAULT_CONCURRENCY,
        progress: ProgressSink | None = None,
    ) -> list[HostResult]:
        """Run an operation on every host.

        Args:
            operation: What to do on each host
            concurrency: Maximum hosts worked on at once (<= 0 means 5)
            progress: Receives per-host lifecycle notifications

        Returns:
            One result per host; results[i] belongs to hosts[i]
        """
        limit = normalize_concurrency(concurrency)
        sink = progress or NullProgressSink()
        semaphore = asyncio.Semaphore(limit)
        lock = asyncio.Lock()
        results: list[HostResult | None] = [None] * len(self.hosts)

        with log_performance(
            logger,
            f"{operation.kind.value} on {len(self.hosts)} hosts",
            level=logging.DEBUG,
            concurrency=limit,
        ):
            tasks = [
                asyncio.create_task(
                    self._run_host(index, host, operation, semaphore, lock, results, sink)
                )
                for index, host in enumerate(self.hosts)
            ]
            returned = await asyncio.gather(*tasks, return_exceptions=True)

        # Anything that escaped a task wrapper still becomes that host's result
        for index, value in enumerate(returned):
            if isinstance(value, BaseException) and results[index] is None:
                address = self.hosts[index].address
                logger.error(f"Task for {address} failed: {value!r}")
                results[index] = operation.failure(address, RecoveredFault(address, value), 0.0)

        missing = [self.hosts[i].address for i, r in enumerate(results) if r is None]
        if missing:
            raise RuntimeError(f"No result recorded for hosts: {', '.join(missing)}")
        return results  # type: ignore[return-value]

    async def _run_host(
        self,
        index: int,
        host: Host,
        operation: Operation,
        semaphore: asyncio.Semaphore,
        lock: asyncio.Lock,
        results: list[HostResult | None],
        progress: ProgressSink,
    ) -> None:
        address = host.address
        start = time.monotonic()
        try:
            progress.add_host(address)
            operation.validate(address)
            progress.update_host(address, TaskState.CONNECTING.percent, TaskState.CONNECTING.label)
            async with semaphore:
                async with self._client_for(host) as client:
                    if operation.connects_first:
                        await client.connect()
                        progress.update_host(
                            address,
                            TaskState.AUTHENTICATED.percent,
                            TaskState.AUTHENTICATED.label,
                        )
                    progress.update_host(address, TaskState.RUNNING.percent, TaskState.RUNNING.label)
                    result = await operation.apply(client)
        except HostError as e:
            result = operation.failure(address, e, time.monotonic() - start)
        except Exception as e:
            logger.exception(f"Unexpected error on {address}")
            result = operation.failure(address, RecoveredFault(address, e), time.monotonic() - start)

        async with lock:
            results[index] = result

        if result.success:
            progress.update_host(address, TaskState.SUCCEEDED.percent, TaskState.SUCCEEDED.label)
            progress.mark_done(address)
        else:
            reason = str(result.error) if result.error is not None else "failed"
            progress.update_host(address, TaskState.FAILED.percent, TaskState.FAILED.label)
            progress.mark_errored(address, reason)

    async def run_command(
        self,
        command: str,
        become: bool = False,
        become_user: str = "",
        concurrency: int = DEFAULT_CONCURRENCY,
        progress: ProgressSink | None = None,
    ) -> list[Result]:
        """Run a shell command on every host."""
        return await self.run(CommandOperation(command, become, become_user), concurrency, progress)

    async def run_script(
        self,
        script_path: str,
        become: bool = False,
        become_user: str = "",
        interpreter: str = "bash",
        concurrency: int = DEFAULT_CONCURRENCY,
        progress: ProgressSink | None = None,
    ) -> list[Result]:
        """Upload and run a local script on every host."""
        operation = ScriptOperation(script_path, become, become_user, interpreter)
        return await self.run(operation, concurrency, progress)

    async def upload_file(
        self,
        local_path: str,
        remote_path: str,
        mode: str = "",
        backup: bool = False,
        force: bool = False,
        concurrency: int = DEFAULT_CONCURRENCY,
        progress: ProgressSink | None = None,
    ) -> list[Result]:
        """Upload a local file to every host."""
        operation = UploadOperation(local_path, remote_path, mode, backup, force)
        return await self.run(operation, concurrency, progress)

    async def ping(
        self,
        timeout: float | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        progress: ProgressSink | None = None,
    ) -> list[PingResult]:
        """Probe every host."""
        return await self.run(PingOperation(timeout), concurrency, progress)
