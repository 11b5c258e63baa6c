"""batchssh - run commands, scripts and uploads on many hosts over SSH.

Quick Start:
    from batchssh import ConcurrentExecutor, resolve_hosts

    hosts = resolve_hosts("hosts.ini", "web")
    results = await ConcurrentExecutor(hosts).run_command("uptime", concurrency=10)
"""

__version__ = "0.1.0"

from batchssh.executor import ConcurrentExecutor, ExecutionSummary
from batchssh.inventory import resolve_groups, resolve_hosts
from batchssh.ssh import SessionClient
from batchssh.types import Host, PingResult, Result, RunRequest

__all__ = [
    "__version__",
    "ConcurrentExecutor",
    "ExecutionSummary",
    "Host",
    "PingResult",
    "Result",
    "RunRequest",
    "SessionClient",
    "resolve_groups",
    "resolve_hosts",
]
