"""Progress reporting for batchssh.

The executor reports each host's lifecycle to a ProgressSink: added,
percentage/stage updates, done, errored. How that is rendered is up to the
sink:
- PerHostProgressDisplay: one Rich bar per host, for small runs
- AggregateProgressDisplay: one Rich counter for the whole run, failed hosts
  printed as they fail, for large runs
- JsonProgressSink: NDJSON events on stderr, for machine consumers
- NullProgressSink: no output

create_progress_sink() picks per-host or aggregate display by host count.
"""

import json
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

# Runs with at least this many hosts get a single aggregate bar
PER_HOST_THRESHOLD = 20


@dataclass
class ProgressEvent:
    """A progress event for one host.

    Attributes:
        event_type: host_added, host_update, host_done or host_errored
        host: Host address
        timestamp: When the event occurred
        details: Additional event-specific details
    """

    event_type: str
    host: str
    timestamp: str
    details: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "event": self.event_type,
            "host": self.host,
            "timestamp": self.timestamp,
        }
        result.update(self.details)
        return result

    def to_json(self) -> str:
        """Convert to JSON string (NDJSON format)."""
        return json.dumps(self.to_dict())


class ProgressSink(ABC):
    """Receives per-host lifecycle notifications from the executor."""

    @abstractmethod
    def add_host(self, host: str) -> None:
        """Called when a host's task is created."""

    @abstractmethod
    def update_host(self, host: str, percent: int, stage: str) -> None:
        """Called when a host's task moves to a new stage."""

    @abstractmethod
    def mark_done(self, host: str) -> None:
        """Called when a host's operation succeeded."""

    @abstractmethod
    def mark_errored(self, host: str, reason: str) -> None:
        """Called when a host's operation failed."""

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def __enter__(self) -> "ProgressSink":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


class NullProgressSink(ProgressSink):
    """Discards all notifications."""

    def add_host(self, host: str) -> None:
        pass

    def update_host(self, host: str, percent: int, stage: str) -> None:
        pass

    def mark_done(self, host: str) -> None:
        pass

    def mark_errored(self, host: str, reason: str) -> None:
        pass


class JsonProgressSink(ProgressSink):
    """Reports progress as NDJSON (newline-delimited JSON) events."""

    def __init__(self, output: Any = None) -> None:
        """Initialize JSON progress sink.

        Args:
            output: Output stream (defaults to sys.stderr to not pollute stdout)
        """
        self.output = output or sys.stderr

    def _emit(self, event_type: str, host: str, **details: Any) -> None:
        event = ProgressEvent(
            event_type=event_type,
            host=host,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details,
        )
        print(event.to_json(), file=self.output, flush=True)

    def add_host(self, host: str) -> None:
        self._emit("host_added", host)

    def update_host(self, host: str, percent: int, stage: str) -> None:
        self._emit("host_update", host, percent=percent, stage=stage)

    def mark_done(self, host: str) -> None:
        self._emit("host_done", host, success=True)

    def mark_errored(self, host: str, reason: str) -> None:
        self._emit("host_errored", host, success=False, reason=reason)


class PerHostProgressDisplay(ProgressSink):
    """One Rich progress bar per host.

    Example:
        with PerHostProgressDisplay() as display:
            results = await executor.run_command("uptime", progress=display)
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )
        # Map of host -> Rich task ID
        self._tasks: dict[str, TaskID] = {}

    def start(self) -> None:
        self.progress.start()

    def stop(self) -> None:
        self.progress.stop()

    def add_host(self, host: str) -> None:
        if host not in self._tasks:
            self._tasks[host] = self.progress.add_task(host, total=100)

    def update_host(self, host: str, percent: int, stage: str) -> None:
        self.add_host(host)
        self.progress.update(
            self._tasks[host], completed=percent, description=f"{host} ({stage})"
        )

    def mark_done(self, host: str) -> None:
        self.add_host(host)
        self.progress.update(
            self._tasks[host], completed=100, description=f"[green]{host}"
        )

    def mark_errored(self, host: str, reason: str) -> None:
        self.add_host(host)
        self.progress.update(
            self._tasks[host], completed=100, description=f"[red]{host}: {reason}"
        )
        self.console.print(f"[red]FAILED[/red] {host}: {reason}", markup=True)


class AggregateProgressDisplay(ProgressSink):
    """A single Rich counter for the whole run.

    Per-host stage updates are ignored; each finished host advances the
    counter and each failed host is printed above the bar.
    """

    def __init__(self, total: int, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)
        self.total = total
        self.succeeded = 0
        self.failed = 0
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )
        self._task = self.progress.add_task(self._description(), total=total)

    def _description(self) -> str:
        return f"{self.succeeded} ok, {self.failed} failed"

    def start(self) -> None:
        self.progress.start()

    def stop(self) -> None:
        self.progress.stop()

    def add_host(self, host: str) -> None:
        pass

    def update_host(self, host: str, percent: int, stage: str) -> None:
        pass

    def mark_done(self, host: str) -> None:
        self.succeeded += 1
        self.progress.update(self._task, advance=1, description=self._description())

    def mark_errored(self, host: str, reason: str) -> None:
        self.failed += 1
        self.progress.update(self._task, advance=1, description=self._description())
        self.console.print(f"[red]FAILED[/red] {host}: {reason}", markup=True)


def create_progress_sink(
    host_count: int,
    enabled: bool = True,
    json_format: bool = False,
    threshold: int = PER_HOST_THRESHOLD,
    output: Any = None,
    console: Console | None = None,
) -> ProgressSink:
    """Create a progress sink for a run.

    Args:
        host_count: Number of hosts in the run
        enabled: Whether progress reporting is enabled
        json_format: Emit NDJSON events instead of a live display
        threshold: Host count at which the aggregate display is used
        output: Output stream for JSON events (defaults to sys.stderr)
        console: Rich Console for live displays

    Returns:
        ProgressSink instance
    """
    if not enabled:
        return NullProgressSink()

    if json_format:
        return JsonProgressSink(output)

    if host_count >= threshold:
        return AggregateProgressDisplay(host_count, console=console)
    return PerHostProgressDisplay(console=console)
