"""Rendering of results and inventories for the command line.

Text and JSON formatters return strings so they can be tested directly;
the Rich table renderers print to a Console.
"""

import json
from datetime import datetime, timezone
from typing import Any, Sequence

from rich.console import Console
from rich.table import Table

from .executor import ExecutionSummary
from .types import Host, Outcome, PingResult, Result

STATUS_LABELS = {
    Outcome.SUCCEEDED: "OK",
    Outcome.CONNECT_FAILED: "UNREACHABLE",
    Outcome.REMOTE_FAILED: "FAILED",
    Outcome.TRANSPORT_FAILED: "ERROR",
    Outcome.SKIPPED: "SKIPPED",
    Outcome.FAULT: "ERROR",
}

STATUS_STYLES = {
    Outcome.SUCCEEDED: "green",
    Outcome.SKIPPED: "yellow",
}

# Longest error text shown in a table cell
MAX_ERROR_WIDTH = 60


def status_label(result: Result | PingResult) -> str:
    return STATUS_LABELS[result.outcome]


def _truncate(text: str, limit: int = MAX_ERROR_WIDTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def result_to_dict(result: Result) -> dict[str, Any]:
    """Convert a Result to a JSON-serializable dictionary."""
    data: dict[str, Any] = {
        "host": result.host,
        "command": result.command,
        "status": status_label(result),
        "outcome": result.outcome.value,
        "success": result.success,
        "exit_code": result.exit_code,
        "stdout": result.stdout,
        "stderr": result.stderr,
        "duration": round(result.duration, 3),
    }
    if result.error is not None:
        data["error"] = str(result.error)
    return data


def ping_result_to_dict(result: PingResult) -> dict[str, Any]:
    data: dict[str, Any] = {
        "host": result.host,
        "status": status_label(result),
        "success": result.success,
        "duration": round(result.duration, 3),
    }
    if result.error is not None:
        data["error"] = str(result.error)
    return data


def format_results_json(summary: ExecutionSummary, operation: str) -> str:
    """Format execution results as JSON.

    Args:
        summary: Results and statistics of the run
        operation: Name of the operation that was executed

    Returns:
        JSON string with per-host results in host order
    """
    to_dict = ping_result_to_dict if operation == "ping" else result_to_dict
    output: dict[str, Any] = {
        "operation": operation,
        "total_hosts": summary.total_hosts,
        "successful": summary.successful,
        "failed": summary.failed,
        "outcomes": {outcome.value: count for outcome, count in summary.outcomes.items()},
        "results": [to_dict(r) for r in summary.results],
        "duration": round(summary.duration, 3),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return json.dumps(output, indent=2)


def format_summary_text(summary: ExecutionSummary) -> str:
    """One-paragraph summary: totals and a count per non-success outcome."""
    lines = [
        f"Total hosts: {summary.total_hosts}",
        f"Successful: {summary.successful}",
        f"Failed: {summary.failed}",
    ]
    for outcome, count in summary.outcomes.items():
        if outcome is not Outcome.SUCCEEDED:
            lines.append(f"  {STATUS_LABELS[outcome].lower()} ({outcome.value}): {count}")
    lines.append(f"Duration: {summary.duration:.2f}s")
    return "\n".join(lines)


def format_host_output(result: Result) -> str:
    """Detailed stdout/stderr block for one host."""
    lines = [f"==> {result.host} [{status_label(result)}] exit={result.exit_code}"]
    if result.stdout:
        lines.append(result.stdout.rstrip("\n"))
    if result.stderr:
        lines.append("--- stderr ---")
        lines.append(result.stderr.rstrip("\n"))
    return "\n".join(lines)


def render_results_table(
    results: Sequence[Result],
    console: Console,
    show_output: bool = False,
) -> None:
    """Print a per-host results table, optionally followed by each host's output."""
    table = Table(title="Results")
    table.add_column("Host", style="bold")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Error")

    for result in results:
        style = STATUS_STYLES.get(result.outcome, "red")
        error = _truncate(str(result.error)) if result.error is not None else ""
        table.add_row(
            result.host,
            f"[{style}]{status_label(result)}[/{style}]",
            str(result.exit_code),
            f"{result.duration:.2f}s",
            error,
        )
    console.print(table)

    if show_output:
        for result in results:
            console.print(format_host_output(result), markup=False, highlight=False)
            console.print()


def render_ping_table(results: Sequence[PingResult], console: Console) -> None:
    table = Table(title="Ping")
    table.add_column("Host", style="bold")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")

    for result in results:
        style = STATUS_STYLES.get(result.outcome, "red")
        table.add_row(
            result.host,
            f"[{style}]{status_label(result)}[/{style}]",
            f"{result.duration:.2f}s",
            _truncate(str(result.error)) if result.error is not None else "",
        )
    console.print(table)


def host_to_dict(host: Host) -> dict[str, Any]:
    data: dict[str, Any] = {"address": host.address, "port": host.port}
    if host.user:
        data["user"] = host.user
    if host.key_path:
        data["key_path"] = host.key_path
    data["groups"] = list(host.groups)
    return data


def format_host_list(hosts: Sequence[Host], output_format: str = "ip", one_line: bool = False) -> str:
    """Format resolved hosts.

    Args:
        hosts: Resolved hosts
        output_format: "ip" (addresses), "full" (columns), or "json"
        one_line: For "ip", join addresses with commas on one line

    Returns:
        Formatted host list
    """
    if output_format == "json":
        return json.dumps([host_to_dict(h) for h in hosts], indent=2)

    if output_format == "full":
        rows = [("ADDRESS", "PORT", "USER", "KEY", "GROUPS")]
        for host in hosts:
            rows.append((
                host.address,
                str(host.port),
                host.user or "-",
                host.key_path or "-",
                ",".join(host.groups) or "-",
            ))
        widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
        lines = ["  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip() for row in rows]
        lines.append("")
        lines.append(f"Total: {len(hosts)} host(s)")
        return "\n".join(lines)

    addresses = [host.address for host in hosts]
    return ",".join(addresses) if one_line else "\n".join(addresses)


def format_group_list(groups: Sequence[str], one_line: bool = False) -> str:
    return ",".join(groups) if one_line else "\n".join(groups)
