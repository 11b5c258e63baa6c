"""Command-line interface for batchssh."""

import asyncio
import sys
import time
from functools import wraps
from pathlib import Path
from typing import Any, Callable

import click
from rich.console import Console

from batchssh import __version__
from batchssh.config import build_request, load_ansible_config
from batchssh.exceptions import BatchSSHError, ExitCode
from batchssh.executor import ConcurrentExecutor, ExecutionSummary
from batchssh.inventory import resolve_request_groups, resolve_request_hosts
from batchssh.logging import (
    RunLog,
    configure_logging,
    get_level_from_name,
    get_level_from_verbosity,
    get_logger,
    LEVEL_NAMES,
)
from batchssh.operations import (
    CommandOperation,
    Operation,
    PingOperation,
    ScriptOperation,
    UploadOperation,
)
from batchssh.progress import create_progress_sink
from batchssh.report import (
    format_group_list,
    format_host_list,
    format_results_json,
    format_summary_text,
    render_ping_table,
    render_results_table,
)
from batchssh.ssh import SessionClient
from batchssh.types import Host, RunRequest

logger = get_logger("batchssh.cli")


def inventory_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Options that select hosts."""
    options = [
        click.option("--inventory", "-i", help="Inventory file, directory, or comma-separated host list"),
        click.option("--group", "-g", help="Comma-separated groups to target ('all' for every host)"),
        click.option("--port", "-P", type=int, help="Default SSH port (default: 22)"),
        click.option("--config-file", type=click.Path(dir_okay=False), help="ansible.cfg to read defaults from"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def connection_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Options that control how hosts are contacted."""
    options = [
        click.option("--user", "-u", help="Login user (default: remote_user or current user)"),
        click.option("--key", "-k", "key_path", help="Private key file"),
        click.option("--password", "-p", help="Password (used when no key is given)"),
        click.option("--forks", "-f", type=int, help="Maximum concurrent hosts (default: 5)"),
        click.option("--timeout", "-T", type=float, help="Connect timeout in seconds (default: 30)"),
        click.option("--log-dir", type=click.Path(file_okay=False), help="Write a JSON run log to this directory"),
        click.option(
            "--progress",
            type=click.Choice(["auto", "json", "none"]),
            default="auto",
            show_default=True,
            help="Progress display (auto shows bars when stderr is a terminal)",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def handle_errors(f: Callable[..., Any]) -> Callable[..., Any]:
    """Turn request-level errors into click errors (exit code 1)."""

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return f(*args, **kwargs)
        except BatchSSHError as e:
            logger.debug(f"Request failed: {e!r}")
            raise click.ClickException(str(e)) from e

    return wrapper


def check_group_given(inventory: str | None, group: str | None) -> None:
    """An inventory file or directory needs an explicit group selection."""
    if inventory and Path(inventory).exists() and not group:
        raise click.ClickException(
            "--group/-g is required with an inventory file or directory (use -g all for every host)"
        )


def make_request(
    inventory: str | None,
    group: str | None,
    port: int | None,
    config_file: str | None,
    user: str | None = None,
    key_path: str | None = None,
    password: str | None = None,
    forks: int | None = None,
    timeout: float | None = None,
    log_dir: str | None = None,
) -> RunRequest:
    check_group_given(inventory, group)
    ansible_config = load_ansible_config(config_file)
    return build_request(
        inventory=inventory,
        group=group,
        user=user,
        key_path=key_path,
        password=password,
        port=port,
        concurrency=forks,
        timeout=timeout,
        log_dir=log_dir,
        ansible_config=ansible_config,
    )


def request_args(request: RunRequest, **extra: Any) -> dict[str, Any]:
    """Invocation arguments for the run log, without the password."""
    args: dict[str, Any] = {
        "inventory": request.inventory or ",".join(request.inventory_paths),
        "group": request.group,
        "user": request.user,
        "key_path": request.key_path,
        "port": request.port,
        "concurrency": request.concurrency,
        "timeout": request.timeout,
    }
    args.update(extra)
    return args


def execute_operation(
    request: RunRequest,
    hosts: list[Host],
    operation: Operation,
    progress_mode: str,
    log_args: dict[str, Any],
) -> ExecutionSummary:
    """Run an operation on the hosts with progress reporting and a run log.

    Args:
        request: The merged request
        hosts: Resolved hosts
        operation: What to do on each host
        progress_mode: auto, json or none
        log_args: Invocation arguments recorded in the run log

    Returns:
        Summary of the per-host results
    """
    enabled = progress_mode == "json" or (progress_mode == "auto" and sys.stderr.isatty())
    sink = create_progress_sink(
        len(hosts), enabled=enabled, json_format=progress_mode == "json"
    )
    executor = ConcurrentExecutor(hosts, request.defaults(), client_factory=SessionClient)

    with RunLog(request.log_dir, operation.kind.value) as run_log:
        run_log.command_start(log_args)
        run_log.hosts_loaded(h.address for h in hosts)
        logger.info(
            f"Running {operation.kind.value}",
            hosts=len(hosts),
            concurrency=request.concurrency,
        )

        start = time.monotonic()
        try:
            with sink:
                results = asyncio.run(executor.run(operation, request.concurrency, sink))
        except KeyboardInterrupt:
            run_log.command_end(time.monotonic() - start, False, "interrupted")
            click.echo("Interrupted", err=True)
            raise SystemExit(ExitCode.KEYBOARD_INTERRUPT)

        summary = ExecutionSummary(results=results, duration=time.monotonic() - start)
        for result in results:
            run_log.host_result(result)
        error = None if summary.is_success() else f"{summary.failed} host(s) failed"
        run_log.command_end(summary.duration, summary.is_success(), error)
        if run_log.enabled:
            logger.info("Run log written", path=run_log.path)

    return summary


def report(
    summary: ExecutionSummary,
    operation: str,
    output_format: str,
    show_output: bool = False,
) -> None:
    """Print results and exit 2 if any host failed."""
    if output_format == "json":
        click.echo(format_results_json(summary, operation))
    else:
        console = Console()
        if operation == "ping":
            render_ping_table(summary.results, console)
        else:
            render_results_table(summary.results, console, show_output=show_output)
        click.echo(format_summary_text(summary))

    if not summary.is_success():
        if output_format != "json":
            click.echo(f"Error: {summary.failed} host(s) failed", err=True)
        raise SystemExit(ExitCode.HOST_FAILED)


# Main CLI group
@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option("--verbose", "-v", count=True, help="Increase verbosity (-v info, -vv debug, -vvv trace)")
@click.option("--log-level", type=click.Choice(list(LEVEL_NAMES), case_sensitive=False), help="Set log level explicitly")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
@click.pass_context
def cli(
    ctx: click.Context,
    version: bool,
    verbose: int,
    log_level: str | None,
    log_file: str | None,
) -> None:
    """batchssh - run commands on many hosts over SSH."""
    if version:
        click.echo(f"batchssh {__version__}")
        ctx.exit(0)

    if verbose or log_level or log_file:
        level = get_level_from_name(log_level) if log_level else get_level_from_verbosity(verbose)
        configure_logging(level=level, log_file=log_file)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("run")
@click.option("--command", "-c", required=True, help="Shell command to run on each host")
@click.option("--become", is_flag=True, help="Run through sudo")
@click.option("--become-user", default="", help="User to become with sudo (default: root)")
@click.option("--show-output/--no-show-output", default=True, help="Print each host's output")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]), default="text", help="Output format")
@inventory_options
@connection_options
@handle_errors
def run_command(
    command: str,
    become: bool,
    become_user: str,
    show_output: bool,
    output_format: str,
    inventory: str | None,
    group: str | None,
    port: int | None,
    config_file: str | None,
    user: str | None,
    key_path: str | None,
    password: str | None,
    forks: int | None,
    timeout: float | None,
    log_dir: str | None,
    progress: str,
) -> None:
    """Run a shell command on every selected host.

    \b
    Examples:
        batchssh run -i hosts.ini -g web -c "uptime"
        batchssh run -i 10.0.0.5,10.0.0.6 -c "systemctl restart nginx" --become
    """
    request = make_request(
        inventory, group, port, config_file, user, key_path, password, forks, timeout, log_dir
    )
    hosts = resolve_request_hosts(request)
    operation = CommandOperation(command, become, become_user)
    log_args = request_args(request, command=command, become=become, become_user=become_user)
    summary = execute_operation(request, hosts, operation, progress, log_args)
    report(summary, operation.kind.value, output_format, show_output)


@cli.command("script")
@click.option("--script", "-s", "script_path", required=True, type=click.Path(exists=True, dir_okay=False), help="Local script to run")
@click.option("--interpreter", default="bash", show_default=True, help="Interpreter to run the script with")
@click.option("--become", is_flag=True, help="Run through sudo")
@click.option("--become-user", default="", help="User to become with sudo (default: root)")
@click.option("--show-output/--no-show-output", default=True, help="Print each host's output")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]), default="text", help="Output format")
@inventory_options
@connection_options
@handle_errors
def run_script(
    script_path: str,
    interpreter: str,
    become: bool,
    become_user: str,
    show_output: bool,
    output_format: str,
    inventory: str | None,
    group: str | None,
    port: int | None,
    config_file: str | None,
    user: str | None,
    key_path: str | None,
    password: str | None,
    forks: int | None,
    timeout: float | None,
    log_dir: str | None,
    progress: str,
) -> None:
    """Upload a local script to every selected host, run it, and remove it."""
    request = make_request(
        inventory, group, port, config_file, user, key_path, password, forks, timeout, log_dir
    )
    hosts = resolve_request_hosts(request)
    operation = ScriptOperation(script_path, become, become_user, interpreter)
    log_args = request_args(
        request, script=script_path, interpreter=interpreter, become=become, become_user=become_user
    )
    summary = execute_operation(request, hosts, operation, progress, log_args)
    report(summary, operation.kind.value, output_format, show_output)


@cli.command("upload")
@click.option("--local", "-l", "local_path", required=True, type=click.Path(exists=True, dir_okay=False), help="Local file to upload")
@click.option("--remote", "-r", "remote_path", required=True, help="Destination path on each host")
@click.option("--mode", default="0644", show_default=True, help="Octal permissions for the uploaded file")
@click.option("--backup", is_flag=True, help="Keep a timestamped copy of an existing destination")
@click.option("--force", is_flag=True, help="Overwrite an existing destination")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]), default="text", help="Output format")
@inventory_options
@connection_options
@handle_errors
def upload_file(
    local_path: str,
    remote_path: str,
    mode: str,
    backup: bool,
    force: bool,
    output_format: str,
    inventory: str | None,
    group: str | None,
    port: int | None,
    config_file: str | None,
    user: str | None,
    key_path: str | None,
    password: str | None,
    forks: int | None,
    timeout: float | None,
    log_dir: str | None,
    progress: str,
) -> None:
    """Upload a local file to every selected host.

    An existing destination is skipped unless --force or --backup is given.
    """
    try:
        int(mode, 8)
    except ValueError:
        raise click.BadParameter(f"'{mode}' is not an octal mode", param_hint="--mode")

    request = make_request(
        inventory, group, port, config_file, user, key_path, password, forks, timeout, log_dir
    )
    hosts = resolve_request_hosts(request)
    operation = UploadOperation(local_path, remote_path, mode, backup, force)
    log_args = request_args(
        request, local=local_path, remote=remote_path, mode=mode, backup=backup, force=force
    )
    summary = execute_operation(request, hosts, operation, progress, log_args)
    report(summary, operation.kind.value, output_format)


@cli.command("ping")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]), default="text", help="Output format")
@inventory_options
@connection_options
@handle_errors
def ping_hosts(
    output_format: str,
    inventory: str | None,
    group: str | None,
    port: int | None,
    config_file: str | None,
    user: str | None,
    key_path: str | None,
    password: str | None,
    forks: int | None,
    timeout: float | None,
    log_dir: str | None,
    progress: str,
) -> None:
    """Check that every selected host accepts an SSH session."""
    request = make_request(
        inventory, group, port, config_file, user, key_path, password, forks, timeout, log_dir
    )
    hosts = resolve_request_hosts(request)
    operation = PingOperation(request.timeout)
    summary = execute_operation(request, hosts, operation, progress, request_args(request))
    report(summary, operation.kind.value, output_format)


@cli.command("list")
@click.option("--format", "output_format", type=click.Choice(["ip", "full", "json"]), default="ip", help="Output format")
@click.option("--one-line", is_flag=True, help="Print addresses on one comma-separated line")
@inventory_options
@handle_errors
def list_hosts(
    output_format: str,
    one_line: bool,
    inventory: str | None,
    group: str | None,
    port: int | None,
    config_file: str | None,
) -> None:
    """List the hosts a selection resolves to."""
    request = make_request(inventory, group, port, config_file)
    hosts = resolve_request_hosts(request)
    click.echo(format_host_list(hosts, output_format, one_line))


cli.add_command(list_hosts, "list-host")


@cli.command("list-group")
@click.option("--one-line", is_flag=True, help="Print groups on one comma-separated line")
@click.option("--inventory", "-i", help="Inventory file or directory")
@click.option("--config-file", type=click.Path(dir_okay=False), help="ansible.cfg to read defaults from")
@handle_errors
def list_groups(one_line: bool, inventory: str | None, config_file: str | None) -> None:
    """List the groups an inventory defines."""
    request = build_request(inventory=inventory, ansible_config=load_ansible_config(config_file))
    groups = resolve_request_groups(request)
    if not groups:
        click.echo("No groups defined", err=True)
        return
    click.echo(format_group_list(groups, one_line))


@cli.command("version")
def version() -> None:
    """Show the batchssh version."""
    click.echo(f"batchssh {__version__}")


def main() -> None:
    """Package entry point for the batchssh command-line interface."""
    cli()


if __name__ == "__main__":
    cli()
