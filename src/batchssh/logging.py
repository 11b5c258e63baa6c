"""Logging utilities for batchssh.

- Console/file logging configuration with -v verbosity levels
- Performance timing as a context manager
- StructuredLogger: key=value context appended to every message
- RunLog: optional JSON-lines audit file per command invocation
"""

import itertools
import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Iterable

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
TRACE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"

# More detailed than DEBUG; also enables asyncssh's own debug output
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
    3: TRACE,
}

LEVEL_NAMES = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

RUN_LOG_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a count of -v flags to a logging level."""
    return VERBOSITY_LEVELS.get(min(verbosity, 3), TRACE)


def get_level_from_name(level_name: str) -> int:
    """Convert a level name to a logging level.

    Raises:
        ValueError: If the name is not a known level
    """
    level = LEVEL_NAMES.get(level_name.lower())
    if level is None:
        valid = ", ".join(LEVEL_NAMES)
        raise ValueError(f"Invalid log level: {level_name}. Valid levels: {valid}")
    return level


def configure_logging(
    level: int = logging.WARNING,
    format_string: str | None = None,
    debug: bool = False,
    log_file: str | Path | None = None,
    file_level: int | None = None,
) -> None:
    """Configure root logging for batchssh.

    Args:
        level: Console logging level
        format_string: Custom format string (chosen from level if None)
        debug: Use the debug format with timestamps and line numbers
        log_file: Optional path to also write logs to
        file_level: Separate level for the log file (defaults to level)

    Example:
        >>> configure_logging(level=logging.INFO)
        >>> configure_logging(level=logging.WARNING, log_file="/tmp/batchssh.log", file_level=logging.DEBUG)
    """
    if format_string is None:
        if level <= TRACE:
            format_string = TRACE_FORMAT
        elif debug or level <= logging.DEBUG:
            format_string = DEBUG_FORMAT
        else:
            format_string = DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(min(level, file_level or level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)

    # asyncssh logs every channel at INFO; only let it through when tracing
    logging.getLogger("asyncssh").setLevel(logging.DEBUG if level <= TRACE else logging.WARNING)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_level or level)
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        root_logger.addHandler(file_handler)


def _format_context(context: dict[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in context.items())


@contextmanager
def log_scope(
    logger: logging.Logger,
    message: str,
    level: int = logging.INFO,
    **context: Any,
) -> Generator[None, None, None]:
    """Log entry and exit of a scope.

    Example:
        >>> with log_scope(logger, "Resolving inventory", source="hosts.ini"):
        ...     hosts = resolve_hosts("hosts.ini", "web")
        INFO: Entering: Resolving inventory (source=hosts.ini)
        INFO: Exiting: Resolving inventory (source=hosts.ini)
    """
    full_message = f"{message} ({_format_context(context)})" if context else message

    logger.log(level, f"Entering: {full_message}")
    try:
        yield
    finally:
        logger.log(level, f"Exiting: {full_message}")


@contextmanager
def log_performance(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    threshold: float | None = None,
    **context: Any,
) -> Generator[None, None, None]:
    """Time a block and log its duration.

    Args:
        logger: Logger instance to use
        operation: Description of the operation being timed
        level: Log level to use
        threshold: Only log if the duration reaches this many seconds
        **context: Additional context to include in the message

    Example:
        >>> with log_performance(logger, "ping on 100 hosts", concurrency=20):
        ...     await executor.ping()
        INFO: ping on 100 hosts completed in 1.204s (concurrency=20)
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        if threshold is None or duration >= threshold:
            message = f"{operation} completed in {duration:.3f}s"
            if context:
                message += f" ({_format_context(context)})"
            logger.log(level, message)


class StructuredLogger:
    """Logger that appends key=value context to every message.

    Example:
        >>> logger = StructuredLogger("batchssh.cli", command="run")
        >>> logger.info("Hosts resolved", hosts=12)
        INFO [batchssh.cli] Hosts resolved (command=run, hosts=12)
    """

    def __init__(self, name: str, **context: Any) -> None:
        self.logger = logging.getLogger(name)
        self.context: dict[str, Any] = context.copy()

    def _format_message(self, message: str, **extra: Any) -> str:
        combined = {**self.context, **extra}
        if not combined:
            return message
        return f"{message} ({_format_context(combined)})"

    def debug(self, message: str, **extra: Any) -> None:
        self.logger.debug(self._format_message(message, **extra))

    def info(self, message: str, **extra: Any) -> None:
        self.logger.info(self._format_message(message, **extra))

    def warning(self, message: str, **extra: Any) -> None:
        self.logger.warning(self._format_message(message, **extra))

    def error(self, message: str, **extra: Any) -> None:
        self.logger.error(self._format_message(message, **extra))


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """Get a StructuredLogger."""
    return StructuredLogger(name, **context)


class JsonLineFormatter(logging.Formatter):
    """Formats a record as one JSON object per line.

    Structured fields are taken from the record's ``fields`` attribute,
    set through ``extra={"fields": {...}}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        entry.update(getattr(record, "fields", {}))
        return json.dumps(entry, default=str)


_run_log_ids = itertools.count()


class RunLog:
    """JSON-lines audit log for one command invocation.

    Writes <log_dir>/<command>-<YYYY-MM-DDTHH-MM-SS>.log with the events
    command_start, hosts_loaded, host_result and command_end. With an empty
    log_dir every method is a no-op.

    Example:
        with RunLog("/var/log/batchssh", "run") as run_log:
            run_log.command_start({"command": "uptime", "group": "web"})
            run_log.hosts_loaded(["web1", "web2"])
    """

    def __init__(self, log_dir: str | Path | None, command: str) -> None:
        self.command = command
        self.path: Path | None = None
        self._logger: logging.Logger | None = None
        self._handler: logging.Handler | None = None

        if not log_dir:
            return

        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime(RUN_LOG_TIMESTAMP_FORMAT)
        self.path = directory / f"{command}-{stamp}.log"

        self._handler = logging.FileHandler(self.path)
        self._handler.setFormatter(JsonLineFormatter())
        self._logger = logging.getLogger(f"batchssh.runlog.{next(_run_log_ids)}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        self._logger.addHandler(self._handler)

    @property
    def enabled(self) -> bool:
        return self._logger is not None

    def _write(self, level: int, message: str, **fields: Any) -> None:
        if self._logger is not None:
            self._logger.log(level, message, extra={"fields": fields})

    def command_start(self, args: dict[str, Any]) -> None:
        """Record the invocation; secrets must already be removed from args."""
        fields = {"event": "command_start", "command": self.command, **args}
        self._write(logging.INFO, "command started", **fields)

    def hosts_loaded(self, hosts: Iterable[str]) -> None:
        hosts = list(hosts)
        self._write(
            logging.INFO, "hosts loaded", event="hosts_loaded", count=len(hosts), hosts=hosts
        )

    def host_result(self, result: Any) -> None:
        """Record one Result or PingResult."""
        fields: dict[str, Any] = {
            "event": "host_result",
            "host": result.host,
            "success": result.success,
            "duration": round(result.duration, 3),
            "outcome": result.outcome.value,
        }
        for name in ("command", "exit_code", "stdout", "stderr"):
            value = getattr(result, name, None)
            if value not in (None, ""):
                fields[name] = value
        if result.error is not None:
            fields["error"] = str(result.error)
        level = logging.INFO if result.success else logging.ERROR
        self._write(level, "host result", **fields)

    def command_end(self, duration: float, success: bool, error: str | None = None) -> None:
        fields: dict[str, Any] = {
            "event": "command_end",
            "command": self.command,
            "duration": round(duration, 3),
            "success": success,
        }
        if error:
            fields["error"] = error
        self._write(logging.INFO, "command finished", **fields)

    def close(self) -> None:
        if self._logger is not None and self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
        self._logger = None
        self._handler = None

    def __enter__(self) -> "RunLog":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
