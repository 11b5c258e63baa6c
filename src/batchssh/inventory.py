"""Inventory resolution for batchssh.

Turns an inventory source into a deduplicated, group-annotated host list.
A source is one of:
- A flat host file: one [user@]host[:port] per line
- A grouped (INI-style) host file: host lines under [group] headers
- A directory: every host file found by a recursive walk
- A literal comma-separated address list: "web1,deploy@web2:2222"

Blank lines and lines starting with # are ignored everywhere. All host and
group pairs are aggregated before group filtering, so a host listed in two
files under two groups ends up as one Host in both groups.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from .exceptions import InventoryError
from .host_filter import GroupFilter, format_filter_summary
from .logging import log_scope
from .types import DEFAULT_PORT, Host, RunRequest

logger = logging.getLogger(__name__)

GROUP_HEADER = re.compile(r"^\s*\[(.+)\]\s*$")

# Files read during a directory walk; "" accepts files without an extension.
INVENTORY_EXTENSIONS = frozenset({".ini", ".txt", ".conf", ".hosts", ""})


def parse_host_line(
    line: str,
    default_port: int = DEFAULT_PORT,
    source: str | None = None,
    line_number: int | None = None,
) -> Host:
    """Parse one host entry of the form [user@]host[:port].

    The user is split off at the first "@" and the port at the last ":".

    Args:
        line: Host entry, already stripped
        default_port: Port used when the entry has none
        source: File the entry came from, for error messages
        line_number: Line the entry came from, for error messages

    Returns:
        Host with no group membership

    Raises:
        InventoryError: If the address is empty or the port is not a number

    Example:
        >>> parse_host_line("deploy@10.0.0.5:2222")
        Host(address='10.0.0.5', port=2222, user='deploy', key_path='', groups=[])
    """
    user = ""
    rest = line.strip()
    if "@" in rest:
        user, rest = rest.split("@", 1)

    address, port = rest, default_port
    if ":" in rest:
        address, port_text = rest.rsplit(":", 1)
        if port_text:
            try:
                port = int(port_text)
            except ValueError:
                raise InventoryError(
                    f"Invalid port '{port_text}' in host entry '{line}'",
                    source=source,
                    line=line_number,
                ) from None

    if not address:
        raise InventoryError(
            f"Missing address in host entry '{line}'", source=source, line=line_number
        )

    return Host(address=address, port=port, user=user)


def _content_lines(lines: Iterable[str]) -> Iterator[tuple[int, str]]:
    """Yield (line number, stripped line), skipping blanks and comments."""
    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if line and not line.startswith("#"):
            yield number, line


def detect_grouped(lines: Iterable[str]) -> bool:
    """Check whether any content line is a [group] header."""
    return any(GROUP_HEADER.match(line) for _, line in _content_lines(lines))


def parse_inventory_text(
    text: str,
    source: str | None = None,
    default_port: int = DEFAULT_PORT,
) -> list[tuple[Host, str | None]]:
    """Parse the contents of an inventory file.

    Args:
        text: File contents
        source: File name, for error messages
        default_port: Port for entries without one

    Returns:
        One (host, group) pair per host line. The group is None for flat
        files and for lines before the first header of a grouped file.
    """
    lines = text.splitlines()
    grouped = detect_grouped(lines)

    entries: list[tuple[Host, str | None]] = []
    current_group: str | None = None
    for number, line in _content_lines(lines):
        if grouped:
            header = GROUP_HEADER.match(line)
            if header:
                current_group = header.group(1).strip()
                continue
        host = parse_host_line(line, default_port, source=source, line_number=number)
        entries.append((host, current_group))
    return entries


def parse_inventory_file(
    path: str | Path,
    default_port: int = DEFAULT_PORT,
) -> list[tuple[Host, str | None]]:
    """Read and parse one inventory file.

    Raises:
        InventoryError: If the file cannot be read or holds a bad entry
    """
    path = Path(path)
    try:
        text = path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise InventoryError("Cannot read inventory file", source=str(path), details=str(e)) from e
    return parse_inventory_text(text, source=str(path), default_port=default_port)


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def iter_inventory_files(directory: str | Path) -> Iterator[Path]:
    """Walk a directory tree for inventory files in path order.

    Entries are visited sorted by name and a subdirectory is entered at its
    place in that order, so "a/x.ini" comes before "b.ini". Hidden files and
    hidden directories are skipped, and only files whose lower-cased
    extension is in INVENTORY_EXTENSIONS are yielded.
    """
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        logger.warning(f"Skipping inventory directory {directory}: {e}")
        return
    for entry in entries:
        if _is_hidden(entry.name):
            continue
        if entry.is_dir():
            yield from iter_inventory_files(entry.path)
        elif Path(entry.name).suffix.lower() in INVENTORY_EXTENSIONS:
            yield Path(entry.path)


@dataclass
class Inventory:
    """Aggregated inventory keyed by host identity.

    Hosts keep their first-seen order. Adding a host whose (address, port)
    is already present only merges its group; the user and key of the
    first occurrence are kept.

    Example:
        >>> inventory = Inventory()
        >>> inventory.add(Host("web1"), "web")
        >>> inventory.add(Host("web1", user="other"), "web2")
        >>> inventory.hosts()[0].groups
        ['web', 'web2']
    """

    _hosts: dict[tuple[str, int], Host] = field(default_factory=dict, init=False, repr=False)
    _groups: list[str] = field(default_factory=list, init=False, repr=False)

    def add(self, host: Host, group: str | None = None) -> Host:
        """Add a host, merging it into an existing entry with the same identity."""
        existing = self._hosts.get(host.identity)
        if existing is None:
            existing = Host(
                address=host.address,
                port=host.port,
                user=host.user,
                key_path=host.key_path,
            )
            self._hosts[host.identity] = existing

        names = list(host.groups)
        if group:
            names.append(group)
        for name in names:
            existing.add_group(name)
            if name not in self._groups:
                self._groups.append(name)
        return existing

    def add_entries(self, entries: Iterable[tuple[Host, str | None]]) -> None:
        for host, group in entries:
            self.add(host, group)

    def hosts(self) -> list[Host]:
        return list(self._hosts.values())

    def groups(self) -> list[str]:
        """Group names in first-seen order."""
        return list(self._groups)

    def filter(self, group_filter: GroupFilter) -> list[Host]:
        """Hosts selected by a group filter, in inventory order."""
        return [h for h in self._hosts.values() if group_filter.matches(h.groups)]

    def __len__(self) -> int:
        return len(self._hosts)


def load_directory(
    inventory: Inventory,
    directory: str | Path,
    default_port: int = DEFAULT_PORT,
) -> None:
    """Add every inventory file under a directory.

    A file that cannot be read or parsed is logged and skipped so one bad
    file does not hide the rest of the tree.
    """
    for path in iter_inventory_files(directory):
        try:
            entries = parse_inventory_file(path, default_port)
        except InventoryError as e:
            logger.warning(f"Skipping inventory file {path}: {e}")
            continue
        logger.debug(f"Loaded {len(entries)} host entries from {path}")
        inventory.add_entries(entries)


def load_source(
    inventory: Inventory,
    source: str,
    default_port: int = DEFAULT_PORT,
) -> None:
    """Add one source to an inventory, classifying it as path or literal list.

    Raises:
        InventoryError: If the source is empty, unreadable, or malformed
    """
    if not source or not source.strip():
        raise InventoryError("Inventory source is empty")

    path = Path(source)
    if path.is_dir():
        load_directory(inventory, path, default_port)
    elif path.exists():
        inventory.add_entries(parse_inventory_file(path, default_port))
    else:
        for entry in source.split(","):
            entry = entry.strip()
            if entry:
                inventory.add(parse_host_line(entry, default_port, source="address list"))


def _select(inventory: Inventory, group_expr: str | None, description: str) -> list[Host]:
    group_filter = GroupFilter.parse(group_expr)
    hosts = inventory.filter(group_filter)
    if not hosts:
        if group_filter.matches_all:
            raise InventoryError(f"No hosts found in {description}")
        raise InventoryError(
            f"Group(s) '{group_filter}' not found or contain no hosts in {description}"
        )
    logger.debug(format_filter_summary(len(inventory), len(hosts), group_filter))
    return hosts


def resolve_hosts(
    source: str,
    group_expr: str | None = "",
    default_port: int = DEFAULT_PORT,
) -> list[Host]:
    """Resolve an inventory source to the selected hosts.

    Args:
        source: File path, directory path, or comma-separated address list
        group_expr: Group selection ("" or "all" selects every host)
        default_port: Port for entries that do not name one

    Returns:
        Deduplicated hosts in first-seen order

    Raises:
        InventoryError: If the source is unusable or no host is selected

    Example:
        >>> [h.address for h in resolve_hosts("a,b,c")]
        ['a', 'b', 'c']
    """
    inventory = Inventory()
    load_source(inventory, source, default_port)
    return _select(inventory, group_expr, source)


def resolve_groups(source: str) -> list[str]:
    """List the group names defined by an inventory source.

    Flat files and literal address lists define no groups.

    Raises:
        InventoryError: If the source is empty or unreadable
    """
    inventory = Inventory()
    load_source(inventory, source)
    return inventory.groups()


def _existing_sources(sources: Iterable[str]) -> list[str]:
    found = []
    for source in sources:
        source = source.strip()
        if not source:
            continue
        if not Path(source).exists():
            logger.warning(f"Inventory path {source} does not exist, skipping")
            continue
        found.append(source)
    return found


def resolve_inventory(
    sources: Iterable[str],
    group_expr: str | None = "",
    default_port: int = DEFAULT_PORT,
) -> list[Host]:
    """Resolve several inventory paths as one inventory.

    Used for the comma-separated inventory setting of ansible.cfg. Paths
    that do not exist are skipped with a warning, and hosts are aggregated
    across all remaining paths before group filtering.

    Raises:
        InventoryError: If no path exists or no host is selected
    """
    paths = _existing_sources(sources)
    if not paths:
        raise InventoryError("None of the configured inventory paths exist")

    inventory = Inventory()
    for path in paths:
        load_source(inventory, path, default_port)
    return _select(inventory, group_expr, ", ".join(paths))


def resolve_inventory_groups(sources: Iterable[str]) -> list[str]:
    """Group names across several inventory paths, skipping missing ones."""
    inventory = Inventory()
    for path in _existing_sources(sources):
        load_source(inventory, path)
    return inventory.groups()


def resolve_request_hosts(request: RunRequest) -> list[Host]:
    """Resolve the hosts a request targets.

    An explicit source wins; otherwise the ansible.cfg inventory paths are
    used.

    Raises:
        InventoryError: If the request names no inventory or selects no host
    """
    if request.inventory:
        with log_scope(logger, "Resolving hosts", logging.DEBUG, source=request.inventory):
            return resolve_hosts(request.inventory, request.group, request.port)
    if request.inventory_paths:
        sources = ",".join(request.inventory_paths)
        with log_scope(logger, "Resolving hosts", logging.DEBUG, source=sources):
            return resolve_inventory(request.inventory_paths, request.group, request.port)
    raise InventoryError("No inventory given (use -i or set inventory in ansible.cfg)")


def resolve_request_groups(request: RunRequest) -> list[str]:
    """Group names defined by the inventory a request targets."""
    if request.inventory:
        return resolve_groups(request.inventory)
    if request.inventory_paths:
        return resolve_inventory_groups(request.inventory_paths)
    raise InventoryError("No inventory given (use -i or set inventory in ansible.cfg)")
