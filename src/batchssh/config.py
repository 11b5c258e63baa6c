"""ansible.cfg defaults and request construction for batchssh.

Only the [defaults] section of ansible.cfg is read, and only these keys:
inventory, private_key_file, remote_user, forks, timeout.

Lookup order for the file:
1. An explicit --config-file path
2. The ANSIBLE_CONFIG environment variable
3. ansible.cfg in the current directory, then in each parent directory
4. ~/.ansible.cfg

Request values are merged with the precedence
explicit option > ansible.cfg > built-in default.
"""

import configparser
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .exceptions import ConfigError
from .types import DEFAULT_CONCURRENCY, DEFAULT_PORT, DEFAULT_TIMEOUT, RunRequest, default_user

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ANSIBLE_CONFIG"
CONFIG_FILENAME = "ansible.cfg"
HOME_CONFIG_FILENAME = ".ansible.cfg"
DEFAULTS_SECTION = "defaults"


@dataclass
class AnsibleConfig:
    """Values read from the [defaults] section of ansible.cfg.

    Attributes:
        path: File the values came from (None when no file was found)
        inventory: Inventory paths, split on commas
        private_key_file: Default private key
        remote_user: Default login user
        forks: Default concurrency
        timeout: Default connect timeout in seconds
    """

    path: Path | None = None
    inventory: list[str] = field(default_factory=list)
    private_key_file: str = ""
    remote_user: str = ""
    forks: int | None = None
    timeout: float | None = None


def find_ansible_config(
    explicit: str | Path | None = None,
    cwd: Path | None = None,
    environ: Mapping[str, str] | None = None,
    home: Path | None = None,
) -> Path | None:
    """Locate the ansible.cfg to use.

    Args:
        explicit: Path given on the command line
        cwd: Directory to start the upward search from (default: cwd)
        environ: Environment to read ANSIBLE_CONFIG from (default: os.environ)
        home: Home directory (default: the user's home)

    Returns:
        Path to the config file, or None if there is none

    Raises:
        ConfigError: If an explicitly named file does not exist
    """
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"Config file not found: {explicit}")
        return path

    environ = os.environ if environ is None else environ
    from_env = environ.get(CONFIG_ENV_VAR)
    if from_env:
        path = Path(from_env).expanduser()
        if path.is_file():
            return path
        logger.warning(f"{CONFIG_ENV_VAR} points to missing file {from_env}, ignoring")

    directory = (cwd or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate

    home_config = (home or Path.home()) / HOME_CONFIG_FILENAME
    if home_config.is_file():
        return home_config
    return None


def _parse_int(value: str, key: str, path: Path) -> int | None:
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {key} = {value!r} in {path}")
        return None


def parse_ansible_config(path: str | Path) -> AnsibleConfig:
    """Read the [defaults] section of an ansible.cfg file.

    Unknown keys and other sections are ignored, as are non-numeric forks
    and timeout values.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    path = Path(path)
    parser = configparser.ConfigParser(
        interpolation=None,
        inline_comment_prefixes=(";", "#"),
        strict=False,
    )
    try:
        with path.open() as f:
            parser.read_file(f)
    except (OSError, configparser.Error) as e:
        raise ConfigError(f"Cannot read config file {path}", str(e)) from e

    config = AnsibleConfig(path=path)
    if not parser.has_section(DEFAULTS_SECTION):
        return config

    defaults = parser[DEFAULTS_SECTION]
    for entry in defaults.get("inventory", "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        # Relative inventory paths are relative to the config file
        inventory_path = Path(entry).expanduser()
        if not inventory_path.is_absolute():
            inventory_path = path.parent / inventory_path
        config.inventory.append(str(inventory_path))

    if defaults.get("private_key_file"):
        config.private_key_file = os.path.expanduser(defaults["private_key_file"])
    config.remote_user = defaults.get("remote_user", "")
    if defaults.get("forks"):
        config.forks = _parse_int(defaults["forks"], "forks", path)
    if defaults.get("timeout"):
        timeout = _parse_int(defaults["timeout"], "timeout", path)
        config.timeout = float(timeout) if timeout is not None else None
    return config


def load_ansible_config(explicit: str | Path | None = None) -> AnsibleConfig:
    """Find and parse ansible.cfg, returning empty defaults when there is none."""
    path = find_ansible_config(explicit)
    if path is None:
        return AnsibleConfig()
    logger.debug(f"Using config file {path}")
    return parse_ansible_config(path)


def build_request(
    inventory: str | None = None,
    group: str | None = None,
    user: str | None = None,
    key_path: str | None = None,
    password: str | None = None,
    port: int | None = None,
    concurrency: int | None = None,
    timeout: float | None = None,
    log_dir: str | None = None,
    ansible_config: AnsibleConfig | None = None,
) -> RunRequest:
    """Merge explicit options with ansible.cfg and built-in defaults.

    None (or an empty string) means "not given on the command line".

    Args:
        inventory: Explicit inventory source
        group: Group selection expression
        user: Login user
        key_path: Private key path
        password: Password
        port: Default SSH port
        concurrency: Maximum concurrent hosts
        timeout: Connect timeout in seconds
        log_dir: JSON run-log directory
        ansible_config: Parsed ansible.cfg (empty defaults if None)

    Returns:
        RunRequest for this invocation

    Raises:
        ConfigError: If a merged numeric value is out of range

    Example:
        >>> cfg = AnsibleConfig(remote_user="deploy", forks=20)
        >>> request = build_request(inventory="a,b", concurrency=None, ansible_config=cfg)
        >>> request.user, request.concurrency
        ('deploy', 20)
    """
    cfg = ansible_config or AnsibleConfig()

    merged_concurrency = concurrency or cfg.forks or DEFAULT_CONCURRENCY
    merged_timeout = timeout or cfg.timeout or DEFAULT_TIMEOUT
    merged_port = port or DEFAULT_PORT

    if merged_timeout <= 0:
        raise ConfigError(f"Timeout must be positive, got {merged_timeout}")
    if not 0 < merged_port < 65536:
        raise ConfigError(f"Port out of range: {merged_port}")

    return RunRequest(
        inventory=inventory or "",
        inventory_paths=tuple(cfg.inventory),
        group=group or "",
        user=user or cfg.remote_user or default_user(),
        key_path=key_path or cfg.private_key_file,
        password=password or "",
        port=merged_port,
        concurrency=merged_concurrency if merged_concurrency > 0 else DEFAULT_CONCURRENCY,
        timeout=float(merged_timeout),
        log_dir=log_dir or "",
        config_file=str(cfg.path) if cfg.path else "",
    )
