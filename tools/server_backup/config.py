"""Configuration model and loader for server backups."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from shared.logger import get_logger

from .errors import ConfigurationError

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("backup.json")
CONFIG_ENV_VAR = "SERVER_BACKUP_CONFIG"

DEFAULT_PORT = 22
DEFAULT_USER = "root"
DEFAULT_CONNECT_TIMEOUT = 15.0

# A condition is a schedule tag ("daily", "weekly", "monthly") or a predicate
# called with the server orchestrator.
Condition = Union[str, Callable[[Any], bool]]


@dataclass(frozen=True)
class Output:
    """A destination file for a command's standard output."""

    file: str
    condition: Optional[Condition] = None
    keep: Optional[int] = None


@dataclass(frozen=True)
class Command:
    """A shell command whose output is captured to backup files."""

    exec: str
    env: Dict[str, str] = field(default_factory=dict)
    outputs: Tuple[Output, ...] = ()
    timeout: Optional[float] = None
    fail_on_exit: bool = False


@dataclass(frozen=True)
class Sync:
    """A directory synchronized into the backup store."""

    source: str
    destination: str
    exclude: Tuple[str, ...] = ()
    gitignore: bool = False
    timeout: Optional[float] = None


@dataclass(frozen=True)
class DefaultConfig:
    """Values used when a server does not set its own."""

    user: Optional[str] = None
    key: Optional[str] = None
    backup_dir: Optional[str] = None
    debug: bool = False


@dataclass(frozen=True)
class ServerConfig:
    """Configuration of one backed-up server."""

    name: str
    host: Optional[str] = None
    port: int = DEFAULT_PORT
    user: Optional[str] = None
    key: Optional[str] = None
    local: bool = False
    commands: Tuple[Command, ...] = ()
    syncs: Tuple[Sync, ...] = ()
    backup_dir: Optional[str] = None
    debug: Optional[bool] = None
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    def effective_user(self, defaults: DefaultConfig) -> str:
        return self.user or defaults.user or DEFAULT_USER

    def effective_key(self, defaults: DefaultConfig) -> Optional[str]:
        return self.key or defaults.key

    def effective_debug(self, defaults: DefaultConfig) -> bool:
        return bool(self.debug or defaults.debug)

    def backup_subdir(self) -> str:
        """Backup directory override, falling back to the server name."""
        return self.backup_dir or self.name


@dataclass(frozen=True)
class NotificationConfig:
    """A notification channel: type tag plus its parameters."""

    type: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AppConfig:
    """Complete, immutable configuration of a backup run."""

    defaults: DefaultConfig
    servers: Tuple[ServerConfig, ...] = ()
    notifications: Tuple[NotificationConfig, ...] = ()

    def server(self, name: str) -> ServerConfig:
        for server in self.servers:
            if server.name == name:
                return server
        raise ConfigurationError(f"Unknown server: {name}", server=name)


def normalize_outputs(outputs: Union[None, str, Mapping, List[Any]]) -> List[Output]:
    """
    Normalize the ``outputs`` entry of a command.

    A bare string is equivalent to ``{"file": string}``; a list may mix strings,
    mappings and ``Output`` instances.

    Args:
        outputs: Raw outputs value

    Returns:
        List of Output
    """
    if outputs is None:
        return []
    if isinstance(outputs, (str, Output, Mapping)):
        outputs = [outputs]

    normalized = []
    for output in outputs:
        if isinstance(output, Output):
            normalized.append(output)
        elif isinstance(output, str):
            normalized.append(Output(file=output))
        elif isinstance(output, Mapping):
            if not output.get("file"):
                raise ConfigurationError(f"Output is missing 'file': {output!r}")
            keep = output.get("keep")
            if keep is not None and (not isinstance(keep, int) or keep < 1):
                raise ConfigurationError(f"'keep' must be a positive integer: {keep!r}")
            normalized.append(
                Output(file=output["file"], condition=output.get("condition"), keep=keep)
            )
        else:
            raise ConfigurationError(f"Invalid output entry: {output!r}")
    return normalized


def _get(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key, accepting camelCase and snake_case spellings."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def _parse_command(server: str, data: Union[str, Mapping[str, Any]]) -> Command:
    if isinstance(data, str):
        data = {"exec": data}
    if not data.get("exec"):
        raise ConfigurationError(f"Command without 'exec' on server {server}", server=server)

    env = data.get("env") or {}
    return Command(
        exec=data["exec"],
        env={str(k): str(v) for k, v in env.items()},
        outputs=tuple(normalize_outputs(data.get("outputs"))),
        timeout=data.get("timeout"),
        fail_on_exit=bool(_get(data, "failOnExit", "fail_on_exit", default=False)),
    )


def _parse_sync(server: str, data: Mapping[str, Any]) -> Sync:
    source = _get(data, "from", "source")
    destination = _get(data, "to", "destination")
    if not source or not destination:
        raise ConfigurationError(
            f"Folder sync on server {server} needs both 'from' and 'to'", server=server
        )
    return Sync(
        source=source,
        destination=destination,
        exclude=tuple(data.get("exclude") or ()),
        gitignore=bool(data.get("gitignore", False)),
        timeout=data.get("timeout"),
    )


def _parse_server(name: str, data: Mapping[str, Any]) -> ServerConfig:
    port = data.get("port", DEFAULT_PORT)
    if not isinstance(port, int):
        raise ConfigurationError(f"Invalid port for server {name}: {port!r}", server=name)

    local = bool(data.get("local", False))
    if not local and not data.get("host"):
        raise ConfigurationError(f"Server {name} has no host and is not local", server=name)

    syncs = _get(data, "folders", "syncs", default=[]) or []
    return ServerConfig(
        name=name,
        host=data.get("host"),
        port=port,
        user=data.get("user"),
        key=data.get("key"),
        local=local,
        commands=tuple(_parse_command(name, c) for c in data.get("commands") or []),
        syncs=tuple(_parse_sync(name, s) for s in syncs),
        backup_dir=_get(data, "backupDir", "backup_dir"),
        debug=data.get("debug"),
        connect_timeout=_get(
            data, "connectTimeout", "connect_timeout", default=DEFAULT_CONNECT_TIMEOUT
        ),
    )


def parse_config(data: Mapping[str, Any]) -> AppConfig:
    """
    Build an AppConfig from decoded configuration data.

    Args:
        data: Decoded configuration mapping

    Returns:
        Immutable AppConfig

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    from .notifications import NOTIFIERS

    defaults = DefaultConfig(
        user=data.get("user"),
        key=data.get("key"),
        backup_dir=_get(data, "backupDir", "backup_dir"),
        debug=bool(data.get("debug", False)),
    )

    servers = data.get("servers") or {}
    if not isinstance(servers, Mapping):
        raise ConfigurationError("'servers' must be a mapping of name to server")

    notifications = []
    for entry in data.get("notifications") or []:
        kind = entry.get("type")
        if kind not in NOTIFIERS:
            raise ConfigurationError(f"Unknown notification type: {kind!r}")
        params = {k: v for k, v in entry.items() if k != "type"}
        notifications.append(NotificationConfig(type=kind, params=params))

    return AppConfig(
        defaults=defaults,
        servers=tuple(_parse_server(name, s or {}) for name, s in servers.items()),
        notifications=tuple(notifications),
    )


def resolve_config_path(path: Optional[Path] = None) -> Path:
    """Return the explicit path, else $SERVER_BACKUP_CONFIG, else ./backup.json."""
    if path:
        return path
    env_path = os.environ.get(CONFIG_ENV_VAR)
    return Path(env_path) if env_path else DEFAULT_CONFIG_PATH


def load_config(path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a JSON file.

    Args:
        path: Config file path (optional)

    Returns:
        Immutable AppConfig

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config_path = resolve_config_path(path)
    logger.debug(f"Loading configuration from {config_path}")

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e

    return parse_config(data)
