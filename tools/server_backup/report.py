"""Structured results of a backup run."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import Command, Sync


@dataclass
class CommandResult:
    """Result of one command."""

    command: Command
    status: bool
    deleted_files: List[str] = field(default_factory=list)
    error: Optional[str] = None
    retention_errors: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)

    @property
    def has_error(self) -> bool:
        return not self.status or bool(self.retention_errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command.exec,
            "status": self.status,
            "outputs": list(self.outputs),
            "deletedFiles": list(self.deleted_files),
            "error": self.error,
            "retentionErrors": list(self.retention_errors),
        }


@dataclass
class SyncResult:
    """Result of one folder synchronization."""

    sync: Sync
    status: bool
    error: Optional[str] = None
    excluded: List[str] = field(default_factory=list)

    @property
    def has_error(self) -> bool:
        return not self.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.sync.source,
            "to": self.sync.destination,
            "status": self.status,
            "error": self.error,
        }


@dataclass
class ServerReport:
    """
    Results for one server, in configuration order.

    ``error`` is set when the server could not be processed at all
    (e.g. the connection failed).
    """

    commands: List[CommandResult] = field(default_factory=list)
    folders: List[SyncResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_error(self) -> bool:
        if self.error:
            return True
        return any(r.has_error for r in self.commands) or any(r.has_error for r in self.folders)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": self.has_error,
            "error": self.error,
            "commands": [r.to_dict() for r in self.commands],
            "folders": [r.to_dict() for r in self.folders],
        }


@dataclass
class RunReport:
    """Results for every server of a run, keyed by server name."""

    servers: Dict[str, ServerReport] = field(default_factory=dict)

    @property
    def errors(self) -> bool:
        return any(report.has_error for report in self.servers.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": self.errors,
            "servers": {name: report.to_dict() for name, report in self.servers.items()},
        }
