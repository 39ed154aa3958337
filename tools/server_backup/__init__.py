"""Server Backup - Capture command output and synchronize folders from a fleet of servers."""

from .controller import RunController
from .orchestrator import ServerOrchestrator
from .report import CommandResult, RunReport, ServerReport, SyncResult

__all__ = [
    "RunController",
    "ServerOrchestrator",
    "CommandResult",
    "RunReport",
    "ServerReport",
    "SyncResult",
]
