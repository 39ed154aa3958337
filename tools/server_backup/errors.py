"""Error types raised by the backup engine."""

from typing import List, Optional, Sequence, Tuple


class BackupError(Exception):
    """Base class for all backup errors."""


class ConfigurationError(BackupError):
    """Raised when configuration is invalid or a path cannot be resolved."""

    def __init__(self, message: str, server: Optional[str] = None):
        super().__init__(message)
        self.server = server


class ServerConnectionError(BackupError):
    """Raised when a server cannot be reached."""

    def __init__(self, server: str, reason: str):
        super().__init__(f"Unable to connect to server {server}: {reason}")
        self.server = server
        self.reason = reason


class CommandError(BackupError):
    """Raised when a command writes diagnostics, exits non-zero or cannot start."""

    def __init__(self, message: str, stderr: str = "", exit_status: Optional[int] = None):
        super().__init__(message)
        self.stderr = stderr
        self.exit_status = exit_status


class RetentionError(BackupError):
    """
    Raised when pruning a backup folder fails.

    Attributes:
        folder: Folder being pruned
        failures: (path, reason) for every entry that could not be handled
        deleted: Paths that were deleted before or despite the failures
    """

    def __init__(
        self,
        folder: str,
        failures: Sequence[Tuple[str, str]],
        deleted: Optional[Sequence[str]] = None,
    ):
        self.folder = folder
        self.failures: List[Tuple[str, str]] = list(failures)
        self.deleted: List[str] = list(deleted or [])
        details = "; ".join(f"{path}: {reason}" for path, reason in self.failures)
        super().__init__(f"Retention failed in {folder}: {details}")


class SyncError(BackupError):
    """Raised when the transfer delegate fails."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
