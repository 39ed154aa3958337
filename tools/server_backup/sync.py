"""Folder synchronization to the backup store through rsync."""

import subprocess
from dataclasses import dataclass, field
from typing import List, Optional

from shared.logger import get_logger

from .config import DefaultConfig, ServerConfig, Sync
from .errors import BackupError, SyncError
from .exclusion import ExclusionResolver
from .paths import PathTemplateResolver
from .report import SyncResult

logger = get_logger(__name__)


@dataclass
class TransferSpec:
    """Inputs of one rsync transfer."""

    source: str
    destination: str
    recursive: bool = True
    exclude: List[str] = field(default_factory=list)
    ssh: bool = False
    port: Optional[int] = None
    private_key: Optional[str] = None
    timeout: Optional[float] = None

    def to_args(self, binary: str = "rsync") -> List[str]:
        """Build the rsync command line."""
        args = [binary]
        if self.recursive:
            args.append("--recursive")
        for pattern in self.exclude:
            args.append(f"--exclude={pattern}")
        if self.ssh:
            shell = ["ssh"]
            if self.port:
                shell += ["-p", str(self.port)]
            if self.private_key:
                shell += ["-i", self.private_key]
            args += ["--rsh", " ".join(shell)]
        args += [self.source, self.destination]
        return args


class RsyncTransfer:
    """Run a TransferSpec with the rsync binary."""

    def __init__(self, binary: str = "rsync"):
        self.binary = binary

    def __call__(self, spec: TransferSpec) -> str:
        """
        Run the transfer.

        Returns:
            rsync standard output

        Raises:
            SyncError: If rsync cannot start, times out or exits non-zero
        """
        args = spec.to_args(self.binary)
        logger.debug(f"Running {' '.join(args)}")
        try:
            completed = subprocess.run(
                args, capture_output=True, text=True, timeout=spec.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise SyncError(f"rsync timed out after {spec.timeout}s") from e
        except OSError as e:
            raise SyncError(f"Failed to start rsync: {e}") from e

        if completed.returncode != 0:
            raise SyncError(
                f"rsync exited with status {completed.returncode}: {completed.stderr.strip()}",
                exit_code=completed.returncode,
                stderr=completed.stderr,
            )
        return completed.stdout


class SyncEngine:
    """
    Synchronize configured folders of one server.

    Remote sources are addressed as ``user@host:path`` and transferred over
    ssh with the server's port and key.
    """

    def __init__(
        self,
        server: ServerConfig,
        defaults: DefaultConfig,
        paths: PathTemplateResolver,
        exclusions: Optional[ExclusionResolver] = None,
        transfer=None,
    ):
        self.server = server
        self.defaults = defaults
        self.paths = paths
        self.exclusions = exclusions or ExclusionResolver()
        self.transfer = transfer or RsyncTransfer()

    def build_spec(self, sync: Sync) -> TransferSpec:
        """
        Compute the transfer inputs for a sync.

        Raises:
            ConfigurationError: If the destination cannot be resolved
            SyncError: If the ignore rules cannot be evaluated
        """
        destination = str(self.paths.resolve(sync.destination))

        source = sync.source
        if not self.server.local:
            user = self.server.effective_user(self.defaults)
            source = f"{user}@{self.server.host}:{source}"

        exclude = list(sync.exclude)
        if sync.gitignore:
            for path in self.exclusions.compute_excluded(sync.source):
                if path not in exclude:
                    exclude.append(path)

        spec = TransferSpec(
            source=source,
            destination=destination,
            recursive=True,
            exclude=exclude,
            timeout=sync.timeout,
        )
        if not self.server.local:
            spec.ssh = True
            spec.port = self.server.port
            spec.private_key = self.server.effective_key(self.defaults)
        return spec

    def synchronize(self, sync: Sync) -> SyncResult:
        """
        Synchronize one folder.

        Args:
            sync: Folder sync configuration

        Returns:
            SyncResult; errors are captured, never raised
        """
        logger.info(f"Synchronizing {sync.source} -> {sync.destination}")
        try:
            spec = self.build_spec(sync)
            logger.debug(f"Excluding {spec.exclude}")
            self.transfer(spec)
        except (BackupError, OSError) as e:
            logger.error(f"Synchronization of {sync.source} failed: {e}")
            return SyncResult(sync=sync, status=False, error=str(e))

        return SyncResult(sync=sync, status=True, excluded=spec.exclude)
