"""Backup of a single server: connection, commands, then folder syncs."""

from datetime import date
from enum import Enum
from typing import Optional

from shared.logger import get_logger

from .conditions import ConditionResolver
from .config import DefaultConfig, ServerConfig
from .errors import ServerConnectionError
from .exclusion import ExclusionResolver
from .paths import PathTemplateResolver, build_tokens
from .report import ServerReport
from .retention import RetentionManager
from .runner import CommandRunner
from .sync import SyncEngine
from .transport import open_transport

logger = get_logger(__name__)


class ServerState(str, Enum):
    """Lifecycle of a server orchestrator."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RUNNING_COMMANDS = "running_commands"
    RUNNING_SYNCS = "running_syncs"
    CLOSED = "closed"
    FAILED = "failed"


class ServerOrchestrator:
    """
    Back up one server.

    Commands run first, then folder syncs, each in configuration order. Item
    failures are recorded in the report; only a connection failure stops the
    server. The connection is released exactly once.

    Attributes:
        name: Server name
        config: Server configuration
        defaults: Default configuration
        tokens: Template tokens, fixed for the whole run
        state: Current lifecycle state
    """

    def __init__(
        self,
        config: ServerConfig,
        defaults: DefaultConfig,
        today: Optional[date] = None,
        transport=None,
        retention: Optional[RetentionManager] = None,
        exclusions: Optional[ExclusionResolver] = None,
        transfer=None,
    ):
        self.name = config.name
        self.config = config
        self.defaults = defaults
        self.today = today or date.today()
        self.tokens = build_tokens(config.name, self.today)
        self.debug = config.effective_debug(defaults)
        self.state = ServerState.IDLE
        self.transport = transport or open_transport(config, defaults)

        self.paths = PathTemplateResolver(config, defaults, self.tokens)
        self.conditions = ConditionResolver(self.today, context=self)
        self.commands = CommandRunner(
            self.transport, self.paths, self.conditions, retention or RetentionManager()
        )
        self.syncs = SyncEngine(
            config, defaults, self.paths, exclusions=exclusions, transfer=transfer
        )
        self._closed = False

    def connect(self) -> None:
        """
        Open the server connection.

        Local servers have nothing to connect and stay idle until ``backup()``.

        Raises:
            ServerConnectionError: If the server cannot be reached
        """
        if self.config.local:
            return

        self.state = ServerState.CONNECTING
        logger.info(f"Connecting to {self.name} ({self.config.host}:{self.config.port})")
        try:
            self.transport.connect()
        except ServerConnectionError:
            self.state = ServerState.FAILED
            raise
        except Exception as e:
            self.state = ServerState.FAILED
            raise ServerConnectionError(self.name, str(e)) from e
        self.state = ServerState.CONNECTED

    def backup(self) -> ServerReport:
        """
        Run every command, then every folder sync.

        Returns:
            ServerReport with one result per configured item
        """
        report = ServerReport()

        self.state = ServerState.RUNNING_COMMANDS
        for command in self.config.commands:
            result = self.commands.run(command)
            report.commands.append(result)
            if self.debug:
                logger.info(f"[{self.name}] {result.to_dict()}")

        self.state = ServerState.RUNNING_SYNCS
        for sync in self.config.syncs:
            result = self.syncs.synchronize(sync)
            report.folders.append(result)
            if self.debug:
                logger.info(f"[{self.name}] excluded {result.excluded}: {result.to_dict()}")

        failed = sum(r.has_error for r in report.commands + report.folders)
        logger.info(
            f"Server {self.name}: {len(report.commands)} command(s), "
            f"{len(report.folders)} folder(s), {failed} failure(s)"
        )
        return report

    def close(self) -> None:
        """Release the connection; further calls do nothing."""
        if self._closed:
            return
        self._closed = True
        try:
            self.transport.close()
        finally:
            if self.state != ServerState.FAILED:
                self.state = ServerState.CLOSED

    def run(self) -> ServerReport:
        """
        Connect, back up and close.

        Raises:
            ServerConnectionError: If the server cannot be reached
        """
        try:
            self.connect()
            return self.backup()
        finally:
            self.close()
