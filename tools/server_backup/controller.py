"""Run backups for every configured server and collect the report."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

from shared.logger import get_logger

from .config import AppConfig, ServerConfig
from .errors import ServerConnectionError
from .formatter import FormattedReport, ReportFormatter
from .notifications import Notifier, build_notifiers
from .orchestrator import ServerOrchestrator
from .report import RunReport, ServerReport

logger = get_logger(__name__)


class RunController:
    """
    Back up servers and hand the report to notifiers.

    Servers are processed in configuration order; with ``max_workers`` above 1
    they run in a thread pool and the report is assembled once all finish.
    A server that cannot be reached gets a failed report and the run goes on.

    Attributes:
        config: Application configuration
        max_workers: Number of servers processed at once
        notification_errors: Messages of notifiers that failed
    """

    def __init__(
        self,
        config: AppConfig,
        max_workers: int = 1,
        today: Optional[date] = None,
        orchestrator_factory: Optional[Callable[[ServerConfig], ServerOrchestrator]] = None,
        notifiers: Optional[List[Notifier]] = None,
        formatter: Optional[ReportFormatter] = None,
    ):
        self.config = config
        self.max_workers = max(1, max_workers)
        self.today = today or date.today()
        self.orchestrator_factory = orchestrator_factory or self._default_orchestrator
        self.notifiers = (
            notifiers if notifiers is not None else build_notifiers(config.notifications)
        )
        self.formatter = formatter or ReportFormatter()
        self.notification_errors: List[str] = []

    def _default_orchestrator(self, server: ServerConfig) -> ServerOrchestrator:
        return ServerOrchestrator(server, self.config.defaults, today=self.today)

    def backup_server(self, server: ServerConfig) -> ServerReport:
        """
        Back up one server; connection failures become a failed report.

        Args:
            server: Server configuration

        Returns:
            ServerReport
        """
        orchestrator = self.orchestrator_factory(server)
        try:
            return orchestrator.run()
        except ServerConnectionError as e:
            logger.error(str(e))
            return ServerReport(error=str(e))
        except Exception as e:
            logger.exception(f"Backup of server {server.name} aborted")
            return ServerReport(error=f"Backup of server {server.name} aborted: {e}")

    def run(self, only: Optional[Sequence[str]] = None) -> RunReport:
        """
        Back up every (or the selected) server.

        Args:
            only: Names of the servers to process (optional)

        Returns:
            RunReport in configuration order
        """
        servers = [s for s in self.config.servers if not only or s.name in only]
        if only:
            missing = set(only) - {s.name for s in servers}
            for name in sorted(missing):
                logger.warning(f"Unknown server: {name}")

        results: Dict[str, ServerReport] = {}
        if self.max_workers == 1 or len(servers) < 2:
            for server in servers:
                results[server.name] = self.backup_server(server)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {s.name: executor.submit(self.backup_server, s) for s in servers}
                for server in servers:
                    results[server.name] = futures[server.name].result()

        report = RunReport(servers=results)
        status = "with errors" if report.errors else "successfully"
        logger.info(f"Backup of {len(results)} server(s) finished {status}")
        return report

    def notify(self, report: RunReport) -> FormattedReport:
        """
        Format the report and send it to every notifier.

        Returns:
            The formatted report
        """
        formatted = self.formatter.format(report)
        for notifier in self.notifiers:
            try:
                notifier.notify(report, formatted)
            except Exception as e:
                message = f"{type(notifier).__name__} failed: {e}"
                logger.error(message)
                self.notification_errors.append(message)
        return formatted
