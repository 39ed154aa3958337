"""Run one backup command and capture its output to files."""

from pathlib import Path
from typing import List, Tuple

from shared.logger import get_logger

from .conditions import ConditionResolver
from .config import Command, Output, normalize_outputs
from .errors import BackupError, CommandError, RetentionError
from .paths import PathTemplateResolver
from .report import CommandResult
from .retention import RetentionManager
from .transport import MultiWriter

logger = get_logger(__name__)


class CommandRunner:
    """
    Execute commands of one server.

    Standard output is written to every applicable output file at once. A run
    fails when the command cannot start, times out or writes anything to
    standard error. A non-zero exit status fails it only for commands that set
    ``fail_on_exit``. Retention is applied to the outputs' folders
    after a successful run only.
    """

    def __init__(
        self,
        transport,
        paths: PathTemplateResolver,
        conditions: ConditionResolver,
        retention: RetentionManager,
    ):
        self.transport = transport
        self.paths = paths
        self.conditions = conditions
        self.retention = retention

    def select_outputs(self, command: Command) -> List[Tuple[Output, Path]]:
        """
        Resolve the outputs whose condition applies, creating parent folders.

        Raises:
            ConfigurationError: If an output path cannot be resolved
        """
        selected = []
        for output in normalize_outputs(list(command.outputs)):
            if not self.conditions.applies(output.condition):
                logger.debug(f"Skipping output {output.file}: condition not met")
                continue
            selected.append((output, self.paths.resolve(output.file)))
        return selected

    def run(self, command: Command) -> CommandResult:
        """
        Run a command.

        Args:
            command: Command to run

        Returns:
            CommandResult; errors are captured, never raised
        """
        logger.info(f"Running command: {command.exec}")
        try:
            selected = self.select_outputs(command)
            self._execute(command, [path for _, path in selected])
        except (BackupError, OSError) as e:
            logger.error(f"Command failed: {command.exec}: {e}")
            return CommandResult(command=command, status=False, error=str(e))

        result = CommandResult(
            command=command, status=True, outputs=[str(path) for _, path in selected]
        )
        for output, path in selected:
            if output.keep:
                self._apply_retention(result, output, path)
        return result

    def _execute(self, command: Command, paths: List[Path]) -> None:
        with MultiWriter() as sink:
            for path in paths:
                sink.add(open(path, "wb"))
            outcome = self.transport.execute(
                command.exec, sink, env=dict(command.env), timeout=command.timeout
            )

        if outcome.timed_out:
            raise CommandError(
                f"Command timed out after {command.timeout}s", stderr=outcome.stderr
            )
        if outcome.stderr:
            raise CommandError(
                outcome.stderr.strip(), stderr=outcome.stderr, exit_status=outcome.exit_status
            )
        if command.fail_on_exit and outcome.exit_status:
            raise CommandError(
                f"Command exited with status {outcome.exit_status}",
                exit_status=outcome.exit_status,
            )

    def _apply_retention(self, result: CommandResult, output: Output, path: Path) -> None:
        try:
            deleted = self.retention.prune(path.parent, output.keep, protected=[path])
        except RetentionError as e:
            deleted = e.deleted
            result.retention_errors.append(str(e))
        result.deleted_files.extend(deleted)
