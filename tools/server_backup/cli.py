"""CLI for Server Backup."""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from shared.cli import (
    confirm,
    console,
    create_table,
    error,
    handle_errors,
    info,
    print_table,
    success,
    warning,
)
from shared.logger import setup_logger

from .config import load_config, normalize_outputs
from .controller import RunController
from .errors import BackupError, RetentionError
from .exclusion import ExclusionResolver
from .orchestrator import ServerOrchestrator
from .report import RunReport
from .retention import RetentionManager

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Configuration file (defaults to $SERVER_BACKUP_CONFIG or ./backup.json)",
)


@click.group()
def main() -> None:
    """Server Backup - Capture command output and sync folders from your servers."""
    pass


def display_report(report: RunReport) -> None:
    """
    Display a run report as a table.

    Args:
        report: Report to display
    """
    table = create_table(title="Backup Results")
    table.add_column("Server", style="cyan")
    table.add_column("Item", style="white")
    table.add_column("Status")
    table.add_column("Details", style="dim")

    for name, server in report.servers.items():
        if server.error:
            table.add_row(name, "connection", "[red]FAIL[/red]", server.error)
        for result in server.commands:
            details = result.error or ""
            if result.deleted_files:
                details = f"{len(result.deleted_files)} old file(s) deleted"
            if result.retention_errors:
                details = "; ".join(result.retention_errors)
            status = "[green]OK[/green]" if not result.has_error else "[red]FAIL[/red]"
            table.add_row(name, result.command.exec, status, details)
        for result in server.folders:
            status = "[green]OK[/green]" if result.status else "[red]FAIL[/red]"
            table.add_row(
                name, f"{result.sync.source} -> {result.sync.destination}", status, result.error or ""
            )

    print_table(table)


@main.command()
@config_option
@click.option(
    "--server",
    "-s",
    "servers",
    multiple=True,
    help="Only back up this server (can be specified multiple times)",
)
@click.option(
    "--workers",
    "-w",
    type=click.IntRange(min=1),
    default=1,
    help="Number of servers backed up concurrently",
)
@click.option("--no-notify", is_flag=True, help="Do not send notifications")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@handle_errors
def run(
    config_path: Optional[Path],
    servers: tuple,
    workers: int,
    no_notify: bool,
    verbose: bool,
) -> None:
    """Back up all configured servers.

    Examples:

        \b
        # Back up every server of ./backup.json
        server-backup run

        \b
        # Back up two servers in parallel
        server-backup run -c /etc/server-backup.json --server db1 --server web1 -w 2
    """
    setup_logger(__name__, level="DEBUG" if verbose else "INFO")

    config = load_config(config_path)
    controller = RunController(config, max_workers=workers, notifiers=[] if no_notify else None)

    info(f"Backing up {len(servers) or len(config.servers)} server(s)...")
    report = controller.run(only=list(servers) or None)
    display_report(report)

    if not no_notify:
        controller.notify(report)
        for message in controller.notification_errors:
            warning(message)

    if report.errors:
        console.print(
            Panel(
                "[red]Some backups failed, see the report above[/red]",
                title="[red]✗ Backup Failed[/red]",
                border_style="red",
            )
        )
        sys.exit(1)

    console.print(
        Panel(
            "[green]All backups completed[/green]",
            title="[green]✓ Backup Successful[/green]",
            border_style="green",
        )
    )


@main.command()
@config_option
@handle_errors
def check(config_path: Optional[Path]) -> None:
    """Validate the configuration and show where today's outputs would go."""
    config = load_config(config_path)

    table = create_table(title="Planned Outputs")
    table.add_column("Server", style="cyan")
    table.add_column("Command", style="white")
    table.add_column("Output", style="yellow")
    table.add_column("Today", style="magenta")

    problems = 0
    for server in config.servers:
        orchestrator = ServerOrchestrator(server, config.defaults)
        for command in server.commands:
            for output in normalize_outputs(list(command.outputs)):
                applies = orchestrator.conditions.applies(output.condition)
                try:
                    target = str(orchestrator.paths.resolve(output.file, mkdir=False))
                except BackupError as e:
                    target = f"[red]{e}[/red]"
                    problems += 1
                table.add_row(server.name, command.exec, target, "yes" if applies else "no")
        for sync in server.syncs:
            try:
                target = str(orchestrator.paths.resolve(sync.destination, mkdir=False))
            except BackupError as e:
                target = f"[red]{e}[/red]"
                problems += 1
            table.add_row(server.name, f"sync {sync.source}", target, "yes")

    print_table(table)
    if problems:
        error(f"{problems} path(s) cannot be resolved")
        sys.exit(1)
    success(f"Configuration is valid ({len(config.servers)} server(s))")


@main.command()
@click.argument("folder", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--keep", "-k", type=click.IntRange(min=1), required=True, help="Files to keep")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@handle_errors
def prune(folder: Path, keep: int, yes: bool) -> None:
    """Delete all but the KEEP most recent files of FOLDER.

    Examples:

        \b
        # Keep the 7 latest dumps
        server-backup prune /srv/backups/db1 --keep 7
    """
    if not yes and not confirm(f"Delete all but the {keep} latest files of {folder}?"):
        info("Operation cancelled")
        return

    try:
        deleted = RetentionManager().prune(folder, keep)
    except RetentionError as e:
        for path in e.deleted:
            info(f"Deleted: {path}")
        for path, reason in e.failures:
            error(f"{path}: {reason}")
        sys.exit(1)

    for path in deleted:
        info(f"Deleted: {path}")
    success(f"{len(deleted)} file(s) deleted")


@main.command()
@click.argument("source", type=click.Path(exists=True, file_okay=False, path_type=Path))
@handle_errors
def excluded(source: Path) -> None:
    """List the paths of SOURCE that its gitignore rules exclude."""
    paths = ExclusionResolver().compute_excluded(source)
    if not paths:
        info("Nothing is ignored")
        return
    for path in paths:
        console.print(path)
    info(f"{len(paths)} path(s) excluded")


if __name__ == "__main__":
    main()
