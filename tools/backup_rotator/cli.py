"""CLI for the Backup Rotator."""

import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shared.cli import create_table, error, handle_errors, info, print_table, success, warning
from shared.logger import setup_logger

from .config import PolicyConfig, build_config, load_config
from .exceptions import RotationError
from .executor import CommandExecutor
from .history import HistoryLog
from .policy import NextPosition
from .scheduler import RotationScheduler
from .status import StatusService

console = Console()


def _exit_on_signal(signum, frame) -> None:
    raise SystemExit(128 + signum)


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON config file",
)
@click.option(
    "--dest",
    "destination_root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Destination root for sets, trash and restore pointers",
)
@click.option("--sets", "total_sets", type=int, help="Number of rotating sets")
@click.option("--levels", "max_level", type=int, help="Levels per set")
@click.option("--sequences", "max_sequence_per_level", type=int, help="Runs per level")
@click.option(
    "--level-zero",
    "level_zero_policy",
    help="When to take level 0: every, everyother, set<N>",
)
@click.option("--backlinks", type=int, help="Dated restore pointers to keep")
@click.option("--unit", help="Logical unit written into identifiers, e.g. tank/home")
@click.option("--extension", help="Artifact file extension")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: Optional[Path],
    verbose: bool,
    **options,
) -> None:
    """Backup Rotator - Rotate incremental backups across sets and levels."""
    log_level = "DEBUG" if verbose else "INFO"
    setup_logger(__name__, level=log_level)

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["options"] = options


def _load(ctx: click.Context) -> PolicyConfig:
    """Build the config from the group options; exits on ConfigError."""
    config_file = ctx.obj["config_file"]
    options = ctx.obj["options"]
    try:
        if config_file:
            return load_config(config_file, **options)
        return build_config({key: value for key, value in options.items() if value is not None})
    except RotationError as e:
        error(f"Configuration error: {e}")
        sys.exit(1)


def display_plan(plan: NextPosition, config: PolicyConfig) -> None:
    """Show a decided position and its actions."""
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Position", str(plan.position))
    table.add_row("Artifact", str(config.artifact_path(plan.position)))
    table.add_row("Diff Base", plan.diff_base.identifier if plan.diff_base else "none (full)")
    table.add_row("Override", "yes" if plan.override else "no")
    for action in plan.actions:
        table.add_row("Action", str(action))

    console.print(Panel(table, title="[cyan]Next Backup[/cyan]", border_style="cyan"))


@main.command()
@click.argument("set_number", metavar="[SET]", type=int, required=False)
@click.argument("level", metavar="[LEVEL]", type=int, required=False)
@click.option(
    "--command",
    envvar="BACKUP_ROTATOR_COMMAND",
    required=True,
    help=(
        "Backup command template; {identifier}, {destination}, {diff_base} and"
        " {diff_flag} are substituted, other braces are left for the shell"
    ),
)
@click.option("--timeout", type=float, help="Seconds before the backup command is killed")
@click.pass_context
@handle_errors
def run(
    ctx: click.Context,
    set_number: Optional[int],
    level: Optional[int],
    command: str,
    timeout: Optional[float],
) -> None:
    """Run the next backup, or one at SET and LEVEL.

    LEVEL defaults to 0 when only SET is given.

    Examples:

        \b
        # Let the rotation decide
        backup-rotator --dest /backups run --command "dump -0 -f {destination} /home"

        \b
        # Manual override to set 2, level 3
        backup-rotator --config rotator.json run 2 3
    """
    config = _load(ctx)
    override = None
    if set_number is not None:
        override = (set_number, level if level is not None else 0)

    scheduler = RotationScheduler(config, CommandExecutor(command, timeout=timeout))

    # Interruption must unwind through the lock
    previous_handlers = {
        signum: signal.signal(signum, _exit_on_signal) for signum in (signal.SIGTERM, signal.SIGHUP)
    }
    try:
        report = scheduler.run(override)
    except RotationError as e:
        console.print(
            Panel(
                f"[red]Error: {e}[/red]",
                title=f"[red]✗ {type(e).__name__}[/red]",
                border_style="red",
            )
        )
        sys.exit(1)
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)

    display_plan(report.plan, config)
    for message in report.warnings:
        warning(message)
    success(
        f"Backup {report.record.identifier} committed "
        f"({report.result.duration_seconds:.2f}s)"
    )


@main.command()
@click.argument("set_number", metavar="[SET]", type=int, required=False)
@click.argument("level", metavar="[LEVEL]", type=int, required=False)
@click.pass_context
@handle_errors
def plan(ctx: click.Context, set_number: Optional[int], level: Optional[int]) -> None:
    """Show what the next run would do without running it."""
    config = _load(ctx)
    override = None
    if set_number is not None:
        override = (set_number, level if level is not None else 0)

    scheduler = RotationScheduler(config, CommandExecutor(""))
    try:
        next_plan = scheduler.plan(override)
    except RotationError as e:
        error(str(e))
        sys.exit(1)

    display_plan(next_plan, config)


@main.command()
@click.option("--recent", type=int, default=10, help="Number of recent records to list")
@click.pass_context
@handle_errors
def status(ctx: click.Context, recent: int) -> None:
    """Show the current position and the oldest complete dataset."""
    config = _load(ctx)
    service = StatusService(HistoryLog(config.history_path), unit=config.unit)

    current = service.latest_record()
    if current is None:
        info(f"No backups recorded in {config.history_path}")
        return

    oldest = service.oldest_complete()

    info_table = Table(show_header=False, box=None)
    info_table.add_column("Key", style="cyan")
    info_table.add_column("Value", style="white")
    info_table.add_row("Current Position", str(current.position))
    info_table.add_row(
        "Path to Last Backup",
        str(config.level_dir(current.position.set, current.position.level)),
    )
    if oldest is not None:
        info_table.add_row(
            "Oldest Level 0",
            f"{config.level_dir(oldest.position.set, oldest.position.level)} ({oldest.timestamp})",
        )
    else:
        info_table.add_row("Oldest Level 0", "none")

    console.print(Panel(info_table, title="[cyan]Rotation Status[/cyan]", border_style="cyan"))

    table = create_table(title="Recent Backups")
    table.add_column("Identifier", style="cyan")
    table.add_column("Timestamp", style="yellow")
    table.add_column("Diff Base", style="magenta")
    for record in service.recent(recent):
        table.add_row(record.identifier, str(record.timestamp), record.diff_base or "full")
    print_table(table)


@main.command()
@click.argument("unit")
@click.pass_context
@handle_errors
def last(ctx: click.Context, unit: str) -> None:
    """Show the last backup of UNIT (name or shell pattern)."""
    config = _load(ctx)
    service = StatusService(HistoryLog(config.history_path))

    record = service.last_for_unit(unit)
    if record is None:
        warning(f"Couldn't find the last backup time for '{unit}'")
        return

    console.print(f"{record.identifier}: {record.timestamp}")


if __name__ == "__main__":
    main()
