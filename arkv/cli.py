"""Command-line interface for arkv.

``arkv PATH`` uploads a file or folder to every configured destination
at once; ``--interactive`` picks one; ``--setup`` (re)runs the wizard.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console

from arkv.config import ConfigManager
from arkv.errors import ArkvError
from arkv.progress import ConsoleProgress
from arkv.setup_wizard import describe_destination, run_setup, select
from arkv.transfer import TransferReport, run_transfers

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
_DATE_FORMAT = "%H:%M:%S"

USAGE = """
arkv - Archive files to remote servers

USAGE:
    arkv <FILE_OR_FOLDER>    Upload a file or folder
    arkv --setup             Run setup wizard
    arkv --help              Show detailed help

EXAMPLES:
    arkv cool-picture.png              Upload a single file
    arkv my_files/tuesday/             Upload a folder and its contents
    arkv document.pdf --interactive    Choose destination interactively

Get started by running: arkv --setup
"""


def configure_logging(verbose: bool) -> None:
    """Set up root logging to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
        stream=sys.stderr,
    )
    # Quieten noisy third-party loggers
    logging.getLogger("paramiko").setLevel(logging.WARNING)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("path", required=False, type=click.Path(path_type=str))
@click.option("--setup", "run_wizard", is_flag=True, help="Re-run the setup wizard.")
@click.option("-i", "--interactive", is_flag=True, help="Select destination interactively.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging.")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="ARKV_CONFIG_DIR",
    hidden=True,
    help="Directory holding config.json.",
)
def cli(
    path: str | None,
    run_wizard: bool,
    interactive: bool,
    verbose: bool,
    config_dir: Path | None,
) -> None:
    """Archive files to remote servers via SFTP."""
    configure_logging(verbose)
    manager = ConfigManager(base_dir=config_dir)

    try:
        if run_wizard:
            run_setup(manager)
            return

        config = manager.load()
        if config is None:
            click.echo("No configuration found. Running setup...\n")
            config = run_setup(manager)
    except ArkvError as exc:
        raise click.ClickException(str(exc)) from exc

    if not config.destinations:
        click.echo("Error: No destinations configured. Run 'arkv --setup' to add one.", err=True)
        sys.exit(1)

    if path is None:
        click.echo(USAGE)
        return

    if interactive:
        index = select(
            "Select destination",
            [describe_destination(d) for d in config.destinations],
        )
        destinations = [config.destinations[index]]
    else:
        destinations = list(config.destinations)

    console = Console()
    if len(destinations) > 1:
        console.print(f"\n📦 Archiving to {len(destinations)} destinations\n")
    else:
        console.print(f"\n📦 Archiving to {describe_destination(destinations[0])}\n")

    with ConsoleProgress(console) as progress:
        report = run_transfers(
            destinations,
            path,
            config.ssh_key_path,
            on_plan=progress.on_plan,
            on_file_start=progress.on_file_start,
            on_finished=progress.on_finished,
            on_failed=progress.on_failed,
        )

    if not print_report(report, console):
        sys.exit(1)


def print_report(report: TransferReport, console: Console) -> bool:
    """Print per-destination results; return False if anything failed."""
    for name, _ in report.results:
        console.print(f"✓ Completed upload to {name}")

    if not report.ok:
        click.echo("\n❌ Errors occurred:", err=True)
        for failure in report.failures:
            click.echo(f"  {failure}", err=True)
        return False

    console.print()
    for name, stats in report.results:
        console.print(
            f"📊 {name}: {stats.megabytes:.2f} MB in {stats.duration_secs:.1f}s "
            f"({stats.speed_mbps:.2f} MB/s)"
        )
    console.print("\n✨ Done!\n")
    return True


def main() -> None:
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
