"""Command-line interface for dbpulse.

The single command loads configuration (file, environment and flag
overrides), sets up logging and error reporting, then hands off to the
runner for the selected mode.

Usage:
    dbpulse                       # Run the agent until SIGINT/SIGTERM
    dbpulse --dry-run             # Collect once and print the payload
    dbpulse --test-connection     # Check database and endpoint connectivity

Examples:
    # Run with a specific config file
    dbpulse --config /etc/dbpulse/config.yaml

    # Run from environment variables only
    DBPULSE_API_KEY=... DATABASE_URL=postgres://... dbpulse

    # Collect every 5 minutes with debug logging
    dbpulse --interval 300 --verbose
"""

from pathlib import Path
from typing import Annotated, Any

from rich.console import Console
from rich.markup import escape
import typer

from dbpulse import __version__
from dbpulse.config import ConfigError, load_config
from dbpulse.config.loader import MIN_INTERVAL
from dbpulse.logging_setup import setup_logging
from dbpulse.runner import run_mode
from dbpulse.sentry import init_sentry

# Create the main Typer app
app = typer.Typer(
    name="dbpulse",
    help="Database metrics agent - collects database statistics and uploads them for analysis",
    no_args_is_help=False,
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print the version for --version and stop."""
    if value:
        console.print(f"dbpulse version {__version__}")
        raise typer.Exit()


def build_cli_overrides(interval: int | None = None) -> dict[str, Any]:
    """Turn command line flags into nested config overrides.

    Args:
        interval: Collection interval override in seconds

    Returns:
        Dictionary of config overrides
    """
    overrides: dict[str, Any] = {}

    if interval is not None:
        overrides["collection"] = {"interval": interval}

    return overrides


ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to config file (default: DBPULSE_CONFIG_PATH, then standard locations)",
        exists=False,  # load_config reports a missing file
    ),
]

DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Collect metrics once and print them without uploading",
    ),
]

TestConnectionOption = Annotated[
    bool,
    typer.Option(
        "--test-connection",
        help="Check the database and ingestion endpoint, then exit",
    ),
]

VerboseOption = Annotated[
    bool,
    typer.Option(
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
]

JsonLogsOption = Annotated[
    bool,
    typer.Option(
        "--json-logs",
        help="Write logs as JSON lines regardless of config",
    ),
]

IntervalOption = Annotated[
    int | None,
    typer.Option(
        "--interval",
        "-i",
        help="Collection interval in seconds",
        min=MIN_INTERVAL,
    ),
]

VersionOption = Annotated[
    bool | None,
    typer.Option(
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
]


@app.command()
def main(
    config_path: ConfigOption = None,
    dry_run: DryRunOption = False,
    test_connection: TestConnectionOption = False,
    verbose: VerboseOption = False,
    json_logs: JsonLogsOption = False,
    interval: IntervalOption = None,
    version: VersionOption = None,
) -> None:
    """Run the dbpulse agent.

    Collects statistics from the configured database on a fixed interval
    and uploads them to the ingestion endpoint until interrupted.
    """
    if dry_run and test_connection:
        err_console.print("[red]Error:[/red] --dry-run and --test-connection cannot be combined")
        raise typer.Exit(1)

    try:
        config = load_config(
            str(config_path) if config_path else None,
            cli_overrides=build_cli_overrides(interval),
        )
    except FileNotFoundError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red]\n{escape(str(e))}")
        raise typer.Exit(1) from e

    setup_logging(config.logging, verbose=verbose, json_logs=json_logs)
    init_sentry(config.sentry)

    exit_code = run_mode(config, dry_run=dry_run, test_connection=test_connection)
    if exit_code != 0:
        raise typer.Exit(exit_code)


def cli_main() -> None:
    """Console script entry point."""
    app()
