"""Agent runner for dbpulse.

This module wires the configured pieces together for each run mode:
- Agent mode: collect and upload on a schedule until SIGINT/SIGTERM
- Dry run: collect once and print the payload, never uploading
- Connection test: check the database and the ingestion endpoint once

The async entry points raise on failure; run_mode() is the synchronous
wrapper used by the CLI and turns failures into exit codes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TextIO

from rich.console import Console
from rich.markup import escape

from dbpulse import __version__, sentry
from dbpulse.collectors import (
    Collector,
    CollectorError,
    CollectorLoadError,
    InternalCollectorError,
    Scheduler,
    SchedulerError,
    ShutdownSignal,
    create_collector,
    install_signal_handlers,
)
from dbpulse.config import Config
from dbpulse.uploader import Uploader, UploaderError

logger = logging.getLogger(__name__)

console = Console(stderr=True)


async def run_agent(
    config: Config,
    *,
    collector: Collector | None = None,
    shutdown: ShutdownSignal | None = None,
) -> None:
    """Run the collect -> upload loop until shutdown is requested.

    Args:
        config: Agent configuration
        collector: Collector to use instead of the configured one
        shutdown: Shutdown signal to use; when omitted a new one is created
            and wired to SIGINT/SIGTERM

    Raises:
        CollectorLoadError: If the configured collector cannot be created
    """
    if collector is None:
        collector = create_collector(config)
    if shutdown is None:
        shutdown = ShutdownSignal()
        install_signal_handlers(shutdown)

    logger.info(
        "Starting dbpulse %s (database: %s, interval: %ss)",
        __version__,
        config.database_type,
        config.collection.interval,
    )
    sentry.set_agent_context(
        database_type=config.database_type,
        provider=config.database.provider,
        interval=config.collection.interval,
        config_path=str(config.source) if config.source else None,
    )

    try:
        async with Uploader(config.ingest.to_uploader_config()) as uploader:
            scheduler = Scheduler(
                collector,
                uploader,
                interval=config.collection.interval,
                shutdown=shutdown,
                max_jitter=config.collection.jitter,
            )
            await scheduler.run()
    finally:
        await collector.close()

    logger.info("dbpulse stopped")


async def run_dry_run(
    config: Config,
    *,
    collector: Collector | None = None,
    out: TextIO | None = None,
) -> None:
    """Collect once and print the payload without uploading.

    Raises:
        CollectorLoadError: If the configured collector cannot be created
        SchedulerError: If collection failed
    """
    if collector is None:
        collector = create_collector(config)

    scheduler = Scheduler(
        collector,
        None,
        interval=config.collection.interval,
        shutdown=ShutdownSignal(),
        max_jitter=0.0,
    )
    try:
        await scheduler.run_once(out)
    finally:
        await collector.close()


async def run_connection_test(
    config: Config,
    *,
    collector: Collector | None = None,
) -> None:
    """Check the database connection, then the ingestion endpoint.

    Prints one line per check. The first failure is raised.

    Raises:
        CollectorLoadError: If the configured collector cannot be created
        CollectorError: If the database check failed (other exceptions from
            the collector arrive wrapped in InternalCollectorError)
        UploaderError: If the endpoint check failed
    """
    if collector is None:
        collector = create_collector(config)

    try:
        console.print(f"Testing {config.database_type} connection... ", end="")
        try:
            await collector.test_connection()
        except CollectorError:
            console.print("[red]FAILED[/red]")
            raise
        except Exception as e:
            console.print("[red]FAILED[/red]")
            raise InternalCollectorError(f"{type(e).__name__}: {e!s}") from e
        console.print("[green]OK[/green]")
        version = collector.version or "unknown"
        console.print(f"  Provider: {collector.provider}, version: {escape(version)}")
    finally:
        await collector.close()

    endpoint = config.ingest.endpoint
    console.print(f"Testing ingestion endpoint {escape(endpoint)}... ", end="")
    async with Uploader(config.ingest.to_uploader_config()) as uploader:
        try:
            await uploader.test_connection()
        except UploaderError:
            console.print("[red]FAILED[/red]")
            raise
    console.print("[green]OK[/green]")


def run_mode(
    config: Config,
    *,
    dry_run: bool = False,
    test_connection: bool = False,
) -> int:
    """Run the selected mode and translate failures into an exit code.

    Args:
        config: Agent configuration
        dry_run: Collect once and print instead of running the agent
        test_connection: Check connectivity instead of running the agent

    Returns:
        0 on success or clean shutdown, 1 on failure
    """
    try:
        if test_connection:
            asyncio.run(run_connection_test(config))
            console.print("[green]All checks passed[/green]")
        elif dry_run:
            asyncio.run(run_dry_run(config))
        else:
            asyncio.run(run_agent(config))
    except CollectorLoadError as e:
        console.print(f"[red]Collector error:[/red] {escape(str(e))}")
        return 1
    except (CollectorError, UploaderError, SchedulerError) as e:
        sentry.capture_cycle_error("oneshot", e)
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1
    return 0
