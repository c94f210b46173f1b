"""Sentry SDK integration for dbpulse.

This module provides:
- Sentry initialization with asyncio and logging integrations
- Agent context and tags (database type, provider, interval)
- Cycle error capture with stage context
- Cycle metrics (counts and durations)

Every helper is a no-op until init_sentry() has succeeded, so the rest of
the agent can call them unconditionally.

Usage:
    from dbpulse.sentry import init_sentry, capture_cycle_error, record_cycle

    init_sentry(config.sentry)  # Call at startup

    capture_cycle_error("upload", error)
    record_cycle(success=True, stage="done", duration_ms=412.0)
"""

from __future__ import annotations

import logging
import os
import platform
from typing import TYPE_CHECKING, Any

import sentry_sdk
from sentry_sdk import metrics
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from dbpulse import __version__

if TYPE_CHECKING:
    from dbpulse.config.loader import SentryConfig

logger = logging.getLogger(__name__)

_initialized = False


def is_initialized() -> bool:
    """Check whether Sentry reporting is active."""
    return _initialized


def init_sentry(config: SentryConfig) -> bool:
    """Initialize Sentry SDK if enabled in configuration.

    The DSN comes from the config or the SENTRY_DSN environment variable.
    Reporting stays off when neither provides one.

    Args:
        config: The sentry section of the agent configuration

    Returns:
        True if Sentry was initialized
    """
    global _initialized

    if not config.enabled:
        return False

    dsn = config.dsn or os.environ.get("SENTRY_DSN")
    if not dsn:
        logger.warning("Sentry is enabled but no DSN is configured; error reporting is off")
        return False

    sentry_sdk.init(
        dsn=dsn,
        traces_sample_rate=config.traces_sample_rate,
        send_default_pii=False,
        environment=config.environment or os.environ.get("DBPULSE_ENV", "production"),
        release=f"dbpulse@{__version__}",
        integrations=[
            AsyncioIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],
        before_send=_before_send,
    )

    for tag, value in (
        ("dbpulse.version", __version__),
        ("runtime.python", platform.python_version()),
        ("host.os", platform.system()),
    ):
        sentry_sdk.set_tag(tag, value)

    _initialized = True
    logger.debug("Sentry initialized")
    return True


def _before_send(
    event: dict[str, Any],
    hint: dict[str, Any],
) -> dict[str, Any] | None:
    """Drop KeyboardInterrupt events."""
    exc_info = hint.get("exc_info")
    if exc_info and exc_info[0] is KeyboardInterrupt:
        return None
    return event


def set_agent_context(
    *,
    database_type: str,
    provider: str | None = None,
    interval: float | None = None,
    config_path: str | None = None,
) -> None:
    """Attach agent details to all future events.

    Args:
        database_type: Monitored database type (postgres, mysql, mongodb)
        provider: Detected provider, if known
        interval: Collection interval in seconds
        config_path: Path of the config file in use
    """
    if not _initialized:
        return

    sentry_sdk.set_tag("dbpulse.database_type", database_type)
    context: dict[str, Any] = {"database_type": database_type}

    if provider is not None:
        sentry_sdk.set_tag("dbpulse.provider", provider)
        context["provider"] = provider
    if interval is not None:
        context["interval"] = interval
    if config_path is not None:
        context["config_path"] = config_path

    sentry_sdk.set_context("dbpulse", context)


def capture_cycle_error(
    stage: str,
    error: Exception,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Capture a failed collection cycle with its stage.

    Args:
        stage: Where the cycle failed ("collect" or "upload")
        error: What went wrong
        extra: Extra fields for the cycle_error context
    """
    if not _initialized:
        return

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("cycle.stage", stage)
        scope.set_context("cycle_error", {
            "stage": stage,
            "error_type": type(error).__name__,
            **(extra or {}),
        })
        sentry_sdk.capture_exception(error)


def add_breadcrumb(
    message: str,
    category: str = "dbpulse",
    level: str = "info",
    data: dict[str, Any] | None = None,
) -> None:
    """Leave a breadcrumb that will ride along with the next event."""
    if not _initialized:
        return

    sentry_sdk.add_breadcrumb(
        message=message,
        category=category,
        level=level,
        data=data,
    )


def record_cycle(
    *,
    success: bool,
    stage: str,
    duration_ms: float,
    collection_ms: float | None = None,
) -> None:
    """Record metrics for one collect+upload cycle.

    Args:
        success: Whether the payload was delivered
        stage: Last stage reached ("collect", "upload" or "done")
        duration_ms: Total cycle time in milliseconds
        collection_ms: Time spent in the collector, if it returned
    """
    if not _initialized:
        return

    tags = {"success": str(success).lower(), "stage": stage}
    metrics.count("cycle.total", 1, attributes=tags)
    metrics.distribution("cycle.duration_ms", duration_ms, unit="millisecond", attributes=tags)

    if collection_ms is not None:
        metrics.distribution("cycle.collect_ms", collection_ms, unit="millisecond")

    if not success:
        metrics.count("cycle.errors", 1, attributes={"stage": stage})
