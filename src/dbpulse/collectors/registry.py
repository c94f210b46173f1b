"""Collector selection and loading.

Database collectors live outside this package. A collector is found either
from an explicit import path in the config ("package.module:ClassName") or
from the ``dbpulse.collectors`` entry point group, where the entry point
name is the database type (postgres, mysql, mongodb).

Example entry point declaration in a collector package's pyproject.toml:

    [project.entry-points."dbpulse.collectors"]
    postgres = "dbpulse_postgres:PostgresCollector"
"""

import importlib
import importlib.metadata
import logging
from typing import Any

from dbpulse.collectors.base import Collector
from dbpulse.config.loader import Config

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "dbpulse.collectors"


class CollectorLoadError(Exception):
    """Raised when a collector cannot be found, imported or created.

    Attributes:
        collector_name: Import path or entry point name involved (if known)
        cause: The underlying exception (if any)
    """

    def __init__(
        self,
        message: str,
        collector_name: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.collector_name = collector_name
        self.cause = cause

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.collector_name:
            parts.insert(0, f"[{self.collector_name}]")
        if self.cause:
            parts.append(f"(caused by: {self.cause})")
        return " ".join(parts)


def _validate_collector_class(obj: Any, name: str) -> type[Collector]:
    if not isinstance(obj, type):
        raise CollectorLoadError(f"'{name}' does not resolve to a class", collector_name=name)
    if not issubclass(obj, Collector):
        raise CollectorLoadError(
            f"{obj.__name__} does not inherit from Collector",
            collector_name=name,
        )
    return obj


def load_collector_class(import_path: str) -> type[Collector]:
    """Import a collector class from "package.module:ClassName".

    Raises:
        CollectorLoadError: If the module or attribute cannot be loaded
    """
    module_name, _, attr = import_path.partition(":")
    if not module_name or not attr:
        raise CollectorLoadError(
            "Expected 'package.module:ClassName'",
            collector_name=import_path,
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise CollectorLoadError(
            f"Could not import module '{module_name}'",
            collector_name=import_path,
            cause=e,
        ) from e

    try:
        obj = getattr(module, attr)
    except AttributeError as e:
        raise CollectorLoadError(
            f"Module '{module_name}' has no attribute '{attr}'",
            collector_name=import_path,
            cause=e,
        ) from e

    return _validate_collector_class(obj, import_path)


def find_collector_class(database_type: str) -> type[Collector]:
    """Find the collector registered for a database type.

    Raises:
        CollectorLoadError: If no entry point is registered or it fails to load
    """
    logger.debug("Scanning entry point group: %s", ENTRY_POINT_GROUP)
    entry_points = importlib.metadata.entry_points(group=ENTRY_POINT_GROUP)

    matches = [ep for ep in entry_points if ep.name == database_type]
    if not matches:
        available = sorted({ep.name for ep in entry_points})
        hint = f"installed: {', '.join(available)}" if available else "none installed"
        raise CollectorLoadError(
            f"No collector installed for database type '{database_type}' ({hint})",
            collector_name=database_type,
        )
    if len(matches) > 1:
        logger.warning(
            "Multiple collectors registered for '%s', using %s",
            database_type,
            matches[0].value,
        )

    ep = matches[0]
    logger.debug("Loading entry point: %s from %s", ep.name, ep.value)
    try:
        obj = ep.load()
    except Exception as e:
        raise CollectorLoadError(
            f"Failed to load entry point '{ep.value}'",
            collector_name=database_type,
            cause=e,
        ) from e

    return _validate_collector_class(obj, ep.value)


def create_collector(config: Config) -> Collector:
    """Create and initialize the collector for the configured database.

    initialize() receives the database section plus a "metrics" key listing
    the groups from collection.metrics the collector should gather.

    Args:
        config: Agent configuration

    Returns:
        An initialized Collector

    Raises:
        CollectorLoadError: If the collector cannot be found or created
    """
    if config.database.collector:
        collector_class = load_collector_class(config.database.collector)
    else:
        collector_class = find_collector_class(config.database_type)

    try:
        collector = collector_class()
        collector.initialize(
            {**config.database.model_dump(by_alias=True), "metrics": list(config.collection.metrics)}
        )
    except Exception as e:
        raise CollectorLoadError(
            f"Failed to initialize {collector_class.__name__}",
            collector_name=collector_class.__name__,
            cause=e,
        ) from e

    logger.info("Using collector %s for %s", collector_class.__name__, config.database_type)
    return collector
