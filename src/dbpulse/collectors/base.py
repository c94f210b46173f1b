"""Abstract base class for database collectors.

This module defines the Collector interface that every database backend
implements. A collector turns one round of read-only queries into a
Payload. The scheduler only cares whether a payload was produced; the
error kinds below exist for log messages and diagnostics.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from dbpulse.models.base import _utcnow
from dbpulse.models.payload import Payload


@dataclass
class CollectorStats:
    """Running totals kept by Collector.tracked_collect()."""

    total_collections: int = 0
    total_failures: int = 0
    consecutive_failures: int = 0
    last_collection: datetime | None = None

    @property
    def success_rate(self) -> float:
        if not self.total_collections:
            return 0.0
        return 1 - self.total_failures / self.total_collections

    def record_failure(self) -> None:
        self.total_failures += 1
        self.consecutive_failures += 1


class CollectorError(Exception):
    """Base exception for collection failures.

    Attributes:
        kind: Short category name used in logs ("connection", "query", ...)
    """

    kind: str = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CollectorConnectionError(CollectorError):
    """The database could not be reached or the connection was lost."""

    kind = "connection"

    def __str__(self) -> str:
        return f"Database connection failed: {self.message}"


class QueryError(CollectorError):
    """A statistics query failed."""

    kind = "query"

    def __str__(self) -> str:
        return f"Query execution failed: {self.message}"


class CollectorPermissionError(CollectorError):
    """The monitoring role lacks privileges on a statistics view."""

    kind = "permission"

    def __str__(self) -> str:
        return f"Permission denied: {self.message}"


class UnsupportedVersionError(CollectorError):
    """The server version is not supported by the collector."""

    kind = "version"

    def __str__(self) -> str:
        return f"Unsupported database version: {self.message}"


class DetectionError(CollectorError):
    """Provider detection failed."""

    kind = "detection"

    def __str__(self) -> str:
        return f"Provider detection failed: {self.message}"


class InternalCollectorError(CollectorError):
    """Anything else that went wrong inside a collector."""

    kind = "internal"

    def __str__(self) -> str:
        return f"Internal error: {self.message}"


class Collector(ABC):
    """Abstract base class for database collectors.

    Collectors gather statistics from one database and return them as a
    Payload. All I/O is async so a slow query never blocks the event loop.
    Implementations must be safe to call repeatedly; the scheduler never
    calls collect() concurrently with itself.

    Class Attributes:
        name: Identifier for this collector (usually the database type)

    Example:
        class PostgresCollector(Collector):
            name = "postgres"

            async def collect(self) -> Payload:
                ...

            async def test_connection(self) -> None:
                ...

            @property
            def provider(self) -> str:
                return "rds"

            @property
            def version(self) -> str | None:
                return "16.2"
    """

    name: str = "collector"

    def __init__(self) -> None:
        self._initialized: bool = False
        self._config: dict[str, Any] = {}
        self._tracking = CollectorStats()

    @property
    def last_collection(self) -> datetime | None:
        """When collect() last returned a payload, or None."""
        return self._tracking.last_collection

    @property
    def consecutive_failures(self) -> int:
        """Failed collections since the last success."""
        return self._tracking.consecutive_failures

    @property
    def stats(self) -> dict[str, Any]:
        """Identity and running totals, for logs and diagnostics."""
        return {
            "name": self.name,
            "provider": self.provider,
            "version": self.version,
            **asdict(self._tracking),
            "success_rate": self._tracking.success_rate,
        }

    def initialize(self, config: dict[str, Any] | None = None) -> None:
        """Receive the database settings before the first collection.

        Override to open pools or read options; call super() to keep the
        stored config.

        Args:
            config: The database section of the agent configuration
        """
        self._config = config or {}
        self._initialized = True

    async def close(self) -> None:
        """Release connections and other resources.

        Called once when the agent shuts down.
        """
        self._initialized = False

    @abstractmethod
    async def collect(self) -> Payload:
        """Collect current metrics.

        Returns:
            A freshly built Payload

        Raises:
            CollectorError: If collection failed
        """
        ...

    @abstractmethod
    async def test_connection(self) -> None:
        """Check that the database is reachable with the configured role.

        Raises:
            CollectorError: If the connection check failed
        """
        ...

    @property
    @abstractmethod
    def provider(self) -> str:
        """Detected database provider (generic, rds, aurora, ...)."""
        ...

    @property
    @abstractmethod
    def version(self) -> str | None:
        """Database server version, if known."""
        ...

    async def tracked_collect(self) -> Payload:
        """Run collect() and keep the running totals current.

        Exceptions outside the CollectorError family are wrapped in
        InternalCollectorError, so callers handle a single family.
        """
        tracking = self._tracking
        tracking.total_collections += 1

        try:
            payload = await self.collect()
        except CollectorError:
            tracking.record_failure()
            raise
        except Exception as e:
            tracking.record_failure()
            raise InternalCollectorError(f"{type(e).__name__}: {e!s}") from e

        tracking.consecutive_failures = 0
        tracking.last_collection = _utcnow()
        return payload

    def reset_stats(self) -> None:
        self._tracking = CollectorStats()
