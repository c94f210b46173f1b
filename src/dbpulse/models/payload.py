"""Normalized payload schema sent to the ingestion endpoint.

The schema is database-agnostic. Collectors fill in whichever metric groups
their database supports; groups that were not collected are left unset and
are omitted from the serialized document.
"""

from datetime import datetime
import hashlib
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dbpulse import __version__
from dbpulse.models.base import _utcnow, counter_field, gauge_field

# Optional top-level groups, keyed by attribute name
METRIC_GROUPS = ("query_stats", "table_stats", "index_stats", "settings", "schema_metadata")


def generate_instance_id(connection_info: str) -> str:
    """Derive a stable instance identifier from connection information.

    The identifier is the first 16 bytes of the SHA-256 digest, hex encoded,
    so the same database always maps to the same 32-character id without
    exposing the connection string.

    Args:
        connection_info: Connection identity (typically the database URL)

    Returns:
        32-character lowercase hex string
    """
    digest = hashlib.sha256(connection_info.encode("utf-8")).digest()
    return digest[:16].hex()


class DatabaseInfo(BaseModel):
    """Identity of the database a payload was collected from.

    Attributes:
        database_type: Database engine (postgres, mysql, ...), serialized as "type"
        version: Server version string reported by the database
        provider: Detected hosting provider (generic, rds, aurora, ...)
        provider_metadata: Provider-specific key/value details
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    database_type: str = Field(alias="type")
    version: str | None = None
    provider: str = "generic"
    provider_metadata: dict[str, str] = Field(default_factory=dict)


class QueryStats(BaseModel):
    """Per-statement execution statistics."""

    model_config = ConfigDict(frozen=True)

    query_hash: str | None = None
    query: str | None = None
    calls: int | None = counter_field("Number of executions", default=None)
    total_time_ms: float | None = counter_field("Total execution time", default=None)
    mean_time_ms: float | None = gauge_field("Mean execution time", default=None)
    rows: int | None = counter_field("Total rows returned", default=None)
    shared_blks_hit: int | None = counter_field("Shared buffer hits", default=None)
    shared_blks_read: int | None = counter_field("Shared blocks read", default=None)


class TableStats(BaseModel):
    """Per-table access and maintenance statistics."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_name: str = Field(alias="schema")
    table: str
    seq_scan: int | None = counter_field("Sequential scans", default=None)
    seq_tup_read: int | None = counter_field("Rows fetched by seq scans", default=None)
    idx_scan: int | None = counter_field("Index scans", default=None)
    idx_tup_fetch: int | None = counter_field("Rows fetched by index scans", default=None)
    n_tup_ins: int | None = counter_field("Rows inserted", default=None)
    n_tup_upd: int | None = counter_field("Rows updated", default=None)
    n_tup_del: int | None = counter_field("Rows deleted", default=None)
    n_live_tup: int | None = gauge_field("Live rows", default=None)
    n_dead_tup: int | None = gauge_field("Dead rows", default=None)
    last_vacuum: datetime | None = None
    last_autovacuum: datetime | None = None
    last_analyze: datetime | None = None
    last_autoanalyze: datetime | None = None


class IndexStats(BaseModel):
    """Per-index usage statistics."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_name: str = Field(alias="schema")
    table: str
    index: str
    idx_scan: int | None = counter_field("Index scans", default=None)
    idx_tup_read: int | None = counter_field("Index entries read", default=None)
    idx_tup_fetch: int | None = counter_field("Table rows fetched", default=None)


class ColumnMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    nullable: bool
    default: str | None = None
    position: int


class TableMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_name: str = Field(alias="schema")
    name: str
    columns: list[ColumnMetadata] = Field(default_factory=list)
    row_count_estimate: int | None = gauge_field("Estimated row count", default=None)
    size_bytes: int | None = gauge_field("Table size in bytes", default=None)


class IndexMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_name: str = Field(alias="schema")
    table: str
    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    size_bytes: int | None = gauge_field("Index size in bytes", default=None)


class SchemaMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    tables: list[TableMetadata] = Field(default_factory=list)
    indexes: list[IndexMetadata] = Field(default_factory=list)


class Payload(BaseModel):
    """Metrics snapshot produced by one collection cycle.

    A payload is immutable once built. The ``with_*`` helpers return new
    copies instead of modifying the instance.

    Attributes:
        agent_version: Version of the agent that produced the payload
        timestamp: When the payload was created (UTC)
        instance_id: Stable id derived from the connection identity
        database: Database identity
        query_stats: Statement statistics, if collected
        table_stats: Table statistics, if collected
        index_stats: Index statistics, if collected
        settings: Server configuration settings, if collected
        schema_metadata: Tables/columns/indexes, serialized as "schema"
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    agent_version: str = __version__
    timestamp: datetime = Field(default_factory=_utcnow)
    instance_id: str = ""
    database: DatabaseInfo
    query_stats: list[QueryStats] | None = None
    table_stats: list[TableStats] | None = None
    index_stats: list[IndexStats] | None = None
    settings: dict[str, str] | None = None
    schema_metadata: SchemaMetadata | None = Field(default=None, alias="schema")

    @classmethod
    def create(
        cls,
        database: DatabaseInfo,
        connection_info: str,
        **groups: Any,
    ) -> "Payload":
        """Build a payload with an instance id derived from connection info.

        Args:
            database: Database identity
            connection_info: Connection identity used for the instance id
            **groups: Optional metric groups (query_stats, table_stats, ...)

        Returns:
            A new Payload
        """
        return cls(
            database=database,
            instance_id=generate_instance_id(connection_info),
            **groups,
        )

    def with_instance_id(self, connection_info: str) -> "Payload":
        return self.model_copy(update={"instance_id": generate_instance_id(connection_info)})

    def with_query_stats(self, stats: list[QueryStats]) -> "Payload":
        return self.model_copy(update={"query_stats": list(stats)})

    def with_table_stats(self, stats: list[TableStats]) -> "Payload":
        return self.model_copy(update={"table_stats": list(stats)})

    def with_index_stats(self, stats: list[IndexStats]) -> "Payload":
        return self.model_copy(update={"index_stats": list(stats)})

    def with_settings(self, settings: dict[str, str]) -> "Payload":
        return self.model_copy(update={"settings": dict(settings)})

    def with_schema(self, schema: SchemaMetadata) -> "Payload":
        return self.model_copy(update={"schema_metadata": schema})

    def collected_groups(self) -> list[str]:
        """Return the names of metric groups present in this payload."""
        return [name for name in METRIC_GROUPS if getattr(self, name) is not None]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict using wire field names.

        Unset metric groups are dropped; nullable fields inside groups are
        kept as null.
        """
        exclude = {name for name in METRIC_GROUPS if getattr(self, name) is None}
        data = self.model_dump(mode="json", by_alias=True, exclude=exclude)
        if not self.database.provider_metadata:
            data["database"].pop("provider_metadata", None)
        return data
