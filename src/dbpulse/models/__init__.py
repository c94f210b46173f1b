"""Pydantic data models for dbpulse.

This module provides the payload schema shared by collectors and the uploader:
- Payload: Metrics snapshot produced by one collection cycle
- DatabaseInfo: Identity of the monitored database
- QueryStats, TableStats, IndexStats: Statistics groups
- SchemaMetadata and friends: Schema description
- MetricType, counter_field, gauge_field: Metric type annotations
"""

from dbpulse.models.base import (
    MetricType,
    counter_field,
    gauge_field,
    get_all_metric_types,
    get_metric_type,
)
from dbpulse.models.payload import (
    METRIC_GROUPS,
    ColumnMetadata,
    DatabaseInfo,
    IndexMetadata,
    IndexStats,
    Payload,
    QueryStats,
    SchemaMetadata,
    TableMetadata,
    TableStats,
    generate_instance_id,
)

__all__ = [
    # Payload
    "Payload",
    "DatabaseInfo",
    "QueryStats",
    "TableStats",
    "IndexStats",
    "SchemaMetadata",
    "TableMetadata",
    "ColumnMetadata",
    "IndexMetadata",
    "METRIC_GROUPS",
    "generate_instance_id",
    # Metric types
    "MetricType",
    "counter_field",
    "gauge_field",
    "get_metric_type",
    "get_all_metric_types",
]
