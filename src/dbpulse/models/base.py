"""Shared helpers for the payload models.

Statistics views mix cumulative counters with point-in-time values. Fields
declared with counter_field() or gauge_field() record which one they are in
their JSON schema, so the ingestion side (and get_metric_type()) can tell
them apart without a separate lookup table.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

METRIC_TYPE_KEY = "metric_type"


class MetricType(str, Enum):
    """How a numeric statistic behaves over time.

    COUNTER values only grow until the database resets its statistics
    (calls, scans, tuples inserted); consumers diff two payloads to get a
    rate. GAUGE values are read as-is (live tuples, mean time, sizes).
    """

    COUNTER = "counter"
    GAUGE = "gauge"


def _tagged_field(metric_type: MetricType, description: str, kwargs: dict[str, Any]) -> Any:
    schema_extra = kwargs.pop("json_schema_extra", None)
    tagged = dict(schema_extra) if isinstance(schema_extra, dict) else {}
    tagged[METRIC_TYPE_KEY] = metric_type.value
    return Field(description=description, json_schema_extra=tagged, **kwargs)


def counter_field(description: str = "", **kwargs: Any) -> Any:
    """Declare a cumulative statistic.

    Extra keyword arguments go to pydantic.Field unchanged.

    Example:
        calls: int | None = counter_field("Number of executions", default=None)
    """
    return _tagged_field(MetricType.COUNTER, description, kwargs)


def gauge_field(description: str = "", **kwargs: Any) -> Any:
    """Declare a point-in-time statistic."""
    return _tagged_field(MetricType.GAUGE, description, kwargs)


def get_metric_type(model: type[BaseModel], field_name: str) -> MetricType | None:
    """Look up how a model field was declared.

    Returns:
        The MetricType, or None for unknown or untagged fields
    """
    info = model.model_fields.get(field_name)
    if info is None or not isinstance(info.json_schema_extra, dict):
        return None

    value = info.json_schema_extra.get(METRIC_TYPE_KEY)
    return MetricType(value) if value in {m.value for m in MetricType} else None


def get_all_metric_types(model: type[BaseModel]) -> dict[str, MetricType]:
    """Map every tagged field of a model to its MetricType."""
    tagged = ((name, get_metric_type(model, name)) for name in model.model_fields)
    return {name: metric_type for name, metric_type in tagged if metric_type is not None}


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)
