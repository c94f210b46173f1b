"""JSON formatter for metric payloads.

This module turns a Payload into JSON text using Pydantic's model_dump()
with proper datetime handling.

Features:
- Compact bytes for upload bodies
- Indented text for dry-run inspection
- ISO 8601 timestamps
- Wire field names ("type", "schema") instead of Python attribute names
"""

from __future__ import annotations

import json
from typing import Any

from dbpulse.models.payload import Payload


class PayloadFormatter:
    """JSON formatter for payloads.

    Class Attributes:
        name: Formatter identifier ("json")
        content_type: MIME type of the produced document

    Instance Attributes:
        pretty_print: Whether format() indents its output (default: True)
    """

    name: str = "json"
    content_type: str = "application/json"

    def __init__(self, pretty_print: bool = True) -> None:
        """Initialize the JSON formatter.

        Args:
            pretty_print: If True, format() outputs indented JSON.
                         If False, format() outputs compact single-line JSON.
        """
        self.pretty_print = pretty_print

    def to_document(self, payload: Payload) -> dict[str, Any]:
        """Convert a payload to a JSON-compatible dict.

        Raises:
            TypeError: If the argument is not a Payload
        """
        if not isinstance(payload, Payload):
            raise TypeError(f"Expected Payload, got {type(payload).__name__}")
        return payload.to_dict()

    def format(self, payload: Payload) -> str:
        """Format a payload as human-readable JSON text.

        Args:
            payload: The payload to format

        Returns:
            JSON string representation of the payload.

        Raises:
            TypeError: If the payload cannot be serialized
            ValueError: If the payload contains values JSON cannot represent

        Example:
            >>> formatter = PayloadFormatter(pretty_print=True)
            >>> print(formatter.format(payload))
            {
              "agent_version": "0.1.0",
              "timestamp": "2024-01-15T10:30:00Z",
              "instance_id": "...",
              "database": { ... }
            }
        """
        document = self.to_document(payload)

        if self.pretty_print:
            return json.dumps(document, indent=2, ensure_ascii=False)
        return json.dumps(document, ensure_ascii=False, separators=(",", ":"))

    def serialize(self, payload: Payload) -> bytes:
        """Serialize a payload to compact UTF-8 JSON bytes for upload.

        Raises:
            TypeError: If the payload cannot be serialized
            ValueError: If the payload contains values JSON cannot represent
        """
        document = self.to_document(payload)
        return json.dumps(
            document,
            ensure_ascii=False,
            separators=(",", ":"),
            allow_nan=False,
        ).encode("utf-8")
