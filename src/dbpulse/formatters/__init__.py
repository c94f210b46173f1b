"""Formatters package for dbpulse.

- PayloadFormatter: JSON output for upload bodies and dry-run inspection
"""

from dbpulse.formatters.json_formatter import PayloadFormatter

__all__ = [
    "PayloadFormatter",
]
