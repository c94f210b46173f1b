"""Logging configuration for the dbpulse agent.

Two output formats are supported:
- json: one JSON object per line on stderr, for log collectors
- pretty: colored, human-readable output via rich

Libraries that log every request (aiohttp, asyncio) are held at WARNING
unless verbose output was requested.
"""

from datetime import UTC, datetime
import json
import logging
from pathlib import Path
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from dbpulse.config.loader import LoggingConfig

NOISY_LOGGERS = ("aiohttp", "asyncio")

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class JsonLogFormatter(logging.Formatter):
    """Format records as single-line JSON objects.

    Fields: timestamp (ISO 8601 UTC), level, logger, message, plus any
    ``extra=`` values and the formatted exception if present.
    """

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                document[key] = value

        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)

        return json.dumps(document, default=str, ensure_ascii=False)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    verbose: bool = False,
    json_logs: bool = False,
) -> None:
    """Configure the root logger.

    Replaces any handlers already installed on the root logger, so calling
    this more than once is safe.

    Args:
        config: The logging section of the agent configuration
        verbose: Force DEBUG level and let library loggers through
        json_logs: Force JSON output regardless of config
    """
    config = config or LoggingConfig()
    level = logging.DEBUG if verbose else logging.getLevelName(config.level)
    use_json = json_logs or config.format == "json"

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()

    handler: logging.Handler
    if use_json:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonLogFormatter())
    else:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=verbose,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    if config.file:
        path = Path(config.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(JsonLogFormatter())
        root.addHandler(file_handler)

    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
