"""Default configuration values for dbpulse.

This module defines the default configuration used when no config file exists
or when config values are not specified. All configuration options are documented
here for reference.

Environment Variables:
    DBPULSE_CONFIG_PATH: Override default config file path
    DBPULSE_API_KEY: Ingestion API key (ingest.api_key)
    DBPULSE_ENDPOINT: Ingestion URL (ingest.endpoint)
    DATABASE_URL: Connection URL of the monitored database (database.url)
    COLLECTION_INTERVAL: Interval such as 60, 60s, 5m or 1h (collection.interval)
    LOG_LEVEL: trace, debug, info, warn or error (logging.level)
    LOG_FORMAT: json or pretty (logging.format)
    Any config value can reference environment variables using ${VAR} syntax

Config File Locations (in order of precedence):
    1. Path specified via --config CLI flag
    2. Path specified via DBPULSE_CONFIG_PATH environment variable
    3. ~/.config/dbpulse/config.yaml (XDG default)
    4. /etc/dbpulse/config.yaml (system-wide)

With no config file at all, the defaults below pick everything up from the
environment variables listed above.
"""

from typing import Any

from dbpulse.uploader.client import DEFAULT_ENDPOINT

# Metric groups collected when the config does not list any
DEFAULT_METRICS = ["query_stats", "table_stats", "index_stats", "settings", "schema_metadata"]

# Default configuration dictionary
DEFAULT_CONFIG: dict[str, Any] = {
    # Ingestion endpoint settings
    "ingest": {
        "api_key": "${DBPULSE_API_KEY:-}",
        "endpoint": "${DBPULSE_ENDPOINT:-" + DEFAULT_ENDPOINT + "}",
        "timeout": 30,  # Per-request timeout in seconds
        "retries": 3,  # Retries after the first attempt
        "compress": True,  # Accept gzip-compressed responses
    },
    # Monitored database
    "database": {
        "url": "${DATABASE_URL:-}",
        "type": None,  # postgres, mysql, mongodb; detected from the URL if unset
        "provider": "auto",  # auto, generic, rds, aurora, supabase, neon
        "collector": None,  # "package.module:ClassName" to bypass entry point lookup
        "pool": {
            "min_connections": 1,
            "max_connections": 5,
            "acquire_timeout": 30,  # Seconds
        },
    },
    # Collection schedule
    "collection": {
        "interval": "${COLLECTION_INTERVAL:-60}",  # Seconds, or 60s / 5m / 1h
        "jitter": 5.0,  # Max random startup delay in seconds
        "metrics": list(DEFAULT_METRICS),
    },
    # Logging configuration
    "logging": {
        "level": "${LOG_LEVEL:-info}",  # trace, debug, info, warn, error
        "format": "${LOG_FORMAT:-json}",  # json (one object per line) or pretty
        "file": None,  # Optional log file path
    },
    # Error reporting
    "sentry": {
        "enabled": False,
        "dsn": None,  # Falls back to SENTRY_DSN
        "environment": None,  # Falls back to DBPULSE_ENV, then "production"
        "traces_sample_rate": 0.0,
    },
}
