"""Configuration for the dbpulse agent.

Settings come from three layers, later ones winning: the built-in defaults
(which read DBPULSE_API_KEY, DATABASE_URL and friends), an optional YAML
file, and overrides from command line flags. ${VAR} placeholders are
expanded after merging, then the result is validated by the pydantic models
below. Validation problems are reported as ConfigError subclasses whose
text names the offending key and, where possible, how to fix it.
"""

from difflib import get_close_matches
import os
from pathlib import Path
import re
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_validator,
)
import yaml

from dbpulse.config.defaults import DEFAULT_CONFIG, DEFAULT_METRICS
from dbpulse.uploader import UploaderConfig


class ConfigError(Exception):
    """A configuration problem the user has to fix.

    Attributes:
        message: What is wrong, naming the key where known
        file_path: Config file the problem was found in
        line_number: 1-based line of the problem, for syntax errors
        column: 1-based column, used to draw a pointer under context_lines
        suggestion: How to fix it
        context_lines: Source lines shown under the message
    """

    def __init__(
        self,
        message: str,
        *,
        file_path: str | None = None,
        line_number: int | None = None,
        column: int | None = None,
        suggestion: str | None = None,
        context_lines: list[str] | None = None,
    ) -> None:
        self.message = message
        self.file_path = file_path
        self.line_number = line_number
        self.column = column
        self.suggestion = suggestion
        self.context_lines = context_lines
        super().__init__(self.render())

    def _header(self) -> str:
        if not self.file_path:
            return "Configuration error:"
        where = self.file_path
        if self.line_number:
            where = f"{where} line {self.line_number}"
        return f"Error in {where}:"

    def render(self) -> str:
        """Build the multi-line text shown to the user."""
        out = [self._header(), f"  {self.message}"]

        if self.context_lines and self.column:
            out.append("")
            out += [f"    {text}" for text in self.context_lines]
            # context is indented by four; column is 1-based
            out.append(" " * (self.column + 3) + "^")

        if self.suggestion:
            out += ["", f"  Suggestion: {self.suggestion}"]

        return "\n".join(out)


class ConfigSyntaxError(ConfigError):
    """The config file is not valid YAML."""


class ConfigValidationError(ConfigError):
    """A setting has a missing or unacceptable value."""


class ConfigKeyError(ConfigError):
    """The config file uses a key no section knows about."""

# Supported databases and the URL schemes that identify them
DATABASE_URL_SCHEMES: dict[str, tuple[str, ...]] = {
    "postgres": ("postgres://", "postgresql://"),
    "mysql": ("mysql://", "mariadb://"),
    "mongodb": ("mongodb://", "mongodb+srv://"),
}

# Legacy metric names accepted in collection.metrics
METRIC_ALIASES = {
    "pg_stat_statements": "query_stats",
    "pg_stat_user_tables": "table_stats",
    "pg_stat_user_indexes": "index_stats",
    "pg_settings": "settings",
}

LOG_LEVEL_ALIASES = {
    "trace": "DEBUG",
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
}

# Environment variables that can supply a required value
ENV_HINTS = {
    "ingest.api_key": "DBPULSE_API_KEY",
    "ingest.endpoint": "DBPULSE_ENDPOINT",
    "database.url": "DATABASE_URL",
    "collection.interval": "COLLECTION_INTERVAL",
    "logging.level": "LOG_LEVEL",
    "logging.format": "LOG_FORMAT",
}

MIN_INTERVAL = 10

SYSTEM_CONFIG_PATH = Path("/etc/dbpulse/config.yaml")

# Environment variable pattern: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smh]?)\s*$")
DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


def detect_database_type(url: str) -> str:
    """Detect the database type from a connection URL scheme.

    Args:
        url: Database connection URL

    Returns:
        One of "postgres", "mysql" or "mongodb"

    Raises:
        ValueError: If the scheme is not supported
    """
    for db_type, schemes in DATABASE_URL_SCHEMES.items():
        if url.startswith(schemes):
            return db_type
    supported = ", ".join(s for schemes in DATABASE_URL_SCHEMES.values() for s in schemes)
    raise ValueError(
        f"Unable to detect database type from URL. Supported schemes: {supported}"
    )


def parse_duration(value: str) -> int:
    """Parse a duration such as "60", "60s", "5m" or "1h" into seconds.

    Raises:
        ValueError: If the value is not a whole number with an optional unit
    """
    match = DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid duration '{value}' (use e.g. 60, 60s, 5m, 1h)")
    number, unit = match.groups()
    return int(number) * DURATION_UNITS[unit]


# Settings models


class PoolConfig(BaseModel):
    """Connection pool settings handed to the collector."""

    model_config = ConfigDict(extra="forbid")

    min_connections: int = Field(default=1, ge=0)
    max_connections: int = Field(default=5, ge=1)
    acquire_timeout: float = Field(default=30, gt=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "PoolConfig":
        """Ensure the pool can hold its minimum."""
        if self.min_connections > self.max_connections:
            raise ValueError("min_connections cannot exceed max_connections")
        return self


class IngestConfig(BaseModel):
    """Ingestion endpoint settings."""

    model_config = ConfigDict(extra="forbid")

    api_key: str = ""
    endpoint: str
    timeout: float = Field(default=30, gt=0, le=600)
    retries: int = Field(default=3, ge=0, le=10)
    compress: bool = True

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Reject an empty API key."""
        if not v.strip():
            raise ValueError("API key cannot be empty")
        return v

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Require an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Endpoint must be an http:// or https:// URL")
        return v

    def to_uploader_config(self) -> UploaderConfig:
        """Build the uploader settings for this endpoint."""
        return UploaderConfig(
            endpoint=self.endpoint,
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=self.retries,
            compress=self.compress,
        )


class DatabaseConfig(BaseModel):
    """Monitored database settings."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    url: str = ""
    database_type: Literal["postgres", "mysql", "mongodb"] | None = Field(
        default=None, alias="type"
    )
    provider: Literal["auto", "generic", "rds", "aurora", "supabase", "neon"] = "auto"
    collector: str | None = None
    pool: PoolConfig = Field(default_factory=PoolConfig)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require a URL with a supported scheme."""
        if not v.strip():
            raise ValueError("Database URL cannot be empty")
        detect_database_type(v)
        return v

    @field_validator("collector")
    @classmethod
    def validate_collector(cls, v: str | None) -> str | None:
        """Require "module:ClassName" form."""
        if v is not None:
            module, sep, attr = v.partition(":")
            if not sep or not module or not attr:
                raise ValueError("Collector must be given as 'package.module:ClassName'")
        return v

    @property
    def resolved_type(self) -> str:
        """Configured database type, or the one detected from the URL."""
        return self.database_type or detect_database_type(self.url)


class CollectionConfig(BaseModel):
    """Collection schedule settings."""

    model_config = ConfigDict(extra="forbid")

    interval: int = Field(default=60, ge=MIN_INTERVAL)
    jitter: float = Field(default=5.0, ge=0, le=60)
    metrics: list[Literal[
        "query_stats", "table_stats", "index_stats", "settings", "schema_metadata"
    ]] = Field(default_factory=lambda: list(DEFAULT_METRICS))

    @field_validator("interval", mode="before")
    @classmethod
    def parse_interval(cls, v: Any) -> Any:
        """Accept durations like "60s", "5m" and "1h"."""
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @field_validator("metrics", mode="before")
    @classmethod
    def resolve_metric_aliases(cls, v: Any) -> Any:
        """Map legacy metric names to their current names."""
        if isinstance(v, list):
            return [METRIC_ALIASES.get(item, item) if isinstance(item, str) else item for item in v]
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "pretty"] = "json"
    file: str | None = None

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        """Accept lowercase and short level names (warn, trace)."""
        if isinstance(v, str):
            return LOG_LEVEL_ALIASES.get(v.strip().lower(), v)
        return v

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class SentryConfig(BaseModel):
    """Error reporting configuration."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    dsn: str | None = None
    environment: str | None = None
    traces_sample_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class Config(BaseModel):
    """Complete agent settings, one attribute per config file section."""

    model_config = ConfigDict(extra="forbid")

    ingest: IngestConfig
    database: DatabaseConfig
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sentry: SentryConfig = Field(default_factory=SentryConfig)

    _source: Path | None = PrivateAttr(default=None)

    @property
    def source(self) -> Path | None:
        """Config file this configuration was read from (None if env-only)."""
        return self._source

    @property
    def database_type(self) -> str:
        return self.database.resolved_type


# Model for each section path, used to suggest spellings of unknown keys
SECTION_MODELS: dict[tuple[str, ...], type[BaseModel]] = {
    (): Config,
    ("ingest",): IngestConfig,
    ("database",): DatabaseConfig,
    ("database", "pool"): PoolConfig,
    ("collection",): CollectionConfig,
    ("logging",): LoggingConfig,
    ("sentry",): SentryConfig,
}


def _describe(value: Any) -> str:
    """Name the YAML type of a value for error messages."""
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'string "{value}"'
    for kind, label in ((bool, "boolean"), (int, "integer"), (float, "number"),
                        (list, "list"), (dict, "object")):
        if isinstance(value, kind):
            return label
    return type(value).__name__


def _lookup(data: Any, loc: tuple[Any, ...]) -> Any:
    """Follow a pydantic error location into the raw config data."""
    for part in loc:
        if isinstance(data, dict):
            data = data.get(part)
        elif isinstance(data, list) and isinstance(part, int) and part < len(data):
            data = data[part]
        else:
            return None
    return data


def _closest_key(unknown: str, model: type[BaseModel] | None) -> str | None:
    if model is None:
        return None
    candidates = [info.alias or name for name, info in model.model_fields.items()]
    found = get_close_matches(unknown, candidates, n=1, cutoff=0.6)
    return f"Did you mean '{found[0]}'?" if found else None


# error type -> (context key, wording of the bound)
_BOUNDS = {
    "greater_than_equal": ("ge", "at least"),
    "greater_than": ("gt", "greater than"),
    "less_than_equal": ("le", "at most"),
    "less_than": ("lt", "less than"),
}

# error type -> (what was expected, suggestion)
_WRONG_TYPE = {
    "int_parsing": ("a number", "Use a plain number such as 30"),
    "int_from_float": ("a whole number", "Use a plain number such as 30"),
    "float_parsing": ("a number", "Use a plain number such as 30"),
    "string_type": ("text", "Quote the value if YAML reads it as another type"),
    "bool_type": ("true or false", "Use 'true' or 'false'"),
    "bool_parsing": ("true or false", "Use 'true' or 'false'"),
    "list_type": ("a list", "Write it as a list, e.g. [query_stats, settings]"),
}


def _translate_validation_error(
    error: ValidationError,
    config_data: dict[str, Any],
    file_path: str | None = None,
) -> ConfigError:
    """Turn the first pydantic error into a ConfigError naming the key.

    Unknown keys become ConfigKeyError with a spelling suggestion; anything
    else is a ConfigValidationError.
    """
    details = error.errors()
    if not details:
        return ConfigValidationError("Configuration validation failed", file_path=file_path)

    first = details[0]
    loc = tuple(first.get("loc", ()))
    kind = first.get("type", "")
    ctx = first.get("ctx") or {}
    key = ".".join(str(part) for part in loc)
    got = _lookup(config_data, loc)

    if kind == "extra_forbidden":
        section = SECTION_MODELS.get(tuple(str(part) for part in loc[:-1]))
        hint = _closest_key(str(loc[-1]) if loc else "", section)
        return ConfigKeyError(
            f"Unknown configuration key '{key}'",
            file_path=file_path,
            suggestion=hint or "Remove the key or check its spelling and section",
        )

    suggestion: str | None = None
    if kind == "missing":
        message = f"Missing required configuration section '{key}'"
    elif kind == "literal_error":
        message = f"Invalid value for '{key}': got {_describe(got)}"
        suggestion = f"Expected one of: {ctx.get('expected', '')}"
    elif kind in _BOUNDS:
        bound, wording = _BOUNDS[kind]
        message = f"Value for '{key}' is out of range: {got}"
        suggestion = f"Value must be {wording} {ctx.get(bound)}"
    elif kind in _WRONG_TYPE:
        expected, suggestion = _WRONG_TYPE[kind]
        message = f"Expected {expected} for '{key}': got {_describe(got)}"
    else:
        reason = ctx.get("error", first.get("msg", "Invalid value"))
        message = f"Invalid value for '{key}': {reason}"

    env_var = ENV_HINTS.get(key)
    if suggestion is None and env_var:
        suggestion = f"Set '{key}' in the config file or the {env_var} environment variable"

    return ConfigValidationError(message, file_path=file_path, suggestion=suggestion)


# substring of the lowercased PyYAML message -> fix to suggest
_YAML_HINTS = (
    ("could not find expected ':'", "A key is missing its colon; write 'key: value'"),
    ("cannot start any token", "Indent with spaces; tabs are not allowed in YAML"),
    ("mapping values are not allowed", "Nested keys must be indented under their section"),
    ("found undefined alias", "Define each &anchor before using it as *alias"),
    ("expected ',' or ']'", "A [list] is missing its closing bracket"),
)


def _translate_yaml_error(
    error: yaml.YAMLError,
    file_path: str | None = None,
    content: str | None = None,
) -> ConfigSyntaxError:
    """Turn a PyYAML error into a ConfigSyntaxError pointing at the line."""
    mark = getattr(error, "problem_mark", None)
    line_number = column = None
    context_lines = None
    if mark is not None:
        line_number, column = mark.line + 1, mark.column + 1
        source = (content or "").splitlines()
        if mark.line < len(source):
            context_lines = [source[mark.line]]

    text = str(error).lower()
    suggestion = next((fix for needle, fix in _YAML_HINTS if needle in text), None)

    problem = getattr(error, "problem", None)
    return ConfigSyntaxError(
        f"YAML syntax error: {problem}" if problem else "Invalid YAML syntax",
        file_path=file_path,
        line_number=line_number,
        column=column,
        context_lines=context_lines,
        suggestion=suggestion,
    )


def _substitute(match: re.Match[str]) -> str:
    name, fallback = match.group(1), match.group(2)
    if name in os.environ:
        return os.environ[name]
    return match.group(0) if fallback is None else fallback


def expand_env_vars(value: Any) -> Any:
    """Replace ${VAR} and ${VAR:-default} in every string of a config tree.

    A placeholder for an unset variable with no default stays as written.
    """
    if isinstance(value, str):
        return ENV_VAR_PATTERN.sub(_substitute, value)
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return base updated with override, merging nested mappings.

    Lists and scalars in override replace the base value. Neither input is
    modified.
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = deep_merge(current, value)
        merged[key] = value
    return merged


def get_config_path(custom_path: str | None = None) -> Path | None:
    """Find the config file to read, if any.

    An explicit --config path must exist. Otherwise DBPULSE_CONFIG_PATH is
    used when it points at a file (a dangling value means no file), then
    ~/.config/dbpulse/config.yaml, then SYSTEM_CONFIG_PATH.

    Raises:
        FileNotFoundError: If custom_path does not exist
    """
    if custom_path:
        path = Path(custom_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {custom_path}")
        return path

    from_env = os.environ.get("DBPULSE_CONFIG_PATH")
    if from_env:
        path = Path(from_env).expanduser()
        return path if path.exists() else None

    user_path = Path.home() / ".config" / "dbpulse" / "config.yaml"
    return next((p for p in (user_path, SYSTEM_CONFIG_PATH) if p.exists()), None)


def _read_config_file(path: Path) -> dict[str, Any]:
    text = path.read_text()
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise _translate_yaml_error(e, str(path), text) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"Expected a mapping at the top level, got {_describe(data)}",
            file_path=str(path),
            suggestion="Start the file with sections such as 'ingest:' and 'database:'",
        )
    return data


def load_config(
    config_path: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> Config:
    """Build the agent configuration.

    Args:
        config_path: Value of --config, if given
        cli_overrides: Nested settings from command line flags

    Returns:
        The validated Config, with source set to the file that was read

    Raises:
        FileNotFoundError: If config_path does not exist
        ConfigError: If the file or the merged settings are invalid
    """
    path = get_config_path(config_path)

    layers = [DEFAULT_CONFIG]
    if path is not None:
        layers.append(_read_config_file(path))
    if cli_overrides:
        layers.append(cli_overrides)

    merged: dict[str, Any] = {}
    for layer in layers:
        merged = deep_merge(merged, layer)
    merged = expand_env_vars(merged)

    try:
        config = Config(**merged)
    except ValidationError as e:
        raise _translate_validation_error(e, merged, str(path) if path else None) from e

    config._source = path
    return config
