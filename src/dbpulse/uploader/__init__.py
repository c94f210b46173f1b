"""Payload delivery for dbpulse.

- Uploader: HTTP client with retry/backoff and a health probe
- UploaderConfig: Immutable uploader settings
- UploaderError and subclasses: Failure taxonomy
"""

from dbpulse.uploader.client import (
    DEFAULT_ENDPOINT,
    Uploader,
    UploaderConfig,
    parse_retry_after,
)
from dbpulse.uploader.errors import (
    AuthError,
    MaxRetriesExceeded,
    RateLimited,
    RequestError,
    SerializationError,
    ServerError,
    UploaderError,
)

__all__ = [
    "DEFAULT_ENDPOINT",
    "Uploader",
    "UploaderConfig",
    "parse_retry_after",
    "UploaderError",
    "RequestError",
    "ServerError",
    "RateLimited",
    "AuthError",
    "SerializationError",
    "MaxRetriesExceeded",
]
