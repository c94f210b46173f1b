"""Exceptions raised by the uploader.

Which of these are retried is decided in Uploader.upload(): authentication
and serialization failures are final, everything else is retried until the
attempt budget runs out.
"""


class UploaderError(Exception):
    """Base exception for upload failures."""


class RequestError(UploaderError):
    """Transport-level failure (DNS, connect, TLS, timeout, reset)."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Request failed: {message}")


class ServerError(UploaderError):
    """The endpoint answered with an unexpected status.

    Attributes:
        status: HTTP status code
        message: Response body text (truncated)
    """

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"Server returned error {status}: {message}")


class RateLimited(UploaderError):
    """The endpoint answered 429.

    Attributes:
        retry_after: Server-requested delay in seconds, if given
    """

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        if retry_after is None:
            super().__init__("Rate limited")
        else:
            super().__init__(f"Rate limited, retry after {retry_after:g}s")


class AuthError(UploaderError):
    """The API key was rejected (401/403)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class SerializationError(UploaderError):
    """The payload could not be turned into JSON."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Payload serialization failed: {message}")


class MaxRetriesExceeded(UploaderError):
    """All attempts were used without recording a specific error."""

    def __init__(self) -> None:
        super().__init__("Max retries exceeded")
