"""HTTP uploader for metric payloads.

This module delivers payloads to the ingestion endpoint with:
- Bounded retry with exponential backoff
- Immediate failure on rejected credentials and unserializable payloads
- Server-directed delays for rate-limited responses (Retry-After)
- Optional gzip response compression (Accept-Encoding)
- A one-shot health probe for diagnostics
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from dbpulse import __version__
from dbpulse.formatters import PayloadFormatter
from dbpulse.models.payload import Payload
from dbpulse.uploader.errors import (
    AuthError,
    MaxRetriesExceeded,
    RateLimited,
    RequestError,
    SerializationError,
    ServerError,
    UploaderError,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.datapace.ai/v1/ingest"

# Longest response body kept in ServerError messages
MAX_ERROR_BODY = 1000

SUCCESS_STATUSES = frozenset({200, 201, 202})


class UploaderConfig(BaseModel):
    """Uploader settings. Immutable once constructed.

    Attributes:
        endpoint: Ingestion URL payloads are POSTed to
        api_key: Bearer credential
        timeout: Per-request time limit in seconds
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        compress: Ask the endpoint for gzip-compressed responses
        retry_base_delay: Delay before the first retry in seconds; doubles each retry
    """

    model_config = ConfigDict(frozen=True)

    endpoint: str = DEFAULT_ENDPOINT
    api_key: str
    timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    compress: bool = True
    retry_base_delay: float = Field(default=1.0, ge=0)

    @property
    def health_url(self) -> str:
        """URL of the health probe derived from the ingestion endpoint."""
        base = self.endpoint.rstrip("/").removesuffix("/ingest")
        return f"{base}/health"


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header expressed in whole seconds.

    Args:
        value: Raw header value

    Returns:
        Delay in seconds, or None if missing or not a non-negative integer
    """
    if value is None:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return float(seconds)


class Uploader:
    """Sends payloads to the ingestion endpoint.

    One uploader owns one aiohttp session, created on first use. Use it as
    an async context manager, or call close() when done.

    Example:
        async with Uploader(UploaderConfig(api_key="...")) as uploader:
            await uploader.test_connection()
            await uploader.upload(payload)
    """

    def __init__(
        self,
        config: UploaderConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            config: Uploader settings
            session: Optional externally managed session (not closed by close())
        """
        self._config = config
        self._session = session
        self._owns_session = session is None
        self._formatter = PayloadFormatter(pretty_print=False)

    @property
    def config(self) -> UploaderConfig:
        return self._config

    async def __aenter__(self) -> Uploader:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this uploader created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout),
                headers={"User-Agent": f"dbpulse/{__version__}"},
            )
            self._owns_session = True
        return self._session

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "X-Agent-Version": __version__,
        }

    def _encode(self, payload: Payload) -> tuple[bytes, dict[str, str]]:
        """Serialize a payload to its JSON request body.

        Returns:
            Tuple of (request body, extra headers)

        Raises:
            SerializationError: If the payload cannot be serialized
        """
        try:
            body = self._formatter.serialize(payload)
        except (TypeError, ValueError) as e:
            raise SerializationError(str(e)) from e

        # compress only governs the response; the request body is always JSON
        headers = {
            "Content-Type": "application/json",
            "Accept-Encoding": "gzip" if self._config.compress else "identity",
        }
        return body, headers

    async def _sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)

    async def upload(self, payload: Payload) -> None:
        """Upload a payload, retrying transient failures.

        Makes at most max_retries + 1 requests. The delay before the first
        retry is retry_base_delay and doubles for each further retry, unless
        a rate-limited response supplied its own delay.

        Args:
            payload: The payload to deliver

        Raises:
            SerializationError: Payload could not be serialized (no request made)
            AuthError: Credentials rejected (no further attempts)
            UploaderError: Last error seen once all attempts failed
        """
        body, headers = self._encode(payload)
        total_attempts = self._config.max_retries + 1

        logger.info(
            "Uploading metrics to %s (%d bytes)",
            self._config.endpoint,
            len(body),
        )

        last_error: UploaderError | None = None
        retry_delay = self._config.retry_base_delay

        for attempt in range(total_attempts):
            if attempt > 0:
                logger.warning(
                    "Retrying upload in %.1fs (attempt %d/%d)",
                    retry_delay,
                    attempt + 1,
                    total_attempts,
                )
                await self._sleep(retry_delay)
                retry_delay *= 2

            try:
                await self._send(body, headers)
            except AuthError as e:
                logger.error("Upload rejected, not retrying: %s", e)
                raise
            except UploaderError as e:
                if isinstance(e, RateLimited) and e.retry_after is not None:
                    retry_delay = e.retry_after
                logger.error(
                    "Upload attempt %d/%d failed: %s",
                    attempt + 1,
                    total_attempts,
                    e,
                )
                last_error = e
                continue

            logger.info("Metrics uploaded successfully (attempt %d/%d)", attempt + 1, total_attempts)
            return

        error = last_error if last_error is not None else MaxRetriesExceeded()
        logger.error("Upload failed after %d attempts: %s", total_attempts, error)
        raise error

    async def _send(self, body: bytes, headers: dict[str, str]) -> None:
        """Issue one POST request and interpret the response.

        Raises:
            RequestError: Transport failure or timeout
            AuthError: 401/403
            RateLimited: 429
            ServerError: Any other non-2xx status
        """
        session = await self._get_session()
        request_headers = {**self._auth_headers(), **headers}

        try:
            async with session.post(
                self._config.endpoint,
                data=body,
                headers=request_headers,
            ) as response:
                logger.debug("Received response from server: %d", response.status)
                await self._check_response(response)
        except aiohttp.ClientError as e:
            raise RequestError(str(e) or type(e).__name__) from e
        except TimeoutError as e:
            raise RequestError(f"timed out after {self._config.timeout:g}s") from e

    async def _check_response(self, response: aiohttp.ClientResponse) -> None:
        status = response.status

        if status in SUCCESS_STATUSES:
            return

        if status in (401, 403):
            message = await response.text(errors="replace")
            raise AuthError(message or response.reason or str(status))

        if status == 429:
            raise RateLimited(parse_retry_after(response.headers.get("Retry-After")))

        message = await response.text(errors="replace")
        raise ServerError(status, message[:MAX_ERROR_BODY])

    async def test_connection(self) -> None:
        """Probe the endpoint's health URL once, without retry.

        Raises:
            RequestError: Transport failure or timeout
            AuthError: 401/403
            ServerError: Any other non-2xx status
        """
        url = self._config.health_url
        logger.debug("Testing connection to %s", url)

        session = await self._get_session()
        try:
            async with session.get(url, headers=self._auth_headers()) as response:
                status = response.status
        except aiohttp.ClientError as e:
            raise RequestError(str(e) or type(e).__name__) from e
        except TimeoutError as e:
            raise RequestError(f"timed out after {self._config.timeout:g}s") from e

        if 200 <= status < 300:
            logger.info("Connection to ingestion endpoint verified")
            return
        if status in (401, 403):
            raise AuthError("Invalid API key")
        raise ServerError(status, "Health check failed")
