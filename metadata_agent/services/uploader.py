"""Delivery of payloads to the ingestion endpoint."""

import asyncio
import email.utils
import gzip
import logging
import ssl
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, Tuple

import httpx

from ..config.models import CloudConfig
from ..errors import DeliveryFailedError, RejectedError, UploadError
from ..payload.models import AGENT_VERSION, Payload
from .retry_handler import RetryPolicy, RetryState


class TransientUploadError(UploadError):
    """Failure worth retrying (timeout, network error, 5xx, 429)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None
    ):
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


def tls_context() -> ssl.SSLContext:
    """Certificate-verifying context that refuses anything below TLS 1.2."""
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


def is_tls_failure(error: BaseException) -> bool:
    """True if an ssl.SSLError appears anywhere in the exception chain."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        if isinstance(current, ssl.SSLError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header (delta-seconds or HTTP-date).

    Returns:
        Seconds to wait, or None if the header is absent or unparsable
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


class Uploader:
    """
    Sends payloads to the ingestion endpoint.

    One POST per attempt, the whole payload per request. Transient failures
    are retried with exponential backoff and jitter; 4xx (except 429), TLS
    failures and unserializable payloads are rejected immediately.
    """

    def __init__(
        self,
        config: CloudConfig,
        logger: Optional[logging.Logger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize uploader.

        Args:
            config: Endpoint, credentials and retry limits
            logger: Optional logger instance
            transport: Custom httpx transport (tests use httpx.MockTransport)
            sleep: Coroutine used for backoff waits
        """
        self.config = config
        self.logger = (logger or logging.getLogger(__name__)).getChild(self.__class__.__name__)
        self.policy = RetryPolicy(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_secs,
            max_delay=config.max_delay_secs,
            max_total_delay=config.max_retry_duration_secs,
        )
        self._sleep = sleep

        if config.endpoint.startswith("http://"):
            self.logger.warning("Ingestion endpoint is not using TLS")

        client_kwargs = {
            "timeout": httpx.Timeout(config.timeout_secs),
            "headers": {
                "Authorization": f"Bearer {config.api_key}",
                "User-Agent": f"metadata-agent/{AGENT_VERSION}",
                "X-Agent-Version": AGENT_VERSION,
            },
            "follow_redirects": False,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            client_kwargs["verify"] = tls_context()
        self.client = httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self) -> "Uploader":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    def _encode(self, payload: Payload) -> Tuple[bytes, Dict[str, str]]:
        """Serialize (and optionally gzip) the payload once per send."""
        try:
            body = payload.to_json().encode("utf-8")
        except (TypeError, ValueError) as e:
            raise RejectedError(f"Payload serialization failed: {e}") from e

        headers = {"Content-Type": "application/json"}
        if self.config.compress:
            body = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"
        return body, headers

    async def send(self, payload: Payload) -> None:
        """
        Deliver one payload.

        Args:
            payload: Snapshot to upload

        Raises:
            RejectedError: Non-retryable failure, after exactly one attempt
            DeliveryFailedError: Transient failures exhausted the retry budget
        """
        body, headers = self._encode(payload)
        state = RetryState()

        self.logger.info(
            "Uploading metrics",
            extra={"endpoint": self.config.endpoint, "payload_size": len(body)}
        )

        while True:
            state.attempt += 1
            started = time.monotonic()
            try:
                await self._post(body, headers)
            except RejectedError as e:
                self.logger.error(
                    f"Upload rejected: {e}",
                    extra={"attempt": state.attempt, "status_code": e.status_code}
                )
                raise
            except TransientUploadError as e:
                state.elapsed += time.monotonic() - started
                state.last_error = e
                delay = self.policy.next_delay(state, retry_after=e.retry_after)
                if delay is None:
                    self.logger.error(f"All {state.attempt} upload attempt(s) failed: {e}")
                    raise DeliveryFailedError(state.attempt, e) from e

                self.logger.warning(
                    f"Attempt {state.attempt}/{self.policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s...",
                    extra={"attempt": state.attempt, "status_code": e.status_code}
                )
                await self._sleep(delay)
                state.elapsed += delay
            else:
                self.logger.info(
                    "Metrics uploaded successfully",
                    extra={"attempts": state.attempt}
                )
                return

    async def _post(self, body: bytes, headers: Dict[str, str]) -> None:
        """One round trip; classify the outcome."""
        try:
            response = await self.client.post(self.config.endpoint, content=body, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientUploadError(f"Request timed out: {e}") from e
        except (httpx.UnsupportedProtocol, httpx.LocalProtocolError) as e:
            raise RejectedError(f"Invalid request: {e}") from e
        except httpx.TransportError as e:
            if is_tls_failure(e):
                raise RejectedError(f"TLS failure: {e}") from e
            raise TransientUploadError(f"Network error: {e}") from e

        status = response.status_code
        self.logger.debug(f"Received HTTP {status} from ingestion endpoint")

        if 200 <= status < 300:
            return
        if status == 429:
            raise TransientUploadError(
                "Rate limited (HTTP 429)",
                status_code=status,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 500:
            raise TransientUploadError(
                f"Server error (HTTP {status}): {response.text[:200]}",
                status_code=status,
            )
        raise RejectedError(
            f"Server rejected payload (HTTP {status}): {response.text[:200]}",
            status_code=status,
        )

    def health_url(self) -> str:
        """Health endpoint next to the ingest endpoint."""
        endpoint = self.config.endpoint.rstrip("/")
        if endpoint.endswith("/ingest"):
            endpoint = endpoint[: -len("/ingest")]
        return f"{endpoint}/health"

    async def test_connection(self) -> None:
        """
        Check reachability and credentials against the health endpoint.

        Raises:
            RejectedError: Credentials refused or unexpected status
            DeliveryFailedError: Endpoint unreachable
        """
        try:
            response = await self.client.get(self.health_url())
        except httpx.HTTPError as e:
            raise DeliveryFailedError(1, e) from e

        if response.is_success:
            self.logger.info("Connection to ingestion endpoint verified")
            return
        if response.status_code in (401, 403):
            raise RejectedError("Invalid API key", status_code=response.status_code)
        raise RejectedError(
            f"Health check failed (HTTP {response.status_code})",
            status_code=response.status_code,
        )
