"""Transport primitive used by the fetcher.

The fetcher only needs ``send(method, url, headers, timeout)``; the default
implementation wraps a shared ``httpx.Client``.
"""

from dataclasses import dataclass, field
from typing import Protocol

import httpx
import structlog


logger = structlog.get_logger()


class TransportError(Exception):
    """Raised when no HTTP response could be obtained."""


class TransportTimeoutError(TransportError):
    """Raised when an attempt exceeds its deadline."""


@dataclass(frozen=True)
class TransportResponse:
    """Raw HTTP response.

    Attributes:
        status_code: HTTP status code.
        headers: Response headers with lower-cased names.
        body_text: Decoded response body.
    """

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body_text: str = ""


class Transport(Protocol):
    """Protocol for sending a single HTTP request."""

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        timeout: float,
    ) -> TransportResponse:
        """Send one request.

        Args:
            method: HTTP method.
            url: Fully qualified URL including the query string.
            headers: Request headers.
            timeout: Deadline for the attempt in seconds.

        Returns:
            The received response.

        Raises:
            TransportTimeoutError: If the deadline was exceeded.
            TransportError: For any other transport failure.
        """
        ...


class HttpxTransport:
    """Transport backed by a long-lived ``httpx.Client``."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        """Initialize the transport.

        Args:
            client: Optional preconfigured client; one is created otherwise.
        """
        self._client = client or httpx.Client(follow_redirects=True)
        self._owns_client = client is None

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        timeout: float,
    ) -> TransportResponse:
        """Send one request through httpx."""
        try:
            response = self._client.request(
                method, url, headers=headers, timeout=timeout
            )
        except httpx.TimeoutException as e:
            msg = f"Request timed out: {e}"
            raise TransportTimeoutError(msg) from e
        except httpx.HTTPError as e:
            msg = f"Transport failure: {e}"
            raise TransportError(msg) from e

        return TransportResponse(
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body_text=response.text,
        )

    def close(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            self._client.close()
            logger.debug("transport_closed", component="transport")
