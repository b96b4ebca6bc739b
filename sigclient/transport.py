# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP transport for signed requests.

``HttpxTransport`` sends a ``SignedRequest`` exactly as signed and
enforces a wall-clock deadline over the whole exchange: connect, send,
waiting for headers and streaming the response body.

The exchange runs on a daemon worker thread while the caller waits on it
with the deadline.  When the deadline passes the caller is released with
a timeout ``TransportError`` at once, and the worker is told to abandon
the transfer.  It stops at its next read and closes the stream; httpx's
own per-phase timeouts bound how long a stalled read can keep it alive.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import httpx

from sigclient.errors import ErrorKind, TransportError


if TYPE_CHECKING:
    from collections.abc import Callable

    from sigclient.signing import SignedRequest


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    """Raw response from the transport.

    Attributes:
        status_code: HTTP status code.
        headers: Response headers (lower-case names).
        body: Raw response body.
        url: Final request URL.
    """

    status_code: int
    headers: dict[str, str]
    body: bytes
    url: str


class Transport(Protocol):
    """Sends signed requests."""

    def send(self, request: SignedRequest, timeout: float) -> TransportResponse:
        """Send the request within ``timeout`` seconds.

        Raises:
            TransportError: On network failure or timeout.
        """
        ...


def timeout_message(timeout: float) -> str:
    """Human-readable message for an expired per-attempt deadline."""
    return f"Request timed out after {round(timeout * 1000)} ms"


class _Exchange:
    """One in-flight request, shared by the caller and its worker."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.cancelled = threading.Event()
        self.result: TransportResponse | None = None
        self.error: Exception | None = None


class HttpxTransport:
    """Transport backed by a shared ``httpx.Client``.

    The client is thread-safe, so one transport serves all concurrent
    callers.  Use as a context manager or call ``close()``.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client or httpx.Client()
        self._owns_client = client is None
        self._clock = clock

    def close(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def send(self, request: SignedRequest, timeout: float) -> TransportResponse:
        """Send a signed request with an overall deadline.

        Args:
            request: Signed request, transmitted unmodified.
            timeout: Overall deadline in seconds.

        Returns:
            TransportResponse with the full body.

        Raises:
            TransportError: ``TIMEOUT`` kind when the deadline passes,
                ``NETWORK`` kind for any other transport failure.
        """
        deadline = self._clock() + timeout
        http_request = self._client.build_request(
            request.method,
            request.url,
            headers=list(request.headers),
            content=request.body,
            timeout=httpx.Timeout(timeout),
        )
        exchange = _Exchange()
        worker = threading.Thread(
            target=self._run,
            args=(http_request, deadline, timeout, exchange),
            daemon=True,
            name="SigclientTransport",
        )
        worker.start()

        if not exchange.done.wait(timeout=timeout):
            exchange.cancelled.set()
            logger.debug(
                "%s %s abandoned after %.3fs deadline",
                request.method,
                request.url,
                timeout,
            )
            raise TransportError(timeout_message(timeout), ErrorKind.TIMEOUT)

        if exchange.error is not None:
            raise exchange.error
        response = exchange.result
        assert response is not None

        logger.debug(
            "%s %s -> HTTP %d",
            request.method,
            request.url,
            response.status_code,
        )
        return response

    def _run(
        self,
        http_request: httpx.Request,
        deadline: float,
        timeout: float,
        exchange: _Exchange,
    ) -> None:
        """Worker body: store the outcome and signal the caller."""
        try:
            exchange.result = self._receive(
                http_request, deadline, timeout, exchange
            )
        except Exception as e:
            # Re-raised on the caller thread unless the caller gave up
            exchange.error = e
        finally:
            exchange.done.set()

    def _receive(
        self,
        http_request: httpx.Request,
        deadline: float,
        timeout: float,
        exchange: _Exchange,
    ) -> TransportResponse:
        """Send the request and read the full body, honoring cancellation.

        Raises:
            TransportError: On timeout, cancellation or network failure.
        """
        try:
            response = self._client.send(http_request, stream=True)
            try:
                chunks: list[bytes] = []
                for chunk in response.iter_bytes():
                    chunks.append(chunk)
                    if exchange.cancelled.is_set() or (
                        self._clock() > deadline
                    ):
                        raise TransportError(
                            timeout_message(timeout), ErrorKind.TIMEOUT
                        )
            finally:
                response.close()
        except httpx.TimeoutException as e:
            raise TransportError(
                timeout_message(timeout), ErrorKind.TIMEOUT
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                f"network error: {type(e).__name__}: {e}", ErrorKind.NETWORK
            ) from e

        return TransportResponse(
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=b"".join(chunks),
            url=str(response.url),
        )
