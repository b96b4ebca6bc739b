# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Retry classification and exponential backoff.

Failures are classified by ``ErrorKind`` rather than by message text.
Transient kinds (network, timeout, credential, HTTP 403) are retried with
a forced credential refresh; everything else is terminal.
"""

import random

import httpx

from sigclient.errors import ErrorKind, SigClientError


#: Kinds that warrant another attempt with fresh credentials.
RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.AUTHORIZATION,
        ErrorKind.TIMEOUT,
        ErrorKind.NETWORK,
        ErrorKind.CREDENTIAL,
    }
)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 0.1
DEFAULT_JITTER_SECONDS = 0.1
DEFAULT_MAX_DELAY_SECONDS = 2.0

# Larger exponents exceed any practical cap and eventually overflow a float.
_MAX_BACKOFF_EXPONENT = 32


def classify_status(status_code: int) -> ErrorKind | None:
    """Kind for an HTTP status, or None for success (2xx)."""
    if 200 <= status_code < 300:
        return None
    if status_code == 403:
        return ErrorKind.AUTHORIZATION
    return ErrorKind.HTTP_STATUS


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an exception raised during an attempt to an ``ErrorKind``.

    Client errors carry their kind.  Raw ``httpx`` errors that escape a
    custom transport are mapped by type; anything unrecognized is
    terminal.
    """
    if isinstance(exc, SigClientError):
        return exc.kind
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.NETWORK
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorKind.NETWORK
    return ErrorKind.HTTP_STATUS


def is_retryable(kind: ErrorKind) -> bool:
    """True if failures of this kind should be retried."""
    return kind in RETRYABLE_KINDS


class RetryPolicy:
    """Bounded retries with capped exponential backoff and jitter.

    Attempt numbers are zero-based: attempt 0 is the initial request, so
    ``max_retries=3`` allows four attempts in total.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        base_delay: Delay unit; retry ``n`` waits ``2**n * base_delay``.
        jitter: Upper bound of the uniform random delay added.
        max_delay: Cap on any single delay.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        *,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
        jitter: float = DEFAULT_JITTER_SECONDS,
        max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
        rng: random.Random | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0: {max_retries}")
        if base_delay < 0 or jitter < 0 or max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.jitter = jitter
        self.max_delay = max_delay
        self._rng = rng or random.Random()

    def should_retry(self, attempt_number: int, kind: ErrorKind) -> bool:
        """Decide whether a failed attempt is followed by another.

        Args:
            attempt_number: Zero-based number of the attempt that failed.
            kind: Classified failure.

        Returns:
            True if the failure is transient and retries remain.
        """
        if attempt_number >= self.max_retries:
            return False
        return is_retryable(kind)

    def backoff_delay(self, retry_number: int) -> float:
        """Seconds to wait before retry ``retry_number`` (1-based)."""
        exponent = min(max(retry_number, 0), _MAX_BACKOFF_EXPONENT)
        delay = (2**exponent) * self.base_delay
        delay += self._rng.uniform(0, self.jitter)
        return min(delay, self.max_delay)
