# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Request lifecycle: credentials, signing, transmission and retries.

``RequestExecutor.execute`` runs one caller request as an explicit state
machine::

    Attempting ──> Success
        │  ^
        v  │ (after backoff, with forced credential refresh)
    RetryScheduled
        │
        v
      Failed

Each attempt is a function of an immutable ``AttemptState``.  Every
outcome, including exceptions from the credential, signing and transport
layers, is converted to an ``ApiResponse`` or ``ApiError`` result.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from sigclient.credentials import utc_now
from sigclient.errors import ErrorKind, SigClientError, SigningError
from sigclient.retry import RetryPolicy, classify_exception, classify_status
from sigclient.signing import RequestDescriptor
from sigclient.transport import timeout_message


if TYPE_CHECKING:
    from sigclient.credentials import CredentialProvider
    from sigclient.signing import RequestSigner
    from sigclient.transport import Transport, TransportResponse


logger = logging.getLogger(__name__)

#: Categorical statuses for failures without a usable HTTP status.
FETCH_ERROR = "FETCH_ERROR"
TIMEOUT_ERROR = "TIMEOUT_ERROR"
PARSING_ERROR = "PARSING_ERROR"

GENERIC_FAILURE_MESSAGE = "Request failed after multiple retries"

DEFAULT_TIMEOUT_SECONDS = 30.0


# ---------------------------------------------------------------------------
# Caller-facing types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiRequest:
    """A caller request.

    Attributes:
        url: Absolute URL, or a path resolved against the base URL.
        method: HTTP method.
        body: Optional JSON-serializable body.
        headers: Optional extra headers.
    """

    url: str
    method: str = "GET"
    body: Any = None
    headers: Mapping[str, object] | None = None

    @classmethod
    def coerce(cls, value: str | Mapping[str, Any] | ApiRequest) -> ApiRequest:
        """Accept a bare URL, a mapping of request fields, or a request.

        Raises:
            SigningError: If the input or any of its fields has the wrong
                type.
        """
        if isinstance(value, ApiRequest):
            return value.validated()
        if isinstance(value, str):
            return cls(url=value)
        if isinstance(value, Mapping):
            if "url" not in value:
                raise SigningError("Request mapping is missing 'url'")
            return cls(
                url=value["url"],
                method=value.get("method") or "GET",
                body=value.get("body"),
                headers=value.get("headers"),
            ).validated()
        raise SigningError(f"Unsupported request type: {type(value).__name__}")

    def validated(self) -> ApiRequest:
        """Return this request after checking field types.

        Raises:
            SigningError: If url or method is not a string, or headers
                is not a mapping.
        """
        if not isinstance(self.url, str):
            raise SigningError(
                f"Request url must be a string, got {type(self.url).__name__}"
            )
        if not isinstance(self.method, str) or not self.method:
            raise SigningError(
                "Request method must be a non-empty string, "
                f"got {self.method!r}"
            )
        if self.headers is not None and not isinstance(self.headers, Mapping):
            raise SigningError(
                "Request headers must be a mapping, "
                f"got {type(self.headers).__name__}"
            )
        return self


@dataclass(frozen=True)
class ResponseMeta:
    """Metadata of a successful response.

    Attributes:
        status_code: HTTP status code.
        headers: Response headers (lower-case names).
        url: Final request URL.
        attempts: Number of attempts the call took.
    """

    status_code: int
    headers: dict[str, str]
    url: str
    attempts: int


@dataclass(frozen=True)
class ApiResponse:
    """Successful result: decoded JSON body (None if empty) and metadata."""

    data: Any
    meta: ResponseMeta

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ApiError:
    """Failed result.

    Attributes:
        status: HTTP status code, or ``FETCH_ERROR``, ``TIMEOUT_ERROR`` or
            ``PARSING_ERROR`` when no usable response was received.
        data: Parsed error body (JSON value, raw text, or None).
        message: Best-effort description of the failure.
        attempts: Number of attempts made.
    """

    status: int | str
    data: Any = None
    message: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return False


ApiResult = ApiResponse | ApiError

#: Anything `execute` accepts as a request.
RequestLike = str | Mapping[str, Any] | ApiRequest | RequestDescriptor


# ---------------------------------------------------------------------------
# Attempt state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AttemptFailure:
    """Outcome of a failed attempt.

    Attributes:
        kind: Failure category driving the retry decision.
        message: Underlying error message.
        status_code: HTTP status, when a response was received.
        data: Parsed response body, when a response was received.
    """

    kind: ErrorKind
    message: str
    status_code: int | None = None
    data: Any = None


@dataclass(frozen=True)
class AttemptState:
    """Per-call attempt state, replaced (never mutated) between attempts."""

    attempt: int = 0
    last_failure: AttemptFailure | None = None
    force_refresh: bool = False

    def next(self, failure: AttemptFailure) -> AttemptState:
        """State for the attempt following ``failure``."""
        return AttemptState(
            attempt=self.attempt + 1,
            last_failure=failure,
            force_refresh=True,
        )


def _decode_text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


def _parse_error_body(body: bytes) -> Any:
    """Parse an error body as JSON, falling back to text (None if empty)."""
    text = _decode_text(body)
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class RequestExecutor:
    """Executes caller requests with signing, timeouts and retries.

    One executor (and its credential provider) may be shared by any
    number of threads; each ``execute`` call keeps its own attempt state.

    Attributes:
        base_url: Base for relative request URLs.
        timeout: Per-attempt deadline in seconds.
        retry_policy: Retry classification and backoff.
    """

    def __init__(
        self,
        credential_provider: CredentialProvider,
        signer: RequestSigner,
        transport: Transport,
        *,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive: {timeout}")
        self.base_url = base_url
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._credentials = credential_provider
        self._signer = signer
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    def resolve_url(self, url: str) -> str:
        """Resolve ``url`` against the base URL (absolute URLs pass through)."""
        if self.base_url:
            return urllib.parse.urljoin(self.base_url, url)
        return url

    def build_descriptor(self, request: RequestLike) -> RequestDescriptor:
        """Turn caller input into an immutable ``RequestDescriptor``.

        Raises:
            SigningError: If the request is malformed.
        """
        if isinstance(request, RequestDescriptor):
            return request
        api_request = ApiRequest.coerce(request)
        return RequestDescriptor.create(
            url=self.resolve_url(api_request.url),
            method=api_request.method,
            headers=api_request.headers,
            body=api_request.body,
        )

    def execute(self, request: RequestLike) -> ApiResult:
        """Execute a request, retrying transient failures.

        Args:
            request: URL string, mapping with ``url``/``method``/``body``/
                ``headers``, ``ApiRequest`` or ``RequestDescriptor``.

        Returns:
            ApiResponse on 2xx, otherwise ApiError.  Never raises for
            credential, signing or transport failures.
        """
        try:
            descriptor = self.build_descriptor(request)
        except SigningError as e:
            logger.warning("Rejected malformed request: %s", e)
            return ApiError(status=FETCH_ERROR, message=str(e))

        state = AttemptState()
        while True:
            outcome = self._attempt(descriptor, state)
            if isinstance(outcome, ApiResponse):
                return outcome

            if not self.retry_policy.should_retry(state.attempt, outcome.kind):
                return self._fail(descriptor, outcome, state.attempt + 1)

            retry_number = state.attempt + 1
            delay = self.retry_policy.backoff_delay(retry_number)
            logger.warning(
                "%s %s attempt %d failed (%s: %s); retrying in %.0f ms",
                descriptor.method,
                descriptor.url,
                retry_number,
                outcome.kind.value,
                outcome.message,
                delay * 1000,
            )
            self._sleep(delay)
            state = state.next(outcome)

    def _attempt(
        self, descriptor: RequestDescriptor, state: AttemptState
    ) -> ApiResponse | AttemptFailure:
        """Run a single attempt: credentials, sign, send, interpret."""
        logger.debug(
            "%s %s attempt %d (force_refresh=%s)",
            descriptor.method,
            descriptor.url,
            state.attempt + 1,
            state.force_refresh,
        )
        try:
            credentials = self._credentials.get_credentials(
                force_refresh=state.force_refresh
            )
            signed = self._signer.sign(descriptor, credentials, self._clock())
            response = self._transport.send(signed, self.timeout)
        except (SigClientError, httpx.HTTPError, OSError) as e:
            kind = classify_exception(e)
            if kind is ErrorKind.TIMEOUT:
                message = str(e) or timeout_message(self.timeout)
            else:
                message = str(e) or type(e).__name__
            return AttemptFailure(kind=kind, message=message)
        except Exception as e:
            logger.exception("Unexpected error during request attempt")
            return AttemptFailure(
                kind=ErrorKind.HTTP_STATUS,
                message=f"{type(e).__name__}: {e}",
            )

        return self._interpret(response, state)

    def _interpret(
        self, response: TransportResponse, state: AttemptState
    ) -> ApiResponse | AttemptFailure:
        """Map a transport response to success or a classified failure."""
        status = response.status_code
        kind = classify_status(status)

        if kind is not None:
            return AttemptFailure(
                kind=kind,
                message=f"HTTP {status}",
                status_code=status,
                data=_parse_error_body(response.body),
            )

        text = _decode_text(response.body)
        data: Any = None
        if text.strip():
            try:
                data = json.loads(text)
            except ValueError as e:
                return AttemptFailure(
                    kind=ErrorKind.PARSING,
                    message=f"Invalid JSON in response body: {e}",
                    status_code=status,
                    data=text,
                )

        return ApiResponse(
            data=data,
            meta=ResponseMeta(
                status_code=status,
                headers=response.headers,
                url=response.url,
                attempts=state.attempt + 1,
            ),
        )

    def _fail(
        self,
        descriptor: RequestDescriptor,
        failure: AttemptFailure,
        attempts: int,
    ) -> ApiError:
        """Build the terminal error for the last observed failure."""
        logger.warning(
            "%s %s failed after %d attempt(s): %s: %s",
            descriptor.method,
            descriptor.url,
            attempts,
            failure.kind.value,
            failure.message,
        )
        message = failure.message or GENERIC_FAILURE_MESSAGE

        if failure.kind in (ErrorKind.AUTHORIZATION, ErrorKind.HTTP_STATUS):
            if failure.status_code is not None:
                return ApiError(
                    status=failure.status_code,
                    data=failure.data,
                    message=message,
                    attempts=attempts,
                )
        if failure.kind is ErrorKind.TIMEOUT:
            return ApiError(
                status=TIMEOUT_ERROR, message=message, attempts=attempts
            )
        if failure.kind is ErrorKind.PARSING:
            return ApiError(
                status=PARSING_ERROR,
                data=failure.data,
                message=message,
                attempts=attempts,
            )
        return ApiError(status=FETCH_ERROR, message=message, attempts=attempts)
