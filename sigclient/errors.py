# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Error taxonomy for the signed API client.

Every failure raised inside the client carries an ``ErrorKind`` so the
retry policy can switch on the category instead of inspecting messages.
These exceptions never escape ``RequestExecutor.execute``; callers see
an ``ApiError`` result instead.
"""

from enum import Enum


class ErrorKind(Enum):
    """Category of a failed request attempt."""

    #: Identity broker exchange failed or returned incomplete data.
    CREDENTIAL = "credential"
    #: Connection-level failure (DNS, refused, reset, protocol error).
    NETWORK = "network"
    #: The per-attempt deadline expired and the transfer was cancelled.
    TIMEOUT = "timeout"
    #: HTTP 403, treated as stale or rejected credentials.
    AUTHORIZATION = "authorization"
    #: Any other non-2xx response.
    HTTP_STATUS = "http_status"
    #: A 2xx response whose body is not valid JSON.
    PARSING = "parsing"
    #: The request could not be canonicalized or serialized.
    SIGNING = "signing"


class SigClientError(Exception):
    """Base exception for signed API client errors."""

    kind: ErrorKind = ErrorKind.NETWORK


class CredentialError(SigClientError):
    """Raised when temporary credentials cannot be obtained."""

    kind = ErrorKind.CREDENTIAL


class SigningError(SigClientError):
    """Raised when a request cannot be signed (malformed inputs)."""

    kind = ErrorKind.SIGNING


class TransportError(SigClientError):
    """Raised when transmission fails before a response is received.

    Attributes:
        kind: ``ErrorKind.NETWORK`` or ``ErrorKind.TIMEOUT``.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.NETWORK):
        super().__init__(message)
        if kind not in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
            raise ValueError(f"Invalid transport error kind: {kind}")
        self.kind = kind

    @property
    def is_timeout(self) -> bool:
        """True if the attempt was cancelled by its deadline."""
        return self.kind is ErrorKind.TIMEOUT
