# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS SigV4 request signing.

Turns a ``RequestDescriptor`` plus a set of temporary credentials into a
``SignedRequest`` whose headers carry an ``AWS4-HMAC-SHA256``
authorization value.  Signing is a pure function of its inputs,
including the timestamp, so identical inputs always produce identical
signatures.

No boto3/botocore dependency; only stdlib hashing is used.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import urllib.parse
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sigclient.errors import SigningError


if TYPE_CHECKING:
    from collections.abc import Mapping

    from sigclient.credentials import Credentials


SIGV4_ALGORITHM = "AWS4-HMAC-SHA256"

#: ``x-amz-date`` format (UTC, second precision).
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

#: Fixed terminal string of the credential scope and key derivation chain.
SCOPE_TERMINATOR = "aws4_request"

JSON_CONTENT_TYPE = "application/json"

_SHA256_EMPTY = hashlib.sha256(b"").hexdigest()

_AWS_UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

# Headers that proxies and clients may rewrite in transit; sent but never
# included in the signature.
_UNSIGNABLE_HEADERS = frozenset(
    {
        "authorization",
        "cache-control",
        "connection",
        "expect",
        "from",
        "keep-alive",
        "max-forwards",
        "pragma",
        "referer",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "user-agent",
        "x-amzn-trace-id",
    }
)

_DEFAULT_PORTS = {"http": 80, "https": 443}


# ---------------------------------------------------------------------------
# URI encoding (AWS-specific RFC 3986 subset)
# ---------------------------------------------------------------------------


def _uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """URI-encode a value using AWS's specific rules.

    - Unreserved characters are not encoded: A-Z, a-z, 0-9, -, _, ., ~
    - All other characters are percent-encoded per UTF-8 byte as %XX
      (uppercase hex)
    - Forward slashes (/) are optionally preserved

    Args:
        value: String to encode.
        encode_slash: If True, encode '/'; if False, preserve '/'.

    Returns:
        URI-encoded string.
    """
    result: list[str] = []
    for ch in value:
        if ch in _AWS_UNRESERVED:
            result.append(ch)
        elif ch == "/" and not encode_slash:
            result.append("/")
        else:
            result.extend(f"%{b:02X}" for b in ch.encode("utf-8"))
    return "".join(result)


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def canonical_uri(path: str) -> str:
    """Build canonical URI from request path.

    The path may arrive already percent-encoded (as it appears in the
    URL).  API Gateway (``execute-api``) uses the double-encode rule:
    decode, normalize ``.``/``..``/empty segments, then URI-encode the
    result twice, so a space becomes ``%2520`` and a pre-encoded
    ``%3A`` becomes ``%253A``.

    Args:
        path: Request path, possibly already percent-encoded.

    Returns:
        URI-encoded canonical path.
    """
    if not path:
        return "/"

    # Strip query string if present
    path = path.split("?")[0]

    decoded = urllib.parse.unquote(path)
    normalized: list[str] = []
    for part in decoded.split("/"):
        if part == "..":
            if normalized:
                normalized.pop()
        elif part != "." and part != "":
            normalized.append(part)
    normalized_path = "/" + "/".join(normalized)
    if decoded.endswith("/") and normalized:
        normalized_path += "/"

    single = _uri_encode(normalized_path, encode_slash=False)
    return _uri_encode(single, encode_slash=False)


def canonical_query_string(query: str) -> str:
    """Build canonical query string.

    Each parameter is decoded and re-encoded with the unreserved set, then
    parameters are sorted by encoded name and, for repeated names, by
    encoded value.

    Args:
        query: Raw query string (without leading ?).

    Returns:
        Canonical query string, empty when there are no parameters.
    """
    if not query:
        return ""

    params = urllib.parse.parse_qsl(query, keep_blank_values=True)
    encoded = [(_uri_encode(k), _uri_encode(v)) for k, v in params]
    encoded.sort()

    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_headers_string(
    headers: Mapping[str, str], signed_headers_list: list[str]
) -> str:
    """Build canonical headers string.

    Args:
        headers: Request headers (name -> value).
        signed_headers_list: List of signed header names (lowercase).

    Returns:
        Canonical headers string (each line: "name:value" + newline).
    """
    lines: list[str] = []
    lower_headers: dict[str, str] = {}
    for name, value in headers.items():
        lower_headers[name.lower()] = value

    for name in sorted(signed_headers_list):
        value = lower_headers.get(name, "")
        # Trim leading/trailing whitespace, collapse sequential spaces
        trimmed = " ".join(value.split())
        lines.append(f"{name}:{trimmed}\n")

    return "".join(lines)


def build_canonical_request(
    method: str,
    path: str,
    query: str,
    headers: Mapping[str, str],
    signed_headers: str,
    payload_hash: str,
) -> str:
    """Build the canonical request string.

    Args:
        method: HTTP method.
        path: Request path.
        query: Query string (without leading ?).
        headers: Request headers.
        signed_headers: Semicolon-separated signed header names.
        payload_hash: Hex SHA-256 of the request body.

    Returns:
        Canonical request string.
    """
    signed_list = signed_headers.split(";")

    return "\n".join(
        [
            method.upper(),
            canonical_uri(path),
            canonical_query_string(query),
            canonical_headers_string(headers, signed_list),
            signed_headers,
            payload_hash,
        ]
    )


def payload_hash(body: bytes | None) -> str:
    """Hex SHA-256 of the body; an absent body hashes the empty string."""
    if not body:
        return _SHA256_EMPTY
    return hashlib.sha256(body).hexdigest()


# ---------------------------------------------------------------------------
# SigV4 signing
# ---------------------------------------------------------------------------


def _hmac_sha256(key: bytes, msg: str | bytes) -> bytes:
    """HMAC-SHA256 helper."""
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).digest()


def derive_signing_key(
    secret_key: str, date: str, region: str, service: str
) -> bytes:
    """Derive the SigV4 signing key.

    Args:
        secret_key: AWS secret access key.
        date: Date string (YYYYMMDD).
        region: AWS region.
        service: AWS service name.

    Returns:
        Derived signing key bytes.
    """
    k_date = _hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, SCOPE_TERMINATOR)


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    """Compute the hex-encoded SigV4 signature."""
    return hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def build_string_to_sign(
    timestamp: str, scope: str, canonical_request: str
) -> str:
    """Build the SigV4 string to sign.

    Args:
        timestamp: ISO8601 basic timestamp (the ``x-amz-date`` value).
        scope: Credential scope (date/region/service/aws4_request).
        canonical_request: The canonical request string.

    Returns:
        String to sign.
    """
    return "\n".join(
        [
            SIGV4_ALGORITHM,
            timestamp,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )


def format_amz_date(timestamp: datetime) -> str:
    """Format a timestamp as ``YYYYMMDDTHHMMSSZ`` in UTC.

    Naive datetimes are taken to be UTC already.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC).strftime(AMZ_DATE_FORMAT)


# ---------------------------------------------------------------------------
# Request model
# ---------------------------------------------------------------------------


def stringify_header_value(value: object) -> str | None:
    """Convert a caller-supplied header value to its wire text.

    Booleans become ``true``/``false`` and numbers use ``str()``, so the
    signed bytes match what is transmitted.  ``None`` means "omit".
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        return value.decode("latin-1")
    return str(value)


def serialize_body(body: Any) -> bytes | None:
    """Serialize a JSON body to compact UTF-8 bytes.

    Raises:
        SigningError: If the value is not JSON serializable.
    """
    if body is None:
        return None
    try:
        text = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SigningError(f"Request body is not JSON serializable: {e}") from e
    return text.encode("utf-8")


@dataclass(frozen=True)
class RequestDescriptor:
    """An unsigned request.

    Attributes:
        method: Upper-case HTTP method.
        url: Absolute request URL.
        headers: Header pairs with lower-case names and string values.
        body: Optional JSON-serializable body.
    """

    method: str
    url: str
    headers: tuple[tuple[str, str], ...] = ()
    body: Any = field(default=None, compare=True, hash=False)

    @classmethod
    def create(
        cls,
        url: str,
        method: str = "GET",
        headers: Mapping[str, object] | None = None,
        body: Any = None,
    ) -> RequestDescriptor:
        """Build a descriptor, normalizing header names and values.

        Header names are case-insensitive: when the same name appears
        with different casing, the last value wins.
        """
        normalized: dict[str, str] = {}
        for name, value in (headers or {}).items():
            text = stringify_header_value(value)
            if text is not None:
                normalized[str(name).lower()] = text
        return cls(
            method=(method or "GET").upper(),
            url=url,
            headers=tuple(normalized.items()),
            body=body,
        )

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        name = name.lower()
        for key, value in self.headers:
            if key == name:
                return value
        return None


@dataclass(frozen=True)
class SigningContext:
    """Inputs to a single signing operation; never retained."""

    descriptor: RequestDescriptor
    credentials: Credentials
    service: str
    region: str
    timestamp: datetime

    @property
    def amz_date(self) -> str:
        """Full timestamp (``x-amz-date`` value)."""
        return format_amz_date(self.timestamp)

    @property
    def date(self) -> str:
        """Date portion of the timestamp (YYYYMMDD)."""
        return self.amz_date[:8]

    @property
    def scope(self) -> str:
        """Credential scope: date/region/service/aws4_request."""
        return f"{self.date}/{self.region}/{self.service}/{SCOPE_TERMINATOR}"


@dataclass(frozen=True)
class SignedRequest:
    """A signed request, ready to transmit unmodified.

    Any change to the method, URL, headers or body after signing
    invalidates the signature.

    Attributes:
        method: HTTP method.
        url: Absolute request URL.
        headers: Outgoing headers including the injected auth headers.
        body: Serialized body bytes, or None.
        signed_headers: Semicolon-joined signed header names.
        canonical_request: Canonical request used for the signature.
        string_to_sign: String that was signed.
        signature: Hex-encoded signature.
    """

    method: str
    url: str
    headers: tuple[tuple[str, str], ...]
    body: bytes | None
    signed_headers: str
    canonical_request: str
    string_to_sign: str
    signature: str

    def header_dict(self) -> dict[str, str]:
        """Headers as a plain dict (names are already lower-case)."""
        return dict(self.headers)


def _host_header(parts: urllib.parse.SplitResult) -> str:
    """Host header value: hostname plus port when not the scheme default."""
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parts.port
    except ValueError as e:
        raise SigningError(f"Invalid port in URL: {parts.netloc}") from e
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme):
        return f"{host}:{port}"
    return host


class RequestSigner:
    """Signs requests with AWS SigV4 for a fixed service and region.

    Attributes:
        service: Signing service name (e.g. ``execute-api``).
        region: AWS region (e.g. ``eu-west-1``).
    """

    def __init__(self, service: str, region: str) -> None:
        if not service:
            raise ValueError("Signing service must not be empty")
        if not region:
            raise ValueError("Signing region must not be empty")
        self.service = service
        self.region = region

    def sign(
        self,
        descriptor: RequestDescriptor,
        credentials: Credentials,
        timestamp: datetime,
    ) -> SignedRequest:
        """Sign a request.

        Args:
            descriptor: The unsigned request.
            credentials: Credentials snapshot to sign with.
            timestamp: Signing time; the same value always yields the
                same signature.

        Returns:
            SignedRequest carrying host, content-type, content-length
            (with a body), x-amz-date, x-amz-security-token and
            authorization headers.

        Raises:
            SigningError: If the URL is not absolute http(s) or the body
                cannot be serialized.
        """
        ctx = SigningContext(
            descriptor=descriptor,
            credentials=credentials,
            service=self.service,
            region=self.region,
            timestamp=timestamp,
        )
        parts = urllib.parse.urlsplit(descriptor.url)
        if parts.scheme not in _DEFAULT_PORTS or not parts.hostname:
            raise SigningError(
                f"Cannot sign request: URL must be absolute http(s), "
                f"got {descriptor.url!r}"
            )

        body = serialize_body(descriptor.body)

        headers: dict[str, str] = {
            "host": _host_header(parts),
            "content-type": JSON_CONTENT_TYPE,
        }
        headers.update(descriptor.headers)
        headers.pop("authorization", None)
        if body is not None:
            headers["content-length"] = str(len(body))
        else:
            headers.pop("content-length", None)
        headers["x-amz-date"] = ctx.amz_date
        headers["x-amz-security-token"] = credentials.session_token

        signed_list = sorted(h for h in headers if h not in _UNSIGNABLE_HEADERS)
        signed_headers = ";".join(signed_list)

        canonical_request = build_canonical_request(
            descriptor.method,
            parts.path,
            parts.query,
            headers,
            signed_headers,
            payload_hash(body),
        )
        string_to_sign = build_string_to_sign(
            ctx.amz_date, ctx.scope, canonical_request
        )
        signing_key = derive_signing_key(
            credentials.secret_access_key, ctx.date, ctx.region, ctx.service
        )
        signature = compute_signature(signing_key, string_to_sign)

        headers["authorization"] = (
            f"{SIGV4_ALGORITHM} "
            f"Credential={credentials.access_key_id}/{ctx.scope}, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}"
        )

        return SignedRequest(
            method=descriptor.method,
            url=descriptor.url,
            headers=tuple(headers.items()),
            body=body,
            signed_headers=signed_headers,
            canonical_request=canonical_request,
            string_to_sign=string_to_sign,
            signature=signature,
        )
