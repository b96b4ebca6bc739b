# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Temporary AWS credentials from a Cognito Identity pool.

``CredentialProvider`` caches one set of credentials for its lifetime and
refreshes them through an ``IdentityBroker`` when they are missing, close
to expiry, or when the caller forces a refresh after a failed attempt.

``CognitoIdentityBroker`` speaks the Cognito Identity JSON protocol
directly over ``httpx``.  ``GetId`` and ``GetCredentialsForIdentity`` are
unauthenticated calls for guest identities, so no SDK or request signing
is involved.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import httpx

from sigclient.errors import CredentialError
from sigclient.logging import SecretFilter


logger = logging.getLogger(__name__)

#: Credentials are refreshed this long before they actually expire.
REFRESH_SKEW = timedelta(seconds=60)

#: Lifetime assumed when the broker omits an expiration.
_DEFAULT_LIFETIME = timedelta(hours=1)

_COGNITO_TARGET_PREFIX = "AWSCognitoIdentityService"
_COGNITO_CONTENT_TYPE = "application/x-amz-json-1.1"
_BROKER_TIMEOUT_SECONDS = 10


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class Credentials:
    """A set of temporary AWS credentials.

    Instances are immutable; a refresh always produces a new object.
    The secret key and session token are registered for log redaction
    on creation and unregistered by ``retire``.

    Attributes:
        access_key_id: Temporary access key ID (``ASIA...``).
        secret_access_key: Secret access key.
        session_token: STS session token.
        expires_at: Expiry as an aware UTC datetime.
    """

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str = field(repr=False)
    expires_at: datetime

    def __post_init__(self) -> None:
        for secret in self.secrets:
            SecretFilter.register_secret(secret)

    def is_fresh(self, now: datetime, skew: timedelta = REFRESH_SKEW) -> bool:
        """True if the credentials remain usable beyond ``now + skew``."""
        return now < self.expires_at - skew

    @property
    def secrets(self) -> tuple[str, str]:
        """Values that must never appear in log output."""
        return (self.secret_access_key, self.session_token)

    def retire(self, successor: Credentials | None = None) -> None:
        """Stop redacting these secrets after a refresh replaced them.

        Secrets shared with ``successor`` stay registered.
        """
        keep = successor.secrets if successor is not None else ()
        for secret in self.secrets:
            if secret not in keep:
                SecretFilter.unregister_secret(secret)


class IdentityBroker(Protocol):
    """Exchanges an identity pool ID for temporary credentials."""

    def get_id(self, identity_pool_id: str) -> str | None:
        """Return the identity ID for the pool (None/empty if missing)."""
        ...

    def get_credentials_for_identity(self, identity_id: str) -> dict[str, Any]:
        """Return the ``Credentials`` mapping for an identity.

        Keys: ``AccessKeyId``, ``SecretKey``, ``SessionToken`` and
        optionally ``Expiration`` (epoch seconds or datetime).
        """
        ...


class CognitoIdentityBroker:
    """Cognito Identity JSON protocol client.

    Attributes:
        region: AWS region hosting the identity pool.
        endpoint: Cognito Identity endpoint URL.
    """

    def __init__(
        self,
        region: str,
        *,
        endpoint: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = _BROKER_TIMEOUT_SECONDS,
    ) -> None:
        self.region = region
        self.endpoint = (
            endpoint or f"https://cognito-identity.{region}.amazonaws.com/"
        )
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None

    def close(self) -> None:
        """Close the underlying HTTP client if this broker created it."""
        if self._owns_client:
            self._client.close()

    def _call(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Invoke a Cognito Identity operation.

        Raises:
            CredentialError: On transport failure, non-2xx status or a
                response that is not a JSON object.
        """
        try:
            response = self._client.post(
                self.endpoint,
                headers={
                    "Content-Type": _COGNITO_CONTENT_TYPE,
                    "X-Amz-Target": f"{_COGNITO_TARGET_PREFIX}.{operation}",
                },
                json=payload,
            )
        except httpx.HTTPError as e:
            raise CredentialError(
                f"{operation} request failed: {type(e).__name__}: {e}"
            ) from e

        try:
            data = response.json() if response.content else {}
        except ValueError as e:
            raise CredentialError(
                f"{operation} returned malformed response "
                f"(HTTP {response.status_code})"
            ) from e

        if response.is_error:
            error_type = "UnknownError"
            message = response.reason_phrase
            if isinstance(data, dict):
                # __type may be namespaced: "com.amazonaws...#NotAuthorized"
                error_type = str(data.get("__type", error_type))
                error_type = error_type.rsplit("#", 1)[-1]
                message = str(data.get("message") or data.get("Message") or "")
            raise CredentialError(
                f"{operation} failed (HTTP {response.status_code}): "
                f"{error_type}: {message}"
            )

        if not isinstance(data, dict):
            raise CredentialError(f"{operation} returned non-object response")
        return data

    def get_id(self, identity_pool_id: str) -> str | None:
        """Call ``GetId`` for an unauthenticated identity."""
        data = self._call("GetId", {"IdentityPoolId": identity_pool_id})
        return data.get("IdentityId")

    def get_credentials_for_identity(self, identity_id: str) -> dict[str, Any]:
        """Call ``GetCredentialsForIdentity``."""
        data = self._call(
            "GetCredentialsForIdentity", {"IdentityId": identity_id}
        )
        creds = data.get("Credentials")
        return creds if isinstance(creds, dict) else {}


def _parse_expiration(value: object, now: datetime) -> datetime:
    """Parse a broker expiration (epoch seconds, datetime or ISO string)."""
    if value is None or value == "":
        return now + _DEFAULT_LIFETIME
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, UTC)
    if isinstance(value, str):
        try:
            return _parse_expiration(float(value), now)
        except ValueError:
            pass
        try:
            return _parse_expiration(datetime.fromisoformat(value), now)
        except ValueError as e:
            raise CredentialError(
                f"Unrecognized credential expiration: {value!r}"
            ) from e
    raise CredentialError(f"Unrecognized credential expiration: {value!r}")


class CredentialProvider:
    """Fetches and caches temporary credentials for one identity pool.

    The read-check-refresh sequence runs under a lock, so concurrent
    callers that find the cache stale wait for a single broker exchange
    and then share its result.  Readers always see either the old or the
    new ``Credentials`` object, never a partial one.

    Attributes:
        identity_pool_id: Cognito identity pool ID.
        refresh_skew: Margin before expiry that triggers a refresh.
    """

    def __init__(
        self,
        broker: IdentityBroker,
        identity_pool_id: str,
        *,
        refresh_skew: timedelta = REFRESH_SKEW,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.identity_pool_id = identity_pool_id
        self.refresh_skew = refresh_skew
        self._broker = broker
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Credentials | None = None

    @property
    def cached(self) -> Credentials | None:
        """Currently cached credentials, if any."""
        return self._cached

    def invalidate(self) -> None:
        """Drop the cached credentials."""
        with self._lock:
            if self._cached is not None:
                self._cached.retire()
            self._cached = None

    def get_credentials(self, force_refresh: bool = False) -> Credentials:
        """Return valid credentials, fetching new ones when needed.

        Args:
            force_refresh: Fetch new credentials even if the cached ones
                are still fresh.

        Returns:
            Credentials valid for at least ``refresh_skew``.

        Raises:
            CredentialError: If either broker exchange fails or returns
                incomplete data.
        """
        with self._lock:
            cached = self._cached
            if (
                not force_refresh
                and cached is not None
                and cached.is_fresh(self._clock(), self.refresh_skew)
            ):
                return cached

            credentials = self._fetch()
            if cached is not None:
                cached.retire(credentials)
            self._cached = credentials
            return credentials

    def _fetch(self) -> Credentials:
        """Run the two-step broker exchange."""
        logger.debug(
            "Fetching credentials for identity pool %s", self.identity_pool_id
        )
        try:
            identity_id = self._broker.get_id(self.identity_pool_id)
            if not identity_id:
                raise CredentialError("missing identity id")

            raw = self._broker.get_credentials_for_identity(identity_id)
            access_key_id = raw.get("AccessKeyId")
            secret_key = raw.get("SecretKey")
            session_token = raw.get("SessionToken")
            if not access_key_id or not secret_key or not session_token:
                raise CredentialError("missing credential fields")

            credentials = Credentials(
                access_key_id=access_key_id,
                secret_access_key=secret_key,
                session_token=session_token,
                expires_at=_parse_expiration(
                    raw.get("Expiration"), self._clock()
                ),
            )
        except CredentialError as e:
            logger.error("Error fetching AWS credentials: %s", e)
            raise
        except Exception as e:
            logger.error("Error fetching AWS credentials: %s", e, exc_info=True)
            raise CredentialError(f"AWS credential error: {e}") from e

        logger.info(
            "Obtained credentials %s (expires %s)",
            credentials.access_key_id,
            credentials.expires_at.isoformat(),
        )
        return credentials
