# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Signed, resilient API client.

Obtains temporary AWS credentials from a Cognito Identity pool, signs
requests with SigV4 and executes them with bounded retries, backoff and
per-attempt timeouts:
- Credential caching and refresh (CredentialProvider)
- SigV4 request signing (RequestSigner)
- Retry classification and backoff (RetryPolicy)
- Request lifecycle with uniform results (RequestExecutor)
- Configuration loading (ClientConfig)
"""

from sigclient.client import SignedApiClient
from sigclient.config import ClientConfig, ConfigError
from sigclient.credentials import (
    CognitoIdentityBroker,
    CredentialProvider,
    Credentials,
    IdentityBroker,
)
from sigclient.errors import (
    CredentialError,
    ErrorKind,
    SigClientError,
    SigningError,
    TransportError,
)
from sigclient.executor import (
    ApiError,
    ApiRequest,
    ApiResponse,
    ApiResult,
    RequestExecutor,
    ResponseMeta,
)
from sigclient.retry import RetryPolicy
from sigclient.signing import RequestDescriptor, RequestSigner, SignedRequest
from sigclient.transport import HttpxTransport, Transport, TransportResponse


__all__ = [
    "ApiError",
    "ApiRequest",
    "ApiResponse",
    "ApiResult",
    "ClientConfig",
    "CognitoIdentityBroker",
    "ConfigError",
    "CredentialError",
    "CredentialProvider",
    "Credentials",
    "ErrorKind",
    "HttpxTransport",
    "IdentityBroker",
    "RequestDescriptor",
    "RequestExecutor",
    "RequestSigner",
    "ResponseMeta",
    "RetryPolicy",
    "SigClientError",
    "SignedApiClient",
    "SignedRequest",
    "SigningError",
    "Transport",
    "TransportError",
    "TransportResponse",
]
