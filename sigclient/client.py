# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Signed API client facade.

Wires a ``ClientConfig`` into the credential provider, signer, transport
and executor.  Construct one client per identity pool and share it; the
credential cache lives as long as the client.

Example:
    config = ClientConfig.from_yaml()
    with SignedApiClient(config) as client:
        result = client.request("items", method="POST", body={"a": 1})
        if result.ok:
            print(result.data)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from sigclient.config import ClientConfig
from sigclient.credentials import (
    CognitoIdentityBroker,
    CredentialProvider,
    IdentityBroker,
)
from sigclient.executor import (
    ApiRequest,
    ApiResult,
    RequestExecutor,
    RequestLike,
)
from sigclient.retry import RetryPolicy
from sigclient.signing import RequestSigner
from sigclient.transport import HttpxTransport, Transport


logger = logging.getLogger(__name__)


class SignedApiClient:
    """Executes SigV4-signed requests with Cognito Identity credentials.

    Attributes:
        config: Client configuration.
        credentials: Shared credential provider.
        executor: Request executor.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        broker: IdentityBroker | None = None,
        transport: Transport | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Client configuration.
            broker: Identity broker; defaults to Cognito Identity in the
                configured region.
            transport: Transport; defaults to an ``httpx`` client.
            sleep: Backoff sleep function (for tests).
        """
        self.config = config
        self._closeables: list[Any] = []

        if broker is None:
            broker = CognitoIdentityBroker(config.region)
            self._closeables.append(broker)
        if transport is None:
            transport = HttpxTransport()
            self._closeables.append(transport)

        self.credentials = CredentialProvider(broker, config.identity_pool_id)
        executor_kwargs: dict[str, Any] = {}
        if sleep is not None:
            executor_kwargs["sleep"] = sleep
        self.executor = RequestExecutor(
            self.credentials,
            RequestSigner(config.service, config.region),
            transport,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            retry_policy=RetryPolicy(config.max_retries),
            **executor_kwargs,
        )
        logger.debug(
            "Initialized signed API client: base_url=%s, pool=%s",
            config.base_url,
            config.identity_pool_id,
        )

    def execute(self, request: RequestLike) -> ApiResult:
        """Execute a request (URL, mapping, or ``ApiRequest``)."""
        return self.executor.execute(request)

    def request(
        self,
        url: str,
        method: str = "GET",
        *,
        body: Any = None,
        headers: Mapping[str, object] | None = None,
    ) -> ApiResult:
        """Execute a request given as keyword arguments."""
        return self.executor.execute(
            ApiRequest(url=url, method=method, body=body, headers=headers)
        )

    def close(self) -> None:
        """Close HTTP clients created by this client."""
        for closeable in self._closeables:
            closeable.close()
        self._closeables.clear()

    def __enter__(self) -> SignedApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
