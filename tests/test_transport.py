# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the httpx-backed transport."""

import socket
import threading
import time
from collections.abc import Callable

import httpx
import pytest

from sigclient.credentials import Credentials
from sigclient.errors import ErrorKind, TransportError
from sigclient.signing import RequestDescriptor, RequestSigner, SignedRequest
from sigclient.transport import HttpxTransport, timeout_message
from tests.vectors import BASE_URL, EPOCH, REGION, SERVICE


def _transport(
    handler: Callable[[httpx.Request], httpx.Response], **kwargs
) -> HttpxTransport:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpxTransport(client, **kwargs)


@pytest.fixture
def signed(credentials: Credentials) -> SignedRequest:
    descriptor = RequestDescriptor.create(
        BASE_URL + "items?x=1",
        method="POST",
        headers={"X-Trace": "t-1"},
        body={"name": "widget"},
    )
    return RequestSigner(SERVICE, REGION).sign(descriptor, credentials, EPOCH)


class _StallingServer:
    """One-shot HTTP server that sends ``prefix`` and then goes silent."""

    def __init__(self, prefix: bytes) -> None:
        self._prefix = prefix
        self._release = threading.Event()
        self._sock = socket.create_server(("127.0.0.1", 0))
        self.port = self._sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        conn, _ = self._sock.accept()
        with conn:
            data = b""
            while b"\r\n\r\n" not in data:
                chunk = conn.recv(4096)
                if not chunk:
                    return
                data += chunk
            conn.sendall(self._prefix)
            self._release.wait(5)

    def close(self) -> None:
        self._release.set()
        self._thread.join(5)
        self._sock.close()


class TestHttpxTransport:
    """Tests for HttpxTransport.send."""

    def test_sends_signed_request_unmodified(
        self, signed: SignedRequest
    ) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": 7})

        response = _transport(handler).send(signed, 5.0)

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == signed.url
        assert request.content == signed.body
        for name, value in signed.headers:
            assert request.headers[name] == value
        assert response.status_code == 201
        assert response.body == b'{"id":7}'
        assert response.headers["content-type"] == "application/json"

    def test_timeout_exception_mapped(self, signed: SignedRequest) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError) as exc_info:
            _transport(handler).send(signed, 30.0)
        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert exc_info.value.is_timeout
        assert str(exc_info.value) == "Request timed out after 30000 ms"

    def test_deadline_cancels_body_read(self, signed: SignedRequest) -> None:
        """A body still arriving after the deadline is abandoned."""
        ticks = iter([0.0, 10.0, 10.0, 10.0])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b'{"slow": true}')

        transport = _transport(handler, clock=lambda: next(ticks))
        with pytest.raises(TransportError) as exc_info:
            transport.send(signed, 5.0)
        assert exc_info.value.kind is ErrorKind.TIMEOUT

    @pytest.mark.parametrize(
        "prefix",
        [
            b"",
            b'HTTP/1.1 200 OK\r\nContent-Length: 10\r\n\r\n{"a"',
        ],
        ids=["before-headers", "mid-body"],
    )
    def test_stalled_server_released_at_deadline(
        self, credentials: Credentials, prefix: bytes
    ) -> None:
        """A server that goes silent cannot hold the caller past timeout."""
        server = _StallingServer(prefix)
        descriptor = RequestDescriptor.create(
            f"http://127.0.0.1:{server.port}/items"
        )
        signed = RequestSigner(SERVICE, REGION).sign(
            descriptor, credentials, EPOCH
        )
        client = httpx.Client(trust_env=False)
        transport = HttpxTransport(client)
        started = time.monotonic()
        try:
            with pytest.raises(TransportError) as exc_info:
                transport.send(signed, 0.5)
            elapsed = time.monotonic() - started
        finally:
            server.close()
            client.close()

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert str(exc_info.value) == "Request timed out after 500 ms"
        assert elapsed < 0.9

    def test_unexpected_error_reaches_caller(
        self, signed: SignedRequest
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("handler bug")

        with pytest.raises(RuntimeError, match="handler bug"):
            _transport(handler).send(signed, 5.0)

    def test_network_error_mapped(self, signed: SignedRequest) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError, match="connection refused") as e:
            _transport(handler).send(signed, 5.0)
        assert e.value.kind is ErrorKind.NETWORK

    def test_close_only_owned_client(self) -> None:
        client = httpx.Client()
        HttpxTransport(client).close()
        assert not client.is_closed
        client.close()

        with HttpxTransport() as owned:
            inner = owned._client
        assert inner.is_closed


def test_timeout_message() -> None:
    assert timeout_message(0.25) == "Request timed out after 250 ms"
