# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across the test suite."""

from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import patch

import pytest

from sigclient.credentials import Credentials
from sigclient.logging import SecretFilter
from tests.vectors import (
    ACCESS_KEY_ID,
    EPOCH,
    IDENTITY_ID,
    SECRET_ACCESS_KEY,
    SESSION_TOKEN,
)


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBroker:
    """Identity broker returning scripted responses and counting calls."""

    def __init__(
        self,
        clock: FakeClock,
        *,
        identity_id: str | None = IDENTITY_ID,
        lifetime_seconds: float = 3600,
    ) -> None:
        self.clock = clock
        self.identity_id = identity_id
        self.lifetime_seconds = lifetime_seconds
        self.get_id_calls: list[str] = []
        self.get_credentials_calls: list[str] = []
        self.credentials_override: dict[str, Any] | None = None
        self.error: Exception | None = None

    def get_id(self, identity_pool_id: str) -> str | None:
        self.get_id_calls.append(identity_pool_id)
        if self.error is not None:
            raise self.error
        return self.identity_id

    def get_credentials_for_identity(self, identity_id: str) -> dict[str, Any]:
        self.get_credentials_calls.append(identity_id)
        if self.credentials_override is not None:
            return self.credentials_override
        n = len(self.get_credentials_calls)
        expires = self.clock() + timedelta(seconds=self.lifetime_seconds)
        return {
            "AccessKeyId": f"{ACCESS_KEY_ID}{n}",
            "SecretKey": SECRET_ACCESS_KEY,
            "SessionToken": f"{SESSION_TOKEN}-{n}",
            "Expiration": expires.timestamp(),
        }


@pytest.fixture(autouse=True)
def _isolate_environment() -> Iterator[None]:
    """Keep tests away from real .env files and shared redaction state."""
    with patch("sigclient.config.load_dotenv_once"):
        yield
    SecretFilter.clear_secrets()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker(clock: FakeClock) -> FakeBroker:
    return FakeBroker(clock)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        access_key_id=ACCESS_KEY_ID,
        secret_access_key=SECRET_ACCESS_KEY,
        session_token=SESSION_TOKEN,
        expires_at=EPOCH + timedelta(hours=1),
    )
