"""Shared pytest fixtures for pool, auth flow and client store tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest

from tests.mocks.mock_telegram_client import MockClientFactory, MockTelegramClient
from tsg.config.settings import TelegramCredentials
from tsg.telegram import TelegramClientPool

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

TEST_API_ID = 424242
TEST_API_HASH = "test-api-hash"


@dataclass(slots=True)
class ManualClock:
    """Monotonic clock stand-in advanced explicitly by tests."""

    now: float = 1_000.0

    def __call__(self) -> float:
        """Return the current fake time."""
        return self.now

    def advance(self, seconds: float) -> None:
        """Move the fake time forward."""
        self.now += seconds


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep developer shells from leaking config into tests.
    for name in (
        "TSG_BIND",
        "TSG_PORT",
        "TSG_LOG_LEVEL",
        "TSG_CORS_ALLOW_ORIGINS",
        "TSG_POOL_FRESHNESS_SECONDS",
        "TELEGRAM_API_ID",
        "TELEGRAM_API_HASH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_tg_client() -> MockTelegramClient:
    """Provide a standalone scripted Telethon client double."""
    return MockTelegramClient(api_id=TEST_API_ID, api_hash=TEST_API_HASH)


@pytest.fixture
def mock_client_factory() -> MockClientFactory:
    """Provide a protocol client factory producing scripted mocks."""
    return MockClientFactory()


@pytest.fixture
def telegram_credentials() -> TelegramCredentials:
    """Provide fixed application credentials."""
    return TelegramCredentials(api_id=TEST_API_ID, api_hash=TEST_API_HASH)


@pytest.fixture
def manual_clock() -> ManualClock:
    """Provide a controllable monotonic clock."""
    return ManualClock()


@pytest.fixture
async def client_pool(
    mock_client_factory: MockClientFactory,
    telegram_credentials: TelegramCredentials,
    manual_clock: ManualClock,
) -> AsyncIterator[TelegramClientPool]:
    """Provide a pool wired to mocks, drained after the test."""
    pool = TelegramClientPool(
        client_factory=mock_client_factory,
        credentials_provider=lambda: telegram_credentials,
        clock=manual_clock,
    )
    try:
        yield pool
    finally:
        await pool.shutdown()
