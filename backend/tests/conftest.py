"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from stkpay.config import Settings
from stkpay.app import create_app
from stkpay.mocks.daraja_gateway import SimulatedDaraja
from stkpay.services.daraja_client import DarajaClient
from stkpay.services.ledger import TransactionLedger
from stkpay.services.request_builder import PaymentRequestBuilder
from stkpay.services.token_cache import TokenCache


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: datetime = datetime(2025, 10, 17, 11, 35, 40, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    """Settings matching the simulated gateway's credentials."""
    return Settings(
        _env_file=None,
        daraja_base_url="https://sandbox.safaricom.co.ke",
        daraja_consumer_key="demo_key",
        daraja_consumer_secret="demo_secret",
        business_shortcode="174379",
        passkey="demo_passkey",
        callback_url="https://backend.example.com/callback",
        till_number="5555555",
        amount_mode="bounded",
        max_amount=30,
        fixed_amount=10,
        allowed_origins="https://perontips-fliers.vercel.app",
        demo_mode=False,
        log_level="DEBUG",
    )


@pytest.fixture
def simulator() -> SimulatedDaraja:
    return SimulatedDaraja()


@pytest_asyncio.fixture
async def daraja_client(test_settings: Settings, simulator: SimulatedDaraja) -> AsyncGenerator[DarajaClient, Any]:
    client = DarajaClient(
        base_url=test_settings.daraja_base_url,
        http_client=httpx.AsyncClient(transport=simulator.transport()),
    )
    yield client
    await client.aclose()


@pytest.fixture
def token_cache(daraja_client: DarajaClient, test_settings: Settings, clock: FakeClock) -> TokenCache:
    return TokenCache(
        daraja_client,
        test_settings.daraja_consumer_key,
        test_settings.daraja_consumer_secret,
        expiry_margin_seconds=60,
        clock=clock,
    )


@pytest.fixture
def builder(test_settings: Settings, clock: FakeClock) -> PaymentRequestBuilder:
    return PaymentRequestBuilder(test_settings, clock=clock)


@pytest.fixture
def ledger(clock: FakeClock) -> TransactionLedger:
    return TransactionLedger(clock=clock)


@pytest.fixture
def app(test_settings: Settings, simulator: SimulatedDaraja):
    return create_app(test_settings, transport=simulator.transport())


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """HTTP client bound to the app in-process."""
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await app.state.services.aclose()
