"""Shared pytest fixtures for the booking pipeline test suite."""
from datetime import date
from typing import List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.main import app
from booking.models import (
    IdentityDocument,
    PassengerCounts,
    PassengerRecord,
    PassengerType,
    SearchCriteria,
    SliceQuery,
)
from booking.poller import ConfirmationPoller
from booking.session import BookingSession
from booking.validator import PassengerDataValidator
from core.polling import RetryPolicy
from core.session_store import InMemorySessionStore
from db.database import get_db
from db.models import Base
from providers.factory import get_offers_provider, get_payment_gateway
from providers.mock.offers_provider import MockOffersProvider
from providers.mock.payment_gateway import MockPaymentGateway

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

TODAY = date(2026, 3, 1)

RETURN_TRIP = SearchCriteria(
    slices=(SliceQuery("LAX", "JFK", "2026-04-10"), SliceQuery("JFK", "LAX", "2026-04-17")),
    passengers=PassengerCounts(adults=1),
)


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(TEST_DB_URL, echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncSession:
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as session:
        yield session


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def offers_provider():
    return MockOffersProvider()


@pytest.fixture
def gateway():
    return MockPaymentGateway()


@pytest.fixture
def validator():
    return PassengerDataValidator(today=lambda: TODAY)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def poller(gateway, fake_sleep):
    return ConfirmationPoller(gateway, RetryPolicy(max_attempts=20, interval=1.0), sleep=fake_sleep)


@pytest_asyncio.fixture
async def booking_session(store, offers_provider, gateway, validator, poller) -> BookingSession:
    return await BookingSession.start(
        "sess-1", store, offers_provider, gateway, validator=validator, poller=poller
    )


def make_passenger(passenger_id: str = "pas_1", **overrides) -> PassengerRecord:
    """A passenger record that passes every validation rule as of TODAY."""
    fields = dict(
        id=passenger_id,
        type=PassengerType.ADULT,
        title="mr",
        given_name="Alex",
        family_name="Morgan",
        gender="m",
        born_on=date(1990, 5, 15),
        email="alex@example.com",
        phone_number="+14155550123",
    )
    fields.update(overrides)
    return PassengerRecord(**fields)


def with_passport(record: PassengerRecord, expires_on: date = date(2031, 1, 1)) -> PassengerRecord:
    record.identity_document = IdentityDocument(number="X1234567", issuing_country="US", expires_on=expires_on)
    return record


# ── API test client ────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def api_client(engine, offers_provider, gateway):
    """AsyncClient wired to FastAPI with an in-memory DB and mock providers."""
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_offers_provider] = lambda: offers_provider
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
    app.dependency_overrides.clear()
