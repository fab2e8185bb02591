"""Test configuration and fixtures."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from booking_engine.core.config import Settings
from booking_engine.core.database import Database
from booking_engine.core.dependencies import Requestor, Role, issue_token
from booking_engine.models import *  # noqa: F403 - register every table on the metadata
from booking_engine.models.resource import ResourceKind
from booking_engine.services.reservation_coordinator import ReservationCoordinator

# Fixed starting point so deadline and schedule arithmetic is deterministic
BASE_TIME = datetime(2030, 6, 1, 12, 0, 0)


class FakeClock:
    """Controllable time source handed to the coordinator."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a file-backed SQLite database so sessions really contend."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'booking_engine.db'}",
        environment="test",
        workers_enabled=False,
        scheduler_item_backoff_seconds=0,
        coordinator_max_attempts=5,
        coordinator_backoff_seconds=0.01,
    )


@pytest_asyncio.fixture(scope="function")
async def database(test_settings):
    """Create the schema in a fresh database and dispose of it afterwards."""
    db = Database.from_settings(test_settings)
    await db.create_all()

    yield db

    await db.drop_all()
    await db.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(database, test_settings, clock):
    return ReservationCoordinator(database, test_settings, clock=clock)


@pytest.fixture
def admin():
    return Requestor(user_id="admin-1", roles=frozenset({Role.ADMIN}))


@pytest.fixture
def agent():
    return Requestor(user_id="agent-1", roles=frozenset({Role.AGENT}))


@pytest.fixture
def customer():
    return Requestor(user_id="customer-1", roles=frozenset({Role.CUSTOMER}))


@pytest.fixture
def make_tour(coordinator, admin, clock):
    """Create a tour starting ``starts_in`` from the current clock reading."""

    async def _make(capacity: int = 10, starts_in: timedelta = timedelta(days=30), **overrides):
        starts_at = clock.now + starts_in
        fields = {
            "name": "Fjord Kayaking",
            "description": "Three days on the water",
            "starts_at": starts_at,
            "ends_at": starts_at + timedelta(days=3),
            "capacity_total": capacity,
            "price_amount": 45000,
            "price_currency": "EUR",
        }
        fields.update(overrides)
        return await coordinator.create_resource(ResourceKind.TOUR, fields, admin)

    return _make


@pytest.fixture
def make_flight(coordinator, admin, clock):
    """Create a flight departing ``departs_in`` from the current clock reading."""

    async def _make(capacity: int = 10, departs_in: timedelta = timedelta(days=30), **overrides):
        departs_at = clock.now + departs_in
        fields = {
            "name": "Oslo to Tromso",
            "flight_number": "NB402",
            "origin": "OSL",
            "destination": "TOS",
            "departs_at": departs_at,
            "arrives_at": departs_at + timedelta(hours=2),
            "capacity_total": capacity,
            "price_amount": 12000,
            "price_currency": "EUR",
        }
        fields.update(overrides)
        return await coordinator.create_resource(ResourceKind.FLIGHT, fields, admin)

    return _make


@pytest.fixture
def make_room(coordinator, admin):
    async def _make(capacity: int = 5, max_occupancy: int = 2, **overrides):
        fields = {
            "name": "Harbour View Double",
            "hotel_name": "Hotel Nordlys",
            "room_type": "DOUBLE",
            "max_occupancy": max_occupancy,
            "capacity_total": capacity,
            "price_amount": 9000,
            "price_currency": "EUR",
        }
        fields.update(overrides)
        return await coordinator.create_resource(ResourceKind.ROOM, fields, admin)

    return _make


@pytest.fixture
def auth_headers():
    """Bearer headers for a user with the given roles."""

    def _headers(user_id: str = "customer-1", roles: tuple = ("CUSTOMER",)) -> dict:
        return {"Authorization": f"Bearer {issue_token(user_id, list(roles))}"}

    return _headers


@pytest_asyncio.fixture(scope="function")
async def test_app(database, test_settings):
    """Application wired to the test database; no lifespan, so no schedulers run."""
    from booking_engine.main import create_app

    return create_app(test_settings, database=database)


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
