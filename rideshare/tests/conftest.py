"""
Centralized Test Configuration.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from rideshare.app.main import app
from rideshare.app.db.session import get_db, Base
from rideshare.app.core.jwt import create_access_token
from rideshare.app.core.redis_client import get_redis
import rideshare.app.core.redis_client as redis_client_module
from rideshare.app.models.enums import UserRole
from rideshare.app.schemas.route import RouteCreate, StopPointCreate
from rideshare.app.schemas.trip import TripCreate
from rideshare.app.services import route_catalog, trip_registry

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DRIVER_ID = 1
PASSENGER_ID = 2
OTHER_PASSENGER_ID = 3
ADMIN_ID = 99


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        return 1 if self.store.pop(key, None) is not None else 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Identities

def make_user(user_id: int, username: str, role: UserRole = UserRole.USER) -> dict:
    return {"sub": username, "user_id": user_id, "role": role.value}


def auth_headers(user: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def driver():
    return make_user(DRIVER_ID, "driver")


@pytest.fixture
def passenger():
    return make_user(PASSENGER_ID, "passenger")


@pytest.fixture
def other_passenger():
    return make_user(OTHER_PASSENGER_ID, "other_passenger")


@pytest.fixture
def admin():
    return make_user(ADMIN_ID, "admin", UserRole.ADMIN)


# Domain data

def route_payload(name: str = "Westlands Commute", stops: int = 0, **overrides) -> RouteCreate:
    values = dict(
        name=name,
        description="Weekday commute",
        start_location="Westlands",
        start_latitude=-1.2676,
        start_longitude=36.8108,
        end_location="Upper Hill",
        end_latitude=-1.2995,
        end_longitude=36.8140,
        distance_km=6.0,
        estimated_duration_minutes=20,
        is_public=True,
        stop_points=[
            StopPointCreate(
                name=f"Stop {i}",
                latitude=-1.2676 - i * 0.005,
                longitude=36.8108 + i * 0.0005,
            )
            for i in range(1, stops + 1)
        ],
    )
    values.update(overrides)
    return RouteCreate(**values)


def trip_payload(route_id: int, seats: int = 3, hours_ahead: int = 24, **overrides) -> TripCreate:
    values = dict(
        route_id=route_id,
        title="Morning ride",
        departure_time=trip_registry.utcnow() + timedelta(hours=hours_ahead),
        available_seats=seats,
        price_per_seat=Decimal("250.00"),
        currency="KES",
    )
    values.update(overrides)
    return TripCreate(**values)


@pytest.fixture
async def route(db_session):
    return await route_catalog.create_route(db_session, route_payload(stops=3), created_by=DRIVER_ID)


@pytest.fixture
async def trip(db_session, route):
    return await trip_registry.create_trip(db_session, DRIVER_ID, trip_payload(route.id))


@pytest.fixture
def route_data():
    return route_payload


@pytest.fixture
def trip_data():
    return trip_payload


@pytest.fixture
def headers_for():
    return auth_headers
