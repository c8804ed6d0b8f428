"""
Concurrency Tests.

Validates that racing seat approvals never overbook a trip. Uses a
file-backed SQLite database so each session gets its own connection.
"""

import asyncio
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from rideshare.app.db.session import Base
from rideshare.app.core.exceptions import SeatUnavailableError
from rideshare.app.models.trip_enums import TripRequestStatus
from rideshare.app.schemas.trip_request import TripRequestCreate
from rideshare.app.services import request_ledger, route_catalog, trip_registry

DRIVER_ID = 1


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


async def _trip_with_requests(factory, route_data, trip_data, capacity, seats_per_request, passengers):
    async with factory() as db:
        route = await route_catalog.create_route(db, route_data(), created_by=DRIVER_ID)
        trip = await trip_registry.create_trip(db, DRIVER_ID, trip_data(route.id, seats=capacity))
        request_ids = []
        for passenger_id in passengers:
            request = await request_ledger.create_request(
                db, trip.id, passenger_id, TripRequestCreate(requested_seats=seats_per_request)
            )
            request_ids.append(request.id)
        return trip.id, request_ids


async def _approve(factory, request_id):
    async with factory() as db:
        try:
            await request_ledger.approve_request(db, request_id, DRIVER_ID)
            return "approved"
        except SeatUnavailableError:
            return "unavailable"


@pytest.mark.asyncio
async def test_concurrent_approvals_never_overbook(session_factory, route_data, trip_data):
    """Capacity 3, two 2-seat approvals at once: exactly one wins."""
    trip_id, (first, second) = await _trip_with_requests(
        session_factory, route_data, trip_data, capacity=3, seats_per_request=2, passengers=[2, 3]
    )

    results = await asyncio.gather(_approve(session_factory, first), _approve(session_factory, second))

    assert sorted(results) == ["approved", "unavailable"]

    async with session_factory() as db:
        assert await trip_registry.remaining_seats(db, trip_id) == 1
        trip = await trip_registry.get_trip(db, trip_id)
        assert trip.seats_committed == 2

        statuses = sorted(
            r.status.value for r in await request_ledger.list_trip_requests(db, trip_id)
        )
        assert statuses == [TripRequestStatus.APPROVED.value, TripRequestStatus.PENDING.value]


@pytest.mark.asyncio
async def test_many_concurrent_single_seat_approvals(session_factory, route_data, trip_data):
    passengers = list(range(10, 16))
    trip_id, request_ids = await _trip_with_requests(
        session_factory, route_data, trip_data, capacity=4, seats_per_request=1, passengers=passengers
    )

    results = await asyncio.gather(*(_approve(session_factory, rid) for rid in request_ids))

    assert results.count("approved") == 4
    assert results.count("unavailable") == 2

    async with session_factory() as db:
        trip = await trip_registry.get_trip(db, trip_id)
        assert trip.seats_committed == 4
        assert await trip_registry.remaining_seats(db, trip_id) == 0


@pytest.mark.asyncio
async def test_interleaved_sessions_see_committed_seats(session_factory, route_data, trip_data):
    """A second session holding a stale view still cannot take seats already committed."""
    trip_id, (first, second) = await _trip_with_requests(
        session_factory, route_data, trip_data, capacity=3, seats_per_request=2, passengers=[2, 3]
    )

    async with session_factory() as stale, session_factory() as fresh:
        stale_trip = await trip_registry.get_trip(stale, trip_id)
        assert stale_trip.remaining_seats == 3

        await request_ledger.approve_request(fresh, first, DRIVER_ID)

        with pytest.raises(SeatUnavailableError) as exc_info:
            await request_ledger.approve_request(stale, second, DRIVER_ID)

        assert exc_info.value.retryable is False
