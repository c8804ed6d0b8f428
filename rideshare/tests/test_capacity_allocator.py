"""
Seat capacity allocator tests.

Covers the compare-and-swap reservation, its bounded retry and the
release/resize paths.
"""

import pytest
from rideshare.app.core.config import settings
from rideshare.app.core.exceptions import (
    SeatUnavailableError,
    ValidationError,
    InvalidStateTransitionError,
)
from rideshare.app.services import capacity_allocator, trip_registry
from rideshare.app.services.trip_registry import get_trip


@pytest.mark.asyncio
async def test_reserve_then_release_restores_remaining(db_session, trip):
    before = trip.remaining_seats

    reservation = await capacity_allocator.reserve(db_session, trip.id, 2)
    await db_session.commit()

    assert reservation.remaining_seats == before - 2
    assert reservation.attempts == 1
    assert (await get_trip(db_session, trip.id)).remaining_seats == before - 2

    await capacity_allocator.release(db_session, trip.id, 2)
    await db_session.commit()

    refreshed = await get_trip(db_session, trip.id)
    assert refreshed.remaining_seats == before
    assert refreshed.seats_committed == 0


@pytest.mark.asyncio
async def test_reserve_bumps_version(db_session, trip):
    version = trip.version

    await capacity_allocator.reserve(db_session, trip.id, 1)
    await db_session.commit()

    assert (await get_trip(db_session, trip.id)).version == version + 1


@pytest.mark.asyncio
async def test_reserve_beyond_capacity_is_not_retryable(db_session, trip):
    trip_id = trip.id

    with pytest.raises(SeatUnavailableError) as exc_info:
        await capacity_allocator.reserve(db_session, trip_id, trip.available_seats + 1)

    assert exc_info.value.retryable is False
    assert exc_info.value.details["remaining_seats"] == trip.available_seats

    await db_session.rollback()
    assert (await get_trip(db_session, trip_id)).seats_committed == 0


@pytest.mark.asyncio
async def test_reserve_rejects_non_positive_seats(db_session, trip):
    with pytest.raises(ValidationError):
        await capacity_allocator.reserve(db_session, trip.id, 0)


@pytest.mark.asyncio
async def test_reserve_retries_after_stale_version(db_session, trip, mocker):
    real_read = capacity_allocator._read_counters
    calls = []

    async def stale_once(db, trip_id):
        available, committed, version = await real_read(db, trip_id)
        calls.append(version)
        if len(calls) == 1:
            # Pretend another writer bumped the version after this read
            return available, committed, version - 1
        return available, committed, version

    mocker.patch.object(capacity_allocator, "_read_counters", side_effect=stale_once)

    reservation = await capacity_allocator.reserve(db_session, trip.id, 1)
    await db_session.commit()

    assert reservation.attempts == 2
    assert reservation.seats_committed == 1


@pytest.mark.asyncio
async def test_reserve_gives_up_after_max_retries(db_session, trip, mocker):
    real_read = capacity_allocator._read_counters

    async def always_stale(db, trip_id):
        available, committed, version = await real_read(db, trip_id)
        return available, committed, version - 1

    mocker.patch.object(capacity_allocator, "_read_counters", side_effect=always_stale)
    mocker.patch.object(settings, "capacity_max_retries", 3)

    with pytest.raises(SeatUnavailableError) as exc_info:
        await capacity_allocator.reserve(db_session, trip.id, 1)

    assert exc_info.value.retryable is True
    assert exc_info.value.details["retryable"] is True


@pytest.mark.asyncio
async def test_release_more_than_committed_fails(db_session, trip):
    await capacity_allocator.reserve(db_session, trip.id, 1)
    await db_session.commit()

    with pytest.raises(InvalidStateTransitionError):
        await capacity_allocator.release(db_session, trip.id, 2)


@pytest.mark.asyncio
async def test_resize_allowed_while_nothing_committed(db_session, trip):
    await capacity_allocator.resize(db_session, trip.id, 5)
    await db_session.commit()

    assert (await get_trip(db_session, trip.id)).available_seats == 5


@pytest.mark.asyncio
async def test_resize_rejected_once_seats_committed(db_session, trip):
    await capacity_allocator.reserve(db_session, trip.id, 1)
    await db_session.commit()

    with pytest.raises(SeatUnavailableError):
        await capacity_allocator.resize(db_session, trip.id, 5)


@pytest.mark.asyncio
async def test_resize_rejects_zero_capacity(db_session, trip):
    with pytest.raises(ValidationError):
        await capacity_allocator.resize(db_session, trip.id, 0)


@pytest.mark.asyncio
async def test_remaining_seats_without_requests_equals_capacity(db_session, trip):
    assert await trip_registry.remaining_seats(db_session, trip.id) == trip.available_seats
    assert await trip_registry.has_available_seats(db_session, trip.id, trip.available_seats)
    assert not await trip_registry.has_available_seats(db_session, trip.id, trip.available_seats + 1)
