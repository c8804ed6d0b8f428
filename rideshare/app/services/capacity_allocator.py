"""
Seat capacity allocation for trips.

All seat accounting goes through a conditional UPDATE on the trip row
(compare-and-swap on ``version``), so two approvals racing for the last
seats can never both win. Nothing here commits: the caller's transaction
commits the reservation together with the request status change.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.app.core.config import settings
from rideshare.app.core.exceptions import (
    SeatUnavailableError,
    TripNotFoundError,
    ValidationError,
    InvalidStateTransitionError,
)
from rideshare.app.models.trip import Trip
from rideshare.app.models.trip_request import TripRequest
from rideshare.app.models.trip_enums import TripRequestStatus

logger = logging.getLogger("rideshare.capacity")


@dataclass(frozen=True)
class Reservation:
    """Outcome of a successful reserve()."""
    trip_id: int
    seats: int
    seats_committed: int
    available_seats: int
    version: int
    attempts: int

    @property
    def remaining_seats(self) -> int:
        return self.available_seats - self.seats_committed


async def _read_counters(db: AsyncSession, trip_id: int):
    result = await db.execute(
        select(Trip.available_seats, Trip.seats_committed, Trip.version).where(Trip.id == trip_id)
    )
    row = result.one_or_none()
    if row is None:
        raise TripNotFoundError(trip_id)
    return row


async def _refresh_trip(db: AsyncSession, trip_id: int) -> None:
    # Keep any loaded Trip instance in sync with the core UPDATE
    trip = await db.get(Trip, trip_id)
    if trip is not None:
        await db.refresh(trip)


async def reserve(db: AsyncSession, trip_id: int, seats: int) -> Reservation:
    """
    Atomically commit ``seats`` against the trip's capacity.

    Args:
        db: Database session (transaction stays open)
        trip_id: Trip to reserve on
        seats: Number of seats (>= 1)

    Returns:
        Reservation with the counters after the update

    Raises:
        TripNotFoundError: Trip does not exist
        SeatUnavailableError: Capacity exhausted (retryable=False) or the
            version kept moving for ``capacity_max_retries`` attempts
            (retryable=True)
    """
    if seats < 1:
        raise ValidationError("Seats must be at least 1", details={"seats": seats})

    max_attempts = max(1, settings.capacity_max_retries)

    for attempt in range(1, max_attempts + 1):
        available, committed, version = await _read_counters(db, trip_id)

        if committed + seats > available:
            raise SeatUnavailableError(trip_id, seats, remaining=available - committed)

        result = await db.execute(
            update(Trip)
            .where(
                Trip.id == trip_id,
                Trip.version == version,
                Trip.seats_committed + seats <= Trip.available_seats,
            )
            .values(
                seats_committed=Trip.seats_committed + seats,
                version=Trip.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            await _refresh_trip(db, trip_id)
            logger.info(
                "Seats reserved",
                extra={"trip_id": trip_id, "seats": seats, "attempt": attempt},
            )
            return Reservation(
                trip_id=trip_id,
                seats=seats,
                seats_committed=committed + seats,
                available_seats=available,
                version=version + 1,
                attempts=attempt,
            )

        # Lost the race: another writer bumped the version
        logger.debug(
            "Seat reservation conflict, retrying",
            extra={"trip_id": trip_id, "seats": seats, "attempt": attempt},
        )

    available, committed, _ = await _read_counters(db, trip_id)
    if committed + seats > available:
        raise SeatUnavailableError(trip_id, seats, remaining=available - committed)

    logger.warning(
        "Seat reservation gave up after concurrent updates",
        extra={"trip_id": trip_id, "seats": seats, "attempts": max_attempts},
    )
    raise SeatUnavailableError(trip_id, seats, remaining=available - committed, retryable=True)


async def release(db: AsyncSession, trip_id: int, seats: int) -> None:
    """
    Return ``seats`` to the trip's pool.

    Raises:
        InvalidStateTransitionError: Fewer seats are committed than released
    """
    if seats < 1:
        raise ValidationError("Seats must be at least 1", details={"seats": seats})

    result = await db.execute(
        update(Trip)
        .where(Trip.id == trip_id, Trip.seats_committed >= seats)
        .values(
            seats_committed=Trip.seats_committed - seats,
            version=Trip.version + 1,
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        available, committed, _ = await _read_counters(db, trip_id)
        logger.error(
            "Seat release exceeds committed seats",
            extra={"trip_id": trip_id, "seats": seats, "seats_committed": committed},
        )
        raise InvalidStateTransitionError("Trip seats", trip_id, str(committed), str(committed - seats))

    await _refresh_trip(db, trip_id)
    logger.info("Seats released", extra={"trip_id": trip_id, "seats": seats})


async def resize(db: AsyncSession, trip_id: int, new_capacity: int) -> None:
    """
    Change a trip's seat ceiling while no seats are committed.

    Raises:
        ValidationError: Capacity below 1
        SeatUnavailableError: Seats are already committed on the trip
    """
    if new_capacity < 1:
        raise ValidationError("Available seats must be at least 1", details={"available_seats": new_capacity})

    result = await db.execute(
        update(Trip)
        .where(Trip.id == trip_id, Trip.seats_committed == 0)
        .values(available_seats=new_capacity, version=Trip.version + 1)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        available, committed, _ = await _read_counters(db, trip_id)
        raise SeatUnavailableError(
            trip_id,
            new_capacity,
            remaining=available - committed,
            message="Cannot change available seats once seats have been approved",
        )

    await _refresh_trip(db, trip_id)
    logger.info("Trip capacity changed", extra={"trip_id": trip_id, "available_seats": new_capacity})


async def remaining_seats(db: AsyncSession, trip_id: int) -> int:
    """Available seats minus the seats of approved requests, read from the ledger."""
    available, _, _ = await _read_counters(db, trip_id)

    result = await db.execute(
        select(func.coalesce(func.sum(TripRequest.requested_seats), 0)).where(
            TripRequest.trip_id == trip_id,
            TripRequest.status == TripRequestStatus.APPROVED,
        )
    )
    approved = result.scalar() or 0

    return available - approved
