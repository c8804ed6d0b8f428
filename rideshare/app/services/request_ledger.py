"""
Trip request ledger.

Passenger seat requests and their lifecycle:
    pending  -> approved | rejected | cancelled   (editable by the passenger)
    approved -> cancelled   (seats go back to the trip)

Approval reserves seats and flips the request status in one transaction.
Every status change is a conditional UPDATE on the current status, so a
request decided concurrently by two actors changes state only once.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.app.core.exceptions import (
    ValidationError,
    InsufficientPermissionsError,
    TripRequestNotFoundError,
    DuplicateRequestError,
    SelfRequestError,
    SeatUnavailableError,
    TripAlreadyStartedError,
    InvalidStateTransitionError,
)
from rideshare.app.models.stop_point import StopPoint
from rideshare.app.models.trip import Trip
from rideshare.app.models.trip_request import TripRequest
from rideshare.app.models.trip_enums import (
    TripStatus,
    TripRequestStatus,
    ACTIVE_REQUEST_STATUSES,
    can_transition_request,
)
from rideshare.app.schemas.trip_request import TripRequestCreate, TripRequestUpdate
from rideshare.app.services import capacity_allocator
from rideshare.app.services.audit import log_event, AuditAction
from rideshare.app.services.trip_registry import get_trip, has_departed, utcnow, as_utc

logger = logging.getLogger("rideshare.requests")


async def get_request(db: AsyncSession, request_id: int) -> TripRequest:
    """
    Fetch a trip request by ID.

    Raises:
        TripRequestNotFoundError: Request does not exist
    """
    result = await db.execute(select(TripRequest).where(TripRequest.id == request_id))
    trip_request = result.scalar_one_or_none()

    if not trip_request:
        raise TripRequestNotFoundError(request_id)

    return trip_request


async def _find_active_request(db: AsyncSession, trip_id: int, passenger_id: int) -> Optional[TripRequest]:
    result = await db.execute(
        select(TripRequest).where(
            TripRequest.trip_id == trip_id,
            TripRequest.passenger_id == passenger_id,
            TripRequest.status.in_(ACTIVE_REQUEST_STATUSES),
        )
    )
    return result.scalars().first()


async def _validate_stops(db: AsyncSession, trip: Trip, data: TripRequestCreate) -> None:
    stop_ids = [s for s in (data.pickup_stop_id, data.dropoff_stop_id) if s is not None]
    if not stop_ids:
        return

    result = await db.execute(select(StopPoint).where(StopPoint.id.in_(stop_ids)))
    stops = {stop.id: stop for stop in result.scalars().all()}

    pickup = stops.get(data.pickup_stop_id) if data.pickup_stop_id is not None else None
    dropoff = stops.get(data.dropoff_stop_id) if data.dropoff_stop_id is not None else None

    for label, stop_id, stop in (("pickup", data.pickup_stop_id, pickup), ("dropoff", data.dropoff_stop_id, dropoff)):
        if stop_id is not None and (stop is None or stop.route_id != trip.route_id):
            raise ValidationError(
                f"The {label} stop is not on this trip's route",
                details={f"{label}_stop_id": stop_id, "route_id": trip.route_id}
            )

    if pickup is not None and not pickup.is_pickup_point:
        raise ValidationError("Selected stop does not allow pickups", details={"pickup_stop_id": pickup.id})

    if dropoff is not None and not dropoff.is_dropoff_point:
        raise ValidationError("Selected stop does not allow dropoffs", details={"dropoff_stop_id": dropoff.id})

    if pickup is not None and dropoff is not None and pickup.stop_order >= dropoff.stop_order:
        raise ValidationError(
            "Pickup stop must come before dropoff stop",
            details={"pickup_stop_id": pickup.id, "dropoff_stop_id": dropoff.id}
        )


async def create_request(db: AsyncSession, trip_id: int, passenger_id: int, data: TripRequestCreate) -> TripRequest:
    """
    Request seats on a trip.

    Only the upper bound on seats is checked here. Remaining capacity is
    enforced when the driver approves.

    Raises:
        TripNotFoundError: Trip does not exist
        SelfRequestError: Passenger is the trip's driver
        InvalidStateTransitionError: Trip is not scheduled
        TripAlreadyStartedError: Trip has departed
        DuplicateRequestError: Passenger already holds an active request
        SeatUnavailableError: Seats outside [1, available_seats]
        ValidationError: Pickup/dropoff stops invalid for the route
    """
    trip = await get_trip(db, trip_id)

    if trip.driver_id == passenger_id:
        raise SelfRequestError(trip.id)

    if trip.status != TripStatus.SCHEDULED:
        raise InvalidStateTransitionError(
            "trip", trip.id, trip.status.value, TripStatus.SCHEDULED.value,
            message=f"Trip is {trip.status.value} and no longer accepts requests",
        )

    if has_departed(trip):
        raise TripAlreadyStartedError(trip.id, "Cannot request seats on a trip that has departed")

    if await _find_active_request(db, trip.id, passenger_id):
        raise DuplicateRequestError(trip.id, passenger_id)

    seats = data.requested_seats
    if seats < 1 or seats > trip.available_seats:
        raise SeatUnavailableError(trip.id, seats, remaining=trip.remaining_seats)

    await _validate_stops(db, trip, data)

    price_per_seat = trip.price_per_seat or Decimal("0")
    trip_request = TripRequest(
        trip_id=trip.id,
        passenger_id=passenger_id,
        pickup_stop_id=data.pickup_stop_id,
        dropoff_stop_id=data.dropoff_stop_id,
        requested_seats=seats,
        message=data.message,
        pickup_time=as_utc(data.pickup_time),
        dropoff_time=as_utc(data.dropoff_time),
        total_price=price_per_seat * seats,
        status=TripRequestStatus.PENDING,
    )
    db.add(trip_request)

    try:
        await db.flush()
    except IntegrityError:
        # Lost a race against another request from the same passenger
        await db.rollback()
        raise DuplicateRequestError(trip_id, passenger_id)

    await db.commit()
    await db.refresh(trip_request)

    logger.info(
        "Trip request created",
        extra={"request_id": trip_request.id, "trip_id": trip.id, "passenger_id": passenger_id, "seats": seats},
    )
    await log_event(
        db,
        action=AuditAction.TRIP_REQUEST_CREATED,
        actor_id=passenger_id,
        target_user_id=trip.driver_id,
        metadata={"request_id": trip_request.id, "trip_id": trip.id, "requested_seats": seats},
    )
    return trip_request


async def _flip_status(
    db: AsyncSession,
    trip_request: TripRequest,
    current: TripRequestStatus,
    target: TripRequestStatus,
    expected_seats: Optional[int] = None,
    **values
) -> None:
    request_id = trip_request.id
    conditions = [TripRequest.id == request_id, TripRequest.status == current]
    if expected_seats is not None:
        conditions.append(TripRequest.requested_seats == expected_seats)

    result = await db.execute(
        update(TripRequest)
        .where(*conditions)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Rollback expires the instance; only plain values are safe past this point
        await db.rollback()
        latest = await get_request(db, request_id)
        await db.refresh(latest)
        raise InvalidStateTransitionError("trip request", request_id, latest.status.value, target.value)


def _ensure_transition(trip_request: TripRequest, target: TripRequestStatus) -> None:
    if not can_transition_request(trip_request.status, target):
        raise InvalidStateTransitionError(
            "trip request", trip_request.id, trip_request.status.value, target.value
        )


async def approve_request(
    db: AsyncSession,
    request_id: int,
    driver_id: int,
    reason: Optional[str] = None
) -> TripRequest:
    """
    Approve a pending request (driver only).

    Seats are reserved and the status flipped in the same transaction. If
    the seats are gone the request stays pending and SeatUnavailableError
    propagates.
    """
    trip_request = await get_request(db, request_id)
    trip = await get_trip(db, trip_request.trip_id)

    if trip.driver_id != driver_id:
        raise InsufficientPermissionsError("Only the trip's driver can decide on requests")

    _ensure_transition(trip_request, TripRequestStatus.APPROVED)

    if trip.status != TripStatus.SCHEDULED:
        raise InvalidStateTransitionError(
            "trip", trip.id, trip.status.value, TripStatus.SCHEDULED.value,
            message=f"Trip is {trip.status.value} and no longer accepts approvals",
        )

    if has_departed(trip):
        raise TripAlreadyStartedError(trip.id, "Cannot approve requests on a trip that has departed")

    trip_id = trip.id
    seats = trip_request.requested_seats
    try:
        reservation = await capacity_allocator.reserve(db, trip_id, seats)
    except SeatUnavailableError:
        await db.rollback()
        logger.info("Approval rejected for lack of seats", extra={"request_id": request_id, "trip_id": trip_id})
        raise

    await _flip_status(
        db,
        trip_request,
        TripRequestStatus.PENDING,
        TripRequestStatus.APPROVED,
        expected_seats=seats,
        decided_at=utcnow(),
        decision_reason=reason,
    )
    await db.commit()
    await db.refresh(trip_request)
    await db.refresh(trip)

    logger.info(
        "Trip request approved",
        extra={
            "request_id": request_id,
            "trip_id": trip.id,
            "seats": seats,
            "remaining_seats": reservation.remaining_seats,
            "attempts": reservation.attempts,
        },
    )
    await log_event(
        db,
        action=AuditAction.TRIP_REQUEST_APPROVED,
        actor_id=driver_id,
        target_user_id=trip_request.passenger_id,
        metadata={"request_id": request_id, "trip_id": trip.id, "seats": seats},
    )
    return trip_request


async def reject_request(
    db: AsyncSession,
    request_id: int,
    driver_id: int,
    reason: Optional[str] = None
) -> TripRequest:
    """Reject a pending request (driver only)."""
    trip_request = await get_request(db, request_id)
    trip = await get_trip(db, trip_request.trip_id)

    if trip.driver_id != driver_id:
        raise InsufficientPermissionsError("Only the trip's driver can decide on requests")

    _ensure_transition(trip_request, TripRequestStatus.REJECTED)

    await _flip_status(
        db,
        trip_request,
        TripRequestStatus.PENDING,
        TripRequestStatus.REJECTED,
        decided_at=utcnow(),
        decision_reason=reason,
    )
    await db.commit()
    await db.refresh(trip_request)

    logger.info("Trip request rejected", extra={"request_id": request_id, "trip_id": trip.id})
    await log_event(
        db,
        action=AuditAction.TRIP_REQUEST_REJECTED,
        actor_id=driver_id,
        target_user_id=trip_request.passenger_id,
        metadata={"request_id": request_id, "trip_id": trip.id, "reason": reason},
    )
    return trip_request


async def update_request(
    db: AsyncSession,
    request_id: int,
    passenger_id: int,
    data: TripRequestUpdate
) -> TripRequest:
    """
    Edit a pending request (passenger only).

    Seats are bounded by the trip's capacity as on creation. ``total_price``
    is recomputed only when the seat count changes. The write is conditional
    on the request still being pending, so an edit racing the driver's
    decision loses cleanly.

    Raises:
        InsufficientPermissionsError: Caller is not the requesting passenger
        InvalidStateTransitionError: Request is no longer pending
        TripAlreadyStartedError: Trip has departed
        SeatUnavailableError: Seats above the trip's capacity
        ValidationError: Null seat count or invalid stops
    """
    trip_request = await get_request(db, request_id)

    if trip_request.passenger_id != passenger_id:
        raise InsufficientPermissionsError("Only the requesting passenger can edit this request")

    if trip_request.status != TripRequestStatus.PENDING:
        raise InvalidStateTransitionError(
            "trip request", trip_request.id, trip_request.status.value, TripRequestStatus.PENDING.value,
            message="Only pending requests can be edited",
        )

    trip = await get_trip(db, trip_request.trip_id)
    if has_departed(trip):
        raise TripAlreadyStartedError(trip.id, "Cannot edit a request on a trip that has departed")

    changes = data.model_dump(exclude_unset=True)
    if "requested_seats" in changes and changes["requested_seats"] is None:
        raise ValidationError("Fields cannot be null: requested_seats", details={"fields": ["requested_seats"]})

    seats = changes.get("requested_seats", trip_request.requested_seats)
    if seats > trip.available_seats:
        raise SeatUnavailableError(trip.id, seats, remaining=trip.remaining_seats)

    await _validate_stops(db, trip, TripRequestCreate(
        requested_seats=seats,
        pickup_stop_id=changes.get("pickup_stop_id", trip_request.pickup_stop_id),
        dropoff_stop_id=changes.get("dropoff_stop_id", trip_request.dropoff_stop_id),
    ))

    if seats != trip_request.requested_seats:
        changes["total_price"] = (trip.price_per_seat or Decimal("0")) * seats
    for field in ("pickup_time", "dropoff_time"):
        if field in changes:
            changes[field] = as_utc(changes[field])

    trip_id = trip.id
    driver_id = trip.driver_id
    if changes:
        result = await db.execute(
            update(TripRequest)
            .where(TripRequest.id == request_id, TripRequest.status == TripRequestStatus.PENDING)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            latest = await get_request(db, request_id)
            await db.refresh(latest)
            raise InvalidStateTransitionError(
                "trip request", request_id, latest.status.value, TripRequestStatus.PENDING.value,
                message="Only pending requests can be edited",
            )

    await db.commit()
    await db.refresh(trip_request)

    logger.info("Trip request updated", extra={"request_id": request_id, "fields": sorted(changes)})
    await log_event(
        db,
        action=AuditAction.TRIP_REQUEST_UPDATED,
        actor_id=passenger_id,
        target_user_id=driver_id,
        metadata={"request_id": request_id, "trip_id": trip_id, "fields": sorted(changes)},
    )
    return trip_request


async def cancel_request(db: AsyncSession, request_id: int, passenger_id: int) -> TripRequest:
    """
    Cancel a pending or approved request (passenger only).

    Cancelling an approved request returns its seats in the same transaction.
    """
    trip_request = await get_request(db, request_id)

    if trip_request.passenger_id != passenger_id:
        raise InsufficientPermissionsError("Only the requesting passenger can cancel this request")

    _ensure_transition(trip_request, TripRequestStatus.CANCELLED)

    previous = trip_request.status
    await _flip_status(
        db,
        trip_request,
        previous,
        TripRequestStatus.CANCELLED,
        cancelled_at=utcnow(),
    )

    if previous == TripRequestStatus.APPROVED:
        await capacity_allocator.release(db, trip_request.trip_id, trip_request.requested_seats)

    await db.commit()
    await db.refresh(trip_request)

    logger.info(
        "Trip request cancelled",
        extra={"request_id": request_id, "trip_id": trip_request.trip_id, "previous_status": previous.value},
    )
    await log_event(
        db,
        action=AuditAction.TRIP_REQUEST_CANCELLED,
        actor_id=passenger_id,
        metadata={
            "request_id": request_id,
            "trip_id": trip_request.trip_id,
            "previous_status": previous.value,
            "seats_released": trip_request.requested_seats if previous == TripRequestStatus.APPROVED else 0,
        },
    )
    return trip_request


async def list_trip_requests(
    db: AsyncSession,
    trip_id: int,
    status: Optional[TripRequestStatus] = None
) -> List[TripRequest]:
    """Requests on a trip, oldest first."""
    await get_trip(db, trip_id)

    query = select(TripRequest).where(TripRequest.trip_id == trip_id)
    if status is not None:
        query = query.where(TripRequest.status == status)

    result = await db.execute(query.order_by(TripRequest.created_at, TripRequest.id))
    return list(result.scalars().all())


async def list_passenger_requests(
    db: AsyncSession,
    passenger_id: int,
    status: Optional[TripRequestStatus] = None
) -> List[TripRequest]:
    """A passenger's requests, newest first."""
    query = select(TripRequest).where(TripRequest.passenger_id == passenger_id)
    if status is not None:
        query = query.where(TripRequest.status == status)

    result = await db.execute(query.order_by(TripRequest.created_at.desc(), TripRequest.id.desc()))
    return list(result.scalars().all())


async def get_trip_request_stats(db: AsyncSession, trip_id: int) -> Dict[TripRequestStatus, dict]:
    """
    Count, seat sum and value sum per request status for a trip.

    Every status is present, zeroed when the trip has no such requests.
    """
    await get_trip(db, trip_id)

    result = await db.execute(
        select(
            TripRequest.status,
            func.count(TripRequest.id),
            func.coalesce(func.sum(TripRequest.requested_seats), 0),
            func.coalesce(func.sum(TripRequest.total_price), 0),
        )
        .where(TripRequest.trip_id == trip_id)
        .group_by(TripRequest.status)
    )

    stats = {
        status: {"count": 0, "total_seats": 0, "total_value": Decimal("0.00")}
        for status in TripRequestStatus
    }
    for status, count, seats, value in result.all():
        stats[status] = {
            "count": count,
            "total_seats": int(seats),
            "total_value": Decimal(str(value)).quantize(Decimal("0.01")),
        }
    return stats
