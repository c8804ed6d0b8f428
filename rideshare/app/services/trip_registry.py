"""
Trip registry service.

Trip posting, lifecycle transitions, availability and search.

Lifecycle (terminal states: completed, cancelled):
    scheduled -> active -> completed
    scheduled -> cancelled
    active    -> cancelled

Drivers cannot update or cancel a trip once its departure time has
passed, whatever its stored status. System cancellations skip that check.
"""

import logging
from datetime import datetime, timedelta, timezone, date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.app.core.exceptions import (
    ValidationError,
    InsufficientPermissionsError,
    TripNotFoundError,
    TripAlreadyStartedError,
    InvalidStateTransitionError,
)
from rideshare.app.models.route import Route
from rideshare.app.models.trip import Trip
from rideshare.app.models.trip_request import TripRequest
from rideshare.app.models.trip_enums import TripStatus, TripRequestStatus, can_transition_trip
from rideshare.app.schemas.trip import TripCreate, TripUpdate, TripSearchFilters
from rideshare.app.services import capacity_allocator, geo_index
from rideshare.app.services.audit import log_event, AuditAction
from rideshare.app.services.route_catalog import get_route

logger = logging.getLogger("rideshare.trips")

# TripUpdate fields backed by NOT NULL columns
NON_NULLABLE_TRIP_FIELDS = (
    "departure_time", "available_seats", "currency", "pickup_flexibility_minutes", "is_recurring",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC. Naive values (SQLite, clients) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def has_departed(trip: Trip, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) >= as_utc(trip.departure_time)


def is_bookable(trip: Trip, now: Optional[datetime] = None) -> bool:
    """Scheduled, departing strictly in the future, with seats left."""
    return (
        trip.status == TripStatus.SCHEDULED
        and not has_departed(trip, now)
        and trip.remaining_seats > 0
    )


def _transition(trip: Trip, target: TripStatus) -> None:
    if not can_transition_trip(trip.status, target):
        raise InvalidStateTransitionError("trip", trip.id, trip.status.value, target.value)
    trip.status = target


def _ensure_driver(trip: Trip, actor_id: int) -> None:
    if trip.driver_id != actor_id:
        raise InsufficientPermissionsError("Only the trip's driver can perform this action")


def _ensure_not_departed(trip: Trip, action: str) -> None:
    if has_departed(trip):
        raise TripAlreadyStartedError(trip.id, f"Cannot {action} a trip after its departure time")


def _check_schedule(departure: datetime, arrival: Optional[datetime]) -> None:
    if departure <= utcnow():
        raise ValidationError("Departure time must be in the future", details={"departure_time": departure.isoformat()})

    if arrival is not None and arrival <= departure:
        raise ValidationError("Arrival time must be after departure time", details={"arrival_time": arrival.isoformat()})


async def _reload(db: AsyncSession, trip: Trip) -> Trip:
    await db.commit()
    await db.refresh(trip)
    return trip


async def get_trip(db: AsyncSession, trip_id: int) -> Trip:
    """
    Fetch a trip by ID.

    Raises:
        TripNotFoundError: Trip does not exist
    """
    result = await db.execute(select(Trip).where(Trip.id == trip_id))
    trip = result.scalar_one_or_none()

    if not trip:
        raise TripNotFoundError(trip_id)

    return trip


async def create_trip(db: AsyncSession, driver_id: int, data: TripCreate) -> Trip:
    """
    Post a new trip on an active route.

    Raises:
        RouteNotFoundError: Route missing or deactivated
        ValidationError: Departure not in the future or arrival not after departure
    """
    route = await get_route(db, data.route_id)

    departure = as_utc(data.departure_time)
    arrival = as_utc(data.arrival_time)
    _check_schedule(departure, arrival)

    trip = Trip(
        route_id=route.id,
        driver_id=driver_id,
        title=data.title,
        description=data.description,
        departure_time=departure,
        arrival_time=arrival,
        available_seats=data.available_seats,
        seats_committed=0,
        version=0,
        price_per_seat=data.price_per_seat,
        currency=data.currency.upper(),
        status=TripStatus.SCHEDULED,
        pickup_flexibility_minutes=data.pickup_flexibility_minutes,
        special_instructions=data.special_instructions,
        is_recurring=data.is_recurring,
        recurring_pattern=data.recurring_pattern,
    )
    db.add(trip)
    await db.flush()
    await _reload(db, trip)

    logger.info(
        "Trip created",
        extra={"trip_id": trip.id, "route_id": route.id, "driver_id": driver_id, "available_seats": trip.available_seats},
    )
    await log_event(
        db,
        action=AuditAction.TRIP_CREATED,
        actor_id=driver_id,
        metadata={"trip_id": trip.id, "route_id": route.id, "available_seats": trip.available_seats},
    )
    return trip


async def update_trip(db: AsyncSession, trip_id: int, actor_id: int, data: TripUpdate) -> Trip:
    """
    Update a scheduled trip before it departs (driver only).

    A capacity change goes through the allocator and is only accepted
    while no seats are committed.
    """
    trip = await get_trip(db, trip_id)
    _ensure_driver(trip, actor_id)
    _ensure_not_departed(trip, "update")

    if trip.status != TripStatus.SCHEDULED:
        raise InvalidStateTransitionError("trip", trip.id, trip.status.value, TripStatus.SCHEDULED.value)

    changes = data.model_dump(exclude_unset=True)

    nulls = sorted(field for field in NON_NULLABLE_TRIP_FIELDS if field in changes and changes[field] is None)
    if nulls:
        raise ValidationError(f"Fields cannot be null: {', '.join(nulls)}", details={"fields": nulls})

    if "departure_time" in changes or "arrival_time" in changes:
        departure = as_utc(changes.get("departure_time") or trip.departure_time)
        arrival = as_utc(changes["arrival_time"]) if "arrival_time" in changes else as_utc(trip.arrival_time)
        _check_schedule(departure, arrival)
        changes["departure_time"] = departure
        changes["arrival_time"] = arrival

    new_capacity = changes.pop("available_seats", None)
    if new_capacity is not None and new_capacity != trip.available_seats:
        # Refreshes the instance, so run before applying the other fields
        await capacity_allocator.resize(db, trip.id, new_capacity)

    if changes.get("currency"):
        changes["currency"] = changes["currency"].upper()

    for field, value in changes.items():
        setattr(trip, field, value)

    await _reload(db, trip)

    fields = sorted(changes) + (["available_seats"] if new_capacity is not None else [])
    await log_event(
        db,
        action=AuditAction.TRIP_UPDATED,
        actor_id=actor_id,
        metadata={"trip_id": trip.id, "fields": fields},
    )
    return trip


async def start_trip(db: AsyncSession, trip_id: int, actor_id: int) -> Trip:
    """Move a scheduled trip to active (driver only)."""
    trip = await get_trip(db, trip_id)
    _ensure_driver(trip, actor_id)

    _transition(trip, TripStatus.ACTIVE)
    trip.started_at = utcnow()
    await _reload(db, trip)

    logger.info("Trip started", extra={"trip_id": trip.id, "driver_id": actor_id})
    await log_event(db, action=AuditAction.TRIP_STARTED, actor_id=actor_id, metadata={"trip_id": trip.id})
    return trip


async def complete_trip(db: AsyncSession, trip_id: int, actor_id: int) -> Trip:
    """Move an active trip to completed (driver only)."""
    trip = await get_trip(db, trip_id)
    _ensure_driver(trip, actor_id)

    _transition(trip, TripStatus.COMPLETED)
    trip.completed_at = utcnow()
    await _reload(db, trip)

    logger.info("Trip completed", extra={"trip_id": trip.id, "driver_id": actor_id})
    await log_event(db, action=AuditAction.TRIP_COMPLETED, actor_id=actor_id, metadata={"trip_id": trip.id})
    return trip


async def cancel_trip(
    db: AsyncSession,
    trip_id: int,
    actor_id: Optional[int] = None,
    system: bool = False,
    reason: Optional[str] = None
) -> Trip:
    """
    Cancel a trip.

    Drivers may only cancel before departure. ``system=True`` is for
    administrative cancellations and skips both the driver and time checks.

    Raises:
        InsufficientPermissionsError: Actor is not the driver
        TripAlreadyStartedError: Departure time has passed
        InvalidStateTransitionError: Trip is already completed or cancelled
    """
    trip = await get_trip(db, trip_id)

    if not system:
        _ensure_driver(trip, actor_id)
        _ensure_not_departed(trip, "cancel")

    _transition(trip, TripStatus.CANCELLED)
    trip.cancelled_at = utcnow()
    await _reload(db, trip)

    logger.info("Trip cancelled", extra={"trip_id": trip.id, "actor_id": actor_id, "system": system})
    await log_event(
        db,
        action=AuditAction.TRIP_CANCELLED,
        actor_id=actor_id,
        metadata={"trip_id": trip.id, "system": system, "reason": reason},
    )
    return trip


async def remaining_seats(db: AsyncSession, trip_id: int) -> int:
    """Available seats minus approved seats, computed from the request ledger."""
    return await capacity_allocator.remaining_seats(db, trip_id)


async def has_available_seats(db: AsyncSession, trip_id: int, seats: int = 1) -> bool:
    return await remaining_seats(db, trip_id) >= seats


def _day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _near(coordinate, center, radius_km: float) -> bool:
    return coordinate is not None and geo_index.distance_km(center, coordinate) <= radius_km


async def search_trips(db: AsyncSession, filters: TripSearchFilters) -> Tuple[List[Trip], int]:
    """
    Bookable trips matching ``filters``, soonest departure first.

    ``min_seats`` is applied after aggregating approved seats per trip.
    Coordinate filters compare against the route's start (``from_*``) and
    end (``to_*``) and are applied before pagination.
    """
    now = utcnow()
    approved_seats = func.coalesce(func.sum(TripRequest.requested_seats), 0)
    remaining = Trip.available_seats - approved_seats

    query = (
        select(Trip, Route)
        .join(Route, Route.id == Trip.route_id)
        .outerjoin(
            TripRequest,
            and_(TripRequest.trip_id == Trip.id, TripRequest.status == TripRequestStatus.APPROVED),
        )
        .where(
            Trip.status == TripStatus.SCHEDULED,
            Trip.departure_time > now,
            Route.is_active == True,
        )
    )

    if filters.route_id is not None:
        query = query.where(Trip.route_id == filters.route_id)

    if filters.start_location:
        query = query.where(Route.start_location.ilike(f"%{filters.start_location.strip()}%"))

    if filters.end_location:
        query = query.where(Route.end_location.ilike(f"%{filters.end_location.strip()}%"))

    if filters.departure_date is not None:
        day_start, day_end = _day_bounds(filters.departure_date)
        query = query.where(Trip.departure_time >= day_start, Trip.departure_time < day_end)

    if filters.max_price is not None:
        query = query.where(or_(Trip.price_per_seat.is_(None), Trip.price_per_seat <= filters.max_price))

    query = (
        query.group_by(Trip.id, Route.id)
        .having(remaining >= filters.min_seats)
        .order_by(Trip.departure_time, Trip.id)
    )

    origin = None
    if filters.from_latitude is not None and filters.from_longitude is not None:
        origin = geo_index.Coordinate(filters.from_latitude, filters.from_longitude)

    destination = None
    if filters.to_latitude is not None and filters.to_longitude is not None:
        destination = geo_index.Coordinate(filters.to_latitude, filters.to_longitude)

    if origin is None and destination is None:
        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await db.execute(query.limit(filters.limit).offset(filters.offset))
        return [trip for trip, _ in result.all()], total

    result = await db.execute(query)
    matches = [
        trip for trip, route in result.all()
        if (origin is None or _near(route.start_coordinate, origin, filters.radius_km))
        and (destination is None or _near(route.end_coordinate, destination, filters.radius_km))
    ]
    return matches[filters.offset:filters.offset + filters.limit], len(matches)


async def list_driver_trips(db: AsyncSession, driver_id: int, include_expired: bool = False) -> List[Trip]:
    """Trips posted by a driver. Past departures only with ``include_expired``."""
    query = select(Trip).where(Trip.driver_id == driver_id)
    if not include_expired:
        query = query.where(Trip.departure_time > utcnow())

    result = await db.execute(query.order_by(Trip.departure_time, Trip.id))
    return list(result.scalars().all())


async def list_route_trips(db: AsyncSession, route_id: int, include_expired: bool = False) -> List[Trip]:
    """Non-cancelled trips on a route. Past departures only with ``include_expired``."""
    await get_route(db, route_id)

    query = select(Trip).where(Trip.route_id == route_id, Trip.status != TripStatus.CANCELLED)
    if not include_expired:
        query = query.where(Trip.departure_time > utcnow())

    result = await db.execute(query.order_by(Trip.departure_time, Trip.id))
    return list(result.scalars().all())


async def list_passengers(db: AsyncSession, trip_id: int) -> List[TripRequest]:
    """Approved requests on a trip."""
    await get_trip(db, trip_id)

    result = await db.execute(
        select(TripRequest)
        .where(TripRequest.trip_id == trip_id, TripRequest.status == TripRequestStatus.APPROVED)
        .order_by(TripRequest.created_at, TripRequest.id)
    )
    return list(result.scalars().all())


async def total_revenue(db: AsyncSession, trip_id: int) -> Tuple[Decimal, int, int]:
    """
    Revenue from approved requests.

    Returns:
        (total price, approved request count, seats sold)
    """
    await get_trip(db, trip_id)

    result = await db.execute(
        select(
            func.coalesce(func.sum(TripRequest.total_price), 0),
            func.count(TripRequest.id),
            func.coalesce(func.sum(TripRequest.requested_seats), 0),
        ).where(TripRequest.trip_id == trip_id, TripRequest.status == TripRequestStatus.APPROVED)
    )
    revenue, count, seats = result.one()
    return Decimal(str(revenue)).quantize(Decimal("0.01")), count, seats
