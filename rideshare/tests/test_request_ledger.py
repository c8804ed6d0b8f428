"""
Trip request ledger tests.

Request validation, the request state machine and seat accounting on
approval and cancellation.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import select, func
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
from rideshare.app.models.trip_request import TripRequest
from rideshare.app.models.trip_enums import TripRequestStatus
from rideshare.app.schemas.route import StopPointCreate, StopPointUpdate
from rideshare.app.schemas.trip import TripUpdate
from rideshare.app.schemas.trip_request import TripRequestCreate, TripRequestUpdate
from rideshare.app.services import request_ledger, trip_registry, route_catalog
from rideshare.app.services.audit import AuditAction, get_audit_trail

DRIVER_ID = 1


async def _request(db, trip_id, passenger_id, seats=1, **kwargs):
    return await request_ledger.create_request(
        db, trip_id, passenger_id, TripRequestCreate(requested_seats=seats, **kwargs)
    )


async def _approved_seats(db, trip_id):
    result = await db.execute(
        select(func.coalesce(func.sum(TripRequest.requested_seats), 0)).where(
            TripRequest.trip_id == trip_id,
            TripRequest.status == TripRequestStatus.APPROVED,
        )
    )
    return result.scalar()


@pytest.mark.asyncio
async def test_create_request_freezes_total_price(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"], seats=2, message="Two of us")

    assert request.status == TripRequestStatus.PENDING
    assert request.total_price == Decimal("500.00")

    await trip_registry.update_trip(db_session, trip.id, DRIVER_ID, TripUpdate(price_per_seat=Decimal("400")))

    assert (await request_ledger.get_request(db_session, request.id)).total_price == Decimal("500.00")


@pytest.mark.asyncio
async def test_request_more_seats_than_capacity(db_session, route, trip_data, passenger):
    trip = await trip_registry.create_trip(db_session, DRIVER_ID, trip_data(route.id, seats=1))

    with pytest.raises(SeatUnavailableError) as exc_info:
        await _request(db_session, trip.id, passenger["user_id"], seats=2)

    assert exc_info.value.retryable is False
    count = (await db_session.execute(select(func.count(TripRequest.id)))).scalar()
    assert count == 0


@pytest.mark.asyncio
async def test_driver_cannot_request_own_trip(db_session, trip, driver):
    with pytest.raises(SelfRequestError):
        await _request(db_session, trip.id, driver["user_id"])


@pytest.mark.asyncio
async def test_duplicate_active_request(db_session, trip, passenger):
    first = await _request(db_session, trip.id, passenger["user_id"])

    with pytest.raises(DuplicateRequestError):
        await _request(db_session, trip.id, passenger["user_id"])

    await request_ledger.cancel_request(db_session, first.id, passenger["user_id"])
    again = await _request(db_session, trip.id, passenger["user_id"])

    assert again.id != first.id


@pytest.mark.asyncio
async def test_request_on_cancelled_trip(db_session, trip, passenger):
    await trip_registry.cancel_trip(db_session, trip.id, DRIVER_ID)

    with pytest.raises(InvalidStateTransitionError):
        await _request(db_session, trip.id, passenger["user_id"])


@pytest.mark.asyncio
async def test_request_on_departed_trip(db_session, trip, passenger):
    trip.departure_time = trip_registry.utcnow() - timedelta(minutes=1)
    await db_session.commit()

    with pytest.raises(TripAlreadyStartedError):
        await _request(db_session, trip.id, passenger["user_id"])


@pytest.mark.asyncio
async def test_request_with_valid_stops(db_session, trip, route, passenger):
    stops = await route_catalog.list_stop_points(db_session, route.id)

    request = await _request(
        db_session, trip.id, passenger["user_id"], pickup_stop_id=stops[0].id, dropoff_stop_id=stops[2].id
    )

    assert request.pickup_stop_id == stops[0].id
    assert request.dropoff_stop_id == stops[2].id


@pytest.mark.asyncio
async def test_pickup_must_precede_dropoff(db_session, trip, route, passenger):
    stops = await route_catalog.list_stop_points(db_session, route.id)

    with pytest.raises(ValidationError):
        await _request(
            db_session, trip.id, passenger["user_id"], pickup_stop_id=stops[2].id, dropoff_stop_id=stops[0].id
        )


@pytest.mark.asyncio
async def test_stop_must_belong_to_trip_route(db_session, trip, passenger, driver, route_data):
    other = await route_catalog.create_route(db_session, route_data(name="Elsewhere", stops=1), created_by=1)
    foreign_stop = (await route_catalog.list_stop_points(db_session, other.id))[0]

    with pytest.raises(ValidationError):
        await _request(db_session, trip.id, passenger["user_id"], pickup_stop_id=foreign_stop.id)


@pytest.mark.asyncio
async def test_pickup_stop_must_allow_pickups(db_session, trip, route, passenger, driver):
    stops = await route_catalog.list_stop_points(db_session, route.id)
    await route_catalog.update_stop_point(
        db_session, route.id, stops[0].id, StopPointUpdate(is_pickup_point=False), driver
    )

    with pytest.raises(ValidationError):
        await _request(db_session, trip.id, passenger["user_id"], pickup_stop_id=stops[0].id)


@pytest.mark.asyncio
async def test_removed_stop_is_detached_from_request(db_session, trip, route, passenger, driver):
    stop = await route_catalog.add_stop_point(
        db_session, route.id, StopPointCreate(name="Temporary", latitude=-1.28, longitude=36.81), driver
    )
    request = await _request(db_session, trip.id, passenger["user_id"], dropoff_stop_id=stop.id)

    await route_catalog.remove_stop_point(db_session, route.id, stop.id, driver)
    await db_session.refresh(request)

    assert request.dropoff_stop_id is None


@pytest.mark.asyncio
async def test_approve_commits_seats(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"], seats=2)

    approved = await request_ledger.approve_request(db_session, request.id, DRIVER_ID, reason="See you there")

    assert approved.status == TripRequestStatus.APPROVED
    assert approved.decided_at is not None
    assert approved.decision_reason == "See you there"
    refreshed = await trip_registry.get_trip(db_session, trip.id)
    assert refreshed.seats_committed == 2
    assert await trip_registry.remaining_seats(db_session, trip.id) == 1


@pytest.mark.asyncio
async def test_approve_twice_is_rejected(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])
    await request_ledger.approve_request(db_session, request.id, DRIVER_ID)

    with pytest.raises(InvalidStateTransitionError):
        await request_ledger.approve_request(db_session, request.id, DRIVER_ID)

    assert (await trip_registry.get_trip(db_session, trip.id)).seats_committed == 1


@pytest.mark.asyncio
async def test_only_driver_can_approve(db_session, trip, passenger, other_passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])

    with pytest.raises(InsufficientPermissionsError):
        await request_ledger.approve_request(db_session, request.id, other_passenger["user_id"])


@pytest.mark.asyncio
async def test_approve_without_enough_seats_leaves_request_pending(db_session, trip, passenger, other_passenger):
    first = await _request(db_session, trip.id, passenger["user_id"], seats=2)
    second = await _request(db_session, trip.id, other_passenger["user_id"], seats=2)
    second_id = second.id
    await request_ledger.approve_request(db_session, first.id, DRIVER_ID)

    with pytest.raises(SeatUnavailableError) as exc_info:
        await request_ledger.approve_request(db_session, second_id, DRIVER_ID)

    assert exc_info.value.details["remaining_seats"] == 1
    still_pending = await request_ledger.get_request(db_session, second_id)
    assert still_pending.status == TripRequestStatus.PENDING
    assert await _approved_seats(db_session, still_pending.trip_id) == 2


@pytest.mark.asyncio
async def test_reject_twice(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])
    request_id = request.id

    rejected = await request_ledger.reject_request(db_session, request_id, DRIVER_ID, reason="Full car")
    assert rejected.status == TripRequestStatus.REJECTED
    assert rejected.decision_reason == "Full car"

    with pytest.raises(InvalidStateTransitionError):
        await request_ledger.reject_request(db_session, request_id, DRIVER_ID)

    assert (await request_ledger.get_request(db_session, request_id)).status == TripRequestStatus.REJECTED


@pytest.mark.asyncio
async def test_cancel_approved_request_releases_seats(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"], seats=3)
    await request_ledger.approve_request(db_session, request.id, DRIVER_ID)
    assert await trip_registry.remaining_seats(db_session, trip.id) == 0

    cancelled = await request_ledger.cancel_request(db_session, request.id, passenger["user_id"])

    assert cancelled.status == TripRequestStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert await trip_registry.remaining_seats(db_session, trip.id) == 3
    assert (await trip_registry.get_trip(db_session, trip.id)).seats_committed == 0


@pytest.mark.asyncio
async def test_cancel_by_someone_else_is_denied(db_session, trip, passenger, other_passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])

    with pytest.raises(InsufficientPermissionsError):
        await request_ledger.cancel_request(db_session, request.id, other_passenger["user_id"])


@pytest.mark.asyncio
async def test_cannot_cancel_rejected_request(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])
    await request_ledger.reject_request(db_session, request.id, DRIVER_ID)

    with pytest.raises(InvalidStateTransitionError):
        await request_ledger.cancel_request(db_session, request.id, passenger["user_id"])


@pytest.mark.asyncio
async def test_get_missing_request(db_session):
    with pytest.raises(TripRequestNotFoundError):
        await request_ledger.get_request(db_session, 12345)


@pytest.mark.asyncio
async def test_list_requests_by_trip_and_passenger(db_session, trip, passenger, other_passenger):
    mine = await _request(db_session, trip.id, passenger["user_id"])
    theirs = await _request(db_session, trip.id, other_passenger["user_id"])
    await request_ledger.approve_request(db_session, theirs.id, DRIVER_ID)

    all_requests = await request_ledger.list_trip_requests(db_session, trip.id)
    pending = await request_ledger.list_trip_requests(db_session, trip.id, status=TripRequestStatus.PENDING)
    passenger_requests = await request_ledger.list_passenger_requests(db_session, passenger["user_id"])

    assert [r.id for r in all_requests] == [mine.id, theirs.id]
    assert [r.id for r in pending] == [mine.id]
    assert [r.id for r in passenger_requests] == [mine.id]


@pytest.mark.asyncio
async def test_request_stats_cover_every_status(db_session, trip, passenger, other_passenger):
    approved = await _request(db_session, trip.id, passenger["user_id"], seats=2)
    await request_ledger.approve_request(db_session, approved.id, DRIVER_ID)
    await _request(db_session, trip.id, other_passenger["user_id"], seats=1)

    stats = await request_ledger.get_trip_request_stats(db_session, trip.id)

    assert set(stats) == set(TripRequestStatus)
    assert stats[TripRequestStatus.APPROVED] == {"count": 1, "total_seats": 2, "total_value": Decimal("500.00")}
    assert stats[TripRequestStatus.PENDING]["count"] == 1
    assert stats[TripRequestStatus.REJECTED]["count"] == 0
    assert stats[TripRequestStatus.CANCELLED]["total_value"] == Decimal("0.00")


@pytest.mark.asyncio
async def test_approved_seats_never_exceed_capacity(db_session, route, trip_data):
    trip = await trip_registry.create_trip(db_session, DRIVER_ID, trip_data(route.id, seats=4))
    trip_id = trip.id
    outcomes = []

    for passenger_id, seats in [(10, 2), (11, 1), (12, 2), (13, 1), (14, 3)]:
        request = await _request(db_session, trip_id, passenger_id, seats=seats)
        request_id = request.id
        try:
            await request_ledger.approve_request(db_session, request_id, DRIVER_ID)
            outcomes.append(True)
        except SeatUnavailableError:
            outcomes.append(False)

    assert outcomes == [True, True, False, True, False]
    assert await _approved_seats(db_session, trip_id) == 4
    assert await trip_registry.remaining_seats(db_session, trip_id) == 0


@pytest.mark.asyncio
async def test_decisions_are_audited(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"], seats=2)
    await request_ledger.approve_request(db_session, request.id, DRIVER_ID)

    approvals = await get_audit_trail(db_session, action=AuditAction.TRIP_REQUEST_APPROVED)
    assert len(approvals) == 1
    assert approvals[0].actor_id == DRIVER_ID
    assert approvals[0].target_user_id == passenger["user_id"]
    assert approvals[0].meta_data == {"request_id": request.id, "trip_id": trip.id, "seats": 2}

    by_passenger = await get_audit_trail(db_session, actor_id=passenger["user_id"])
    assert [entry.action for entry in by_passenger] == [AuditAction.TRIP_REQUEST_CREATED]


@pytest.mark.asyncio
async def test_approve_on_departed_trip(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])
    trip.departure_time = trip_registry.utcnow() - timedelta(minutes=1)
    await db_session.commit()

    with pytest.raises(TripAlreadyStartedError):
        await request_ledger.approve_request(db_session, request.id, DRIVER_ID)

    assert (await request_ledger.get_request(db_session, request.id)).status == TripRequestStatus.PENDING
    assert await trip_registry.remaining_seats(db_session, trip.id) == 3


@pytest.mark.asyncio
async def test_passenger_edits_pending_request(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])
    assert request.total_price == Decimal("250.00")

    updated = await request_ledger.update_request(
        db_session, request.id, passenger["user_id"], TripRequestUpdate(requested_seats=2, message="Two of us")
    )

    assert updated.requested_seats == 2
    assert updated.message == "Two of us"
    assert updated.total_price == Decimal("500.00")
    assert updated.status == TripRequestStatus.PENDING

    entries = await get_audit_trail(db_session, action=AuditAction.TRIP_REQUEST_UPDATED)
    assert entries[0].meta_data["fields"] == ["message", "requested_seats", "total_price"]


@pytest.mark.asyncio
async def test_edit_without_seat_change_keeps_price(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])
    await trip_registry.update_trip(db_session, trip.id, DRIVER_ID, TripUpdate(price_per_seat=Decimal("300.00")))

    updated = await request_ledger.update_request(
        db_session, request.id, passenger["user_id"], TripRequestUpdate(message="Running late")
    )

    assert updated.message == "Running late"
    assert updated.total_price == Decimal("250.00")


@pytest.mark.asyncio
async def test_edit_after_approval_is_rejected(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])
    await request_ledger.approve_request(db_session, request.id, DRIVER_ID)

    with pytest.raises(InvalidStateTransitionError):
        await request_ledger.update_request(
            db_session, request.id, passenger["user_id"], TripRequestUpdate(requested_seats=3)
        )

    assert await _approved_seats(db_session, trip.id) == 1


@pytest.mark.asyncio
async def test_edit_by_other_passenger_is_denied(db_session, trip, passenger, other_passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])

    with pytest.raises(InsufficientPermissionsError):
        await request_ledger.update_request(
            db_session, request.id, other_passenger["user_id"], TripRequestUpdate(message="Hi")
        )


@pytest.mark.asyncio
async def test_edit_seats_above_capacity(db_session, trip, passenger):
    request = await _request(db_session, trip.id, passenger["user_id"])

    with pytest.raises(SeatUnavailableError):
        await request_ledger.update_request(
            db_session, request.id, passenger["user_id"], TripRequestUpdate(requested_seats=4)
        )


@pytest.mark.asyncio
async def test_edit_revalidates_stops(db_session, trip, route, passenger):
    stops = await route_catalog.list_stop_points(db_session, route.id)
    request = await _request(db_session, trip.id, passenger["user_id"], dropoff_stop_id=stops[0].id)

    with pytest.raises(ValidationError):
        await request_ledger.update_request(
            db_session, request.id, passenger["user_id"], TripRequestUpdate(pickup_stop_id=stops[2].id)
        )
