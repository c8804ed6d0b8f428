"""
Trip API Endpoints.

Drivers post and manage trips; anyone can search bookable trips.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.app.core.config import settings
from rideshare.app.core.dependencies import get_current_user
from rideshare.app.core.guards import OwnershipGuard, is_admin
from rideshare.app.db.session import get_db
from rideshare.app.models.trip_enums import TripRequestStatus
from rideshare.app.schemas.route import RouteResponse
from rideshare.app.schemas.trip import (
    TripCreate,
    TripUpdate,
    TripResponse,
    TripDetailResponse,
    TripListResponse,
    TripSearchFilters,
    TripRevenueResponse,
)
from rideshare.app.schemas.trip_request import (
    TripRequestCreate,
    TripRequestResponse,
    TripRequestListResponse,
    TripRequestStatsResponse,
)
from rideshare.app.services import trip_registry, request_ledger
from rideshare.app.services.route_catalog import get_route

router = APIRouter(prefix="/trips", tags=["Trips"])
ownership_guard = OwnershipGuard()


@router.get("", response_model=TripListResponse)
async def search_trips(
    route_id: Optional[int] = Query(None),
    start_location: Optional[str] = Query(None, description="Substring of the route's start label"),
    end_location: Optional[str] = Query(None, description="Substring of the route's end label"),
    departure_date: Optional[date] = Query(None),
    max_price: Optional[Decimal] = Query(None, ge=0),
    min_seats: int = Query(1, ge=1),
    from_latitude: Optional[float] = Query(None, ge=-90, le=90),
    from_longitude: Optional[float] = Query(None, ge=-180, le=180),
    to_latitude: Optional[float] = Query(None, ge=-90, le=90),
    to_longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: float = Query(settings.default_trip_radius_km, gt=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    """
    Search bookable trips: scheduled, departing in the future and with at
    least ``min_seats`` seats left. Soonest departure first.
    """
    filters = TripSearchFilters(
        route_id=route_id,
        start_location=start_location,
        end_location=end_location,
        departure_date=departure_date,
        max_price=max_price,
        min_seats=min_seats,
        from_latitude=from_latitude,
        from_longitude=from_longitude,
        to_latitude=to_latitude,
        to_longitude=to_longitude,
        radius_km=radius_km,
        limit=limit,
        offset=offset,
    )
    trips, total = await trip_registry.search_trips(db, filters)
    return TripListResponse(
        trips=[TripResponse.model_validate(t) for t in trips],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(
    data: TripCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Post a trip on an active route. The caller becomes the driver."""
    trip = await trip_registry.create_trip(db, current_user["user_id"], data)
    return TripResponse.model_validate(trip)


@router.get("/mine", response_model=List[TripResponse])
async def list_my_trips(
    include_expired: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List trips the caller drives."""
    trips = await trip_registry.list_driver_trips(db, current_user["user_id"], include_expired=include_expired)
    return [TripResponse.model_validate(t) for t in trips]


@router.get("/{trip_id}", response_model=TripDetailResponse)
async def get_trip(
    trip_id: int = Path(..., description="Trip ID"),
    db: AsyncSession = Depends(get_db)
):
    """Get a trip with its route."""
    trip = await trip_registry.get_trip(db, trip_id)
    route = await get_route(db, trip.route_id, include_inactive=True)
    return TripDetailResponse(
        **TripResponse.model_validate(trip).model_dump(),
        route=RouteResponse.model_validate(route),
    )


@router.put("/{trip_id}", response_model=TripResponse)
async def update_trip(
    data: TripUpdate,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update a scheduled trip before departure (driver only)."""
    trip = await trip_registry.update_trip(db, trip_id, current_user["user_id"], data)
    return TripResponse.model_validate(trip)


@router.delete("/{trip_id}", response_model=TripResponse)
async def cancel_trip(
    trip_id: int = Path(..., description="Trip ID"),
    reason: Optional[str] = Query(None, max_length=500),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Cancel a trip.

    The driver can cancel until departure. An Admin who is not the driver
    cancels administratively, which is allowed at any time before completion.
    """
    trip = await trip_registry.get_trip(db, trip_id)
    system = is_admin(current_user) and trip.driver_id != current_user["user_id"]

    trip = await trip_registry.cancel_trip(
        db, trip_id, actor_id=current_user["user_id"], system=system, reason=reason
    )
    return TripResponse.model_validate(trip)


@router.post("/{trip_id}/start", response_model=TripResponse)
async def start_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Start a scheduled trip (driver only)."""
    trip = await trip_registry.start_trip(db, trip_id, current_user["user_id"])
    return TripResponse.model_validate(trip)


@router.post("/{trip_id}/complete", response_model=TripResponse)
async def complete_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Complete an active trip (driver only)."""
    trip = await trip_registry.complete_trip(db, trip_id, current_user["user_id"])
    return TripResponse.model_validate(trip)


@router.get("/{trip_id}/passengers", response_model=List[TripRequestResponse])
async def list_passengers(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Approved requests on a trip (driver or Admin)."""
    trip = await trip_registry.get_trip(db, trip_id)
    ownership_guard.enforce(trip.driver_id, current_user, "trip")

    passengers = await trip_registry.list_passengers(db, trip_id)
    return [TripRequestResponse.model_validate(p) for p in passengers]


@router.get("/{trip_id}/revenue", response_model=TripRevenueResponse)
async def get_trip_revenue(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Revenue from approved requests (driver or Admin)."""
    trip = await trip_registry.get_trip(db, trip_id)
    ownership_guard.enforce(trip.driver_id, current_user, "trip")

    revenue, approved, seats = await trip_registry.total_revenue(db, trip_id)
    return TripRevenueResponse(
        trip_id=trip.id,
        currency=trip.currency,
        approved_requests=approved,
        seats_sold=seats,
        total_revenue=revenue,
    )


@router.get("/{trip_id}/requests", response_model=TripRequestListResponse)
async def list_trip_requests(
    trip_id: int = Path(..., description="Trip ID"),
    status_filter: Optional[TripRequestStatus] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Requests on a trip, oldest first (driver or Admin)."""
    trip = await trip_registry.get_trip(db, trip_id)
    ownership_guard.enforce(trip.driver_id, current_user, "trip")

    requests = await request_ledger.list_trip_requests(db, trip_id, status=status_filter)
    return TripRequestListResponse(
        requests=[TripRequestResponse.model_validate(r) for r in requests],
        total=len(requests),
    )


@router.post("/{trip_id}/requests", response_model=TripRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_trip_request(
    data: TripRequestCreate,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Request seats on a trip.

    The request starts pending; seats are only taken when the driver approves.
    """
    trip_request = await request_ledger.create_request(db, trip_id, current_user["user_id"], data)
    return TripRequestResponse.model_validate(trip_request)


@router.get("/{trip_id}/request-stats", response_model=TripRequestStatsResponse)
async def get_trip_request_stats(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Request counts, seats and value per status (driver or Admin)."""
    trip = await trip_registry.get_trip(db, trip_id)
    ownership_guard.enforce(trip.driver_id, current_user, "trip")

    stats = await request_ledger.get_trip_request_stats(db, trip_id)
    return TripRequestStatsResponse(trip_id=trip_id, stats=stats)
