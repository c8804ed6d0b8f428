"""
Trip Request Decision API Endpoints.

Drivers approve or reject pending requests; passengers track and cancel their own.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, Body
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.app.core.dependencies import get_current_user
from rideshare.app.core.guards import is_admin
from rideshare.app.core.exceptions import InsufficientPermissionsError
from rideshare.app.db.session import get_db
from rideshare.app.models.trip_enums import TripRequestStatus
from rideshare.app.schemas.trip_request import TripRequestDecision, TripRequestResponse, TripRequestUpdate
from rideshare.app.services import request_ledger, trip_registry

router = APIRouter(prefix="/trip-requests", tags=["Trip Requests"])


@router.get("/mine", response_model=List[TripRequestResponse])
async def list_my_requests(
    status_filter: Optional[TripRequestStatus] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's requests, newest first."""
    requests = await request_ledger.list_passenger_requests(db, current_user["user_id"], status=status_filter)
    return [TripRequestResponse.model_validate(r) for r in requests]


@router.get("/{request_id}", response_model=TripRequestResponse)
async def get_request(
    request_id: int = Path(..., description="Trip request ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a request (its passenger, the trip's driver, or Admin)."""
    trip_request = await request_ledger.get_request(db, request_id)
    trip = await trip_registry.get_trip(db, trip_request.trip_id)

    if current_user["user_id"] not in (trip_request.passenger_id, trip.driver_id) and not is_admin(current_user):
        raise InsufficientPermissionsError("Access denied. You do not have permission to access this trip request.")

    return TripRequestResponse.model_validate(trip_request)


@router.put("/{request_id}", response_model=TripRequestResponse)
async def update_request(
    data: TripRequestUpdate,
    request_id: int = Path(..., description="Trip request ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Edit a pending request (passenger only). The price follows the seat count."""
    trip_request = await request_ledger.update_request(db, request_id, current_user["user_id"], data)
    return TripRequestResponse.model_validate(trip_request)


@router.post("/{request_id}/approve", response_model=TripRequestResponse)
async def approve_request(
    request_id: int = Path(..., description="Trip request ID"),
    decision: Optional[TripRequestDecision] = Body(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Approve a pending request (driver only).

    Returns 409 with ``details.retryable`` when the seats are gone or the
    reservation kept conflicting with concurrent approvals.
    """
    trip_request = await request_ledger.approve_request(
        db, request_id, current_user["user_id"], reason=decision.reason if decision else None
    )
    return TripRequestResponse.model_validate(trip_request)


@router.post("/{request_id}/reject", response_model=TripRequestResponse)
async def reject_request(
    request_id: int = Path(..., description="Trip request ID"),
    decision: Optional[TripRequestDecision] = Body(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Reject a pending request (driver only)."""
    trip_request = await request_ledger.reject_request(
        db, request_id, current_user["user_id"], reason=decision.reason if decision else None
    )
    return TripRequestResponse.model_validate(trip_request)


@router.post("/{request_id}/cancel", response_model=TripRequestResponse)
async def cancel_request(
    request_id: int = Path(..., description="Trip request ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a pending or approved request (passenger only). Approved seats are released."""
    trip_request = await request_ledger.cancel_request(db, request_id, current_user["user_id"])
    return TripRequestResponse.model_validate(trip_request)
