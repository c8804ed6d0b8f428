"""
Trip request schemas.

Schemas for seat requests, driver decisions and per-trip statistics.
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from rideshare.app.models.trip_enums import TripRequestStatus


class TripRequestCreate(BaseModel):
    """Schema for requesting seats on a trip."""
    requested_seats: int = Field(1, ge=1)
    pickup_stop_id: Optional[int] = None
    dropoff_stop_id: Optional[int] = None
    message: Optional[str] = Field(None, max_length=1000)
    pickup_time: Optional[datetime] = None
    dropoff_time: Optional[datetime] = None


class TripRequestUpdate(BaseModel):
    """Schema for editing a pending request."""
    requested_seats: Optional[int] = Field(None, ge=1)
    pickup_stop_id: Optional[int] = None
    dropoff_stop_id: Optional[int] = None
    message: Optional[str] = Field(None, max_length=1000)
    pickup_time: Optional[datetime] = None
    dropoff_time: Optional[datetime] = None


class TripRequestDecision(BaseModel):
    """Optional reason accompanying an approval or rejection."""
    reason: Optional[str] = Field(None, max_length=500)


class TripRequestResponse(BaseModel):
    """Schema for trip request response."""
    id: int
    trip_id: int
    passenger_id: int
    pickup_stop_id: Optional[int]
    dropoff_stop_id: Optional[int]
    requested_seats: int
    message: Optional[str]
    pickup_time: Optional[datetime]
    dropoff_time: Optional[datetime]
    total_price: Decimal
    status: TripRequestStatus
    decision_reason: Optional[str]
    decided_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TripRequestListResponse(BaseModel):
    """Schema for trip request list."""
    requests: List[TripRequestResponse]
    total: int


class RequestStatusStats(BaseModel):
    count: int = 0
    total_seats: int = 0
    total_value: Decimal = Decimal("0.00")


class TripRequestStatsResponse(BaseModel):
    """Request counts, seats and value per status for one trip."""
    trip_id: int
    stats: Dict[TripRequestStatus, RequestStatusStats]
