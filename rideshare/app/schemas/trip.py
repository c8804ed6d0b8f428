"""
Trip schemas.

Schemas for trip posting, search and visibility.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import date, datetime
from decimal import Decimal

from rideshare.app.core.config import settings
from rideshare.app.models.trip_enums import TripStatus
from rideshare.app.schemas.route import RouteResponse


class TripCreate(BaseModel):
    """Schema for posting a trip on a route."""
    route_id: int
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    available_seats: int = Field(..., ge=1)
    price_per_seat: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    currency: str = Field(settings.default_currency, min_length=3, max_length=3)
    pickup_flexibility_minutes: int = Field(settings.default_pickup_flexibility_minutes, ge=0)
    special_instructions: Optional[str] = None
    is_recurring: bool = False
    recurring_pattern: Optional[Dict[str, Any]] = None


class TripUpdate(BaseModel):
    """Schema for updating a scheduled trip before departure."""
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    available_seats: Optional[int] = Field(None, ge=1)
    price_per_seat: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    pickup_flexibility_minutes: Optional[int] = Field(None, ge=0)
    special_instructions: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurring_pattern: Optional[Dict[str, Any]] = None


class TripCancel(BaseModel):
    """Optional cancellation reason."""
    reason: Optional[str] = Field(None, max_length=500)


class TripSearchFilters(BaseModel):
    """Filters for searching bookable trips."""
    route_id: Optional[int] = None
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    departure_date: Optional[date] = None
    max_price: Optional[Decimal] = Field(None, ge=0)
    min_seats: int = Field(1, ge=1)
    from_latitude: Optional[float] = Field(None, ge=-90, le=90)
    from_longitude: Optional[float] = Field(None, ge=-180, le=180)
    to_latitude: Optional[float] = Field(None, ge=-90, le=90)
    to_longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius_km: float = Field(settings.default_trip_radius_km, gt=0)
    limit: int = Field(settings.default_page_size, ge=1, le=settings.max_page_size)
    offset: int = Field(0, ge=0)


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: int
    route_id: int
    driver_id: int
    title: Optional[str]
    description: Optional[str]
    departure_time: datetime
    arrival_time: Optional[datetime]
    available_seats: int
    remaining_seats: int
    price_per_seat: Optional[Decimal]
    currency: str
    status: TripStatus
    pickup_flexibility_minutes: int
    special_instructions: Optional[str]
    is_recurring: bool
    recurring_pattern: Optional[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class TripDetailResponse(TripResponse):
    """Trip together with its route."""
    route: RouteResponse


class TripListResponse(BaseModel):
    """Schema for paginated trip list."""
    trips: List[TripResponse]
    total: int
    limit: int
    offset: int


class TripRevenueResponse(BaseModel):
    """Revenue from approved requests on a trip."""
    trip_id: int
    currency: str
    approved_requests: int
    seats_sold: int
    total_revenue: Decimal
