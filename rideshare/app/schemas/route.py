"""
Route and stop point schemas.

Schemas for route management, stop ordering and nearby discovery.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from rideshare.app.models.route_enums import RouteType


class StopPointCreate(BaseModel):
    """Schema for adding a stop point to a route."""
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    stop_order: Optional[int] = Field(None, ge=1, description="Position in route; appended when omitted")
    is_pickup_point: bool = True
    is_dropoff_point: bool = True
    estimated_arrival_time: Optional[int] = Field(None, ge=0, description="Minutes from route start")


class StopPointUpdate(BaseModel):
    """Schema for updating a stop point (ordering is not editable)."""
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    is_pickup_point: Optional[bool] = None
    is_dropoff_point: Optional[bool] = None
    estimated_arrival_time: Optional[int] = Field(None, ge=0)


class StopPointResponse(BaseModel):
    """Schema for stop point response."""
    id: int
    route_id: int
    name: str
    description: Optional[str]
    latitude: float
    longitude: float
    address: Optional[str]
    stop_order: int
    is_pickup_point: bool
    is_dropoff_point: bool
    estimated_arrival_time: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RouteCreate(BaseModel):
    """Schema for creating a custom route."""
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    start_location: str = Field(..., max_length=255)
    start_latitude: Optional[float] = Field(None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(None, ge=-180, le=180)
    end_location: str = Field(..., max_length=255)
    end_latitude: Optional[float] = Field(None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(None, ge=-180, le=180)
    distance_km: Optional[float] = Field(None, ge=0)
    estimated_duration_minutes: Optional[int] = Field(None, ge=0)
    is_public: bool = False
    stop_points: List[StopPointCreate] = []


class RouteUpdate(BaseModel):
    """Schema for updating route details."""
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    start_location: Optional[str] = Field(None, max_length=255)
    start_latitude: Optional[float] = Field(None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(None, ge=-180, le=180)
    end_location: Optional[str] = Field(None, max_length=255)
    end_latitude: Optional[float] = Field(None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(None, ge=-180, le=180)
    distance_km: Optional[float] = Field(None, ge=0)
    estimated_duration_minutes: Optional[int] = Field(None, ge=0)
    is_public: Optional[bool] = None


class RouteResponse(BaseModel):
    """Schema for route response."""
    id: int
    name: str
    description: Optional[str]
    start_location: str
    start_latitude: Optional[float]
    start_longitude: Optional[float]
    end_location: str
    end_latitude: Optional[float]
    end_longitude: Optional[float]
    distance_km: Optional[float]
    estimated_duration_minutes: Optional[int]
    route_type: RouteType
    created_by: Optional[int]
    is_active: bool
    is_public: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RouteDetailResponse(RouteResponse):
    """Route with its ordered stop points."""
    stop_points: List[StopPointResponse] = []


class RouteListResponse(BaseModel):
    """Schema for paginated route list."""
    routes: List[RouteResponse]
    total: int
    limit: int
    offset: int


class NearbyRouteResponse(BaseModel):
    """A route matched by search; distance is set for coordinate searches."""
    route: RouteResponse
    distance_km: Optional[float] = None


class NearbyStopResponse(BaseModel):
    """A stop point within the search radius and its distance from the center."""
    stop_point: StopPointResponse
    distance_km: float
