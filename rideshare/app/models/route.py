"""
Route database model.

Routes are named paths between two locations, created by users or seeded
by the system as defaults.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Enum, Text
from sqlalchemy.sql import func
from rideshare.app.db.session import Base
from rideshare.app.models.route_enums import RouteType


class Route(Base):
    """
    Route model.

    A route with ``route_type = default`` is system-owned (``created_by`` is NULL).
    Routes are never physically removed, only deactivated.
    """
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Route details
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Start location
    start_location = Column(String(255), nullable=False, index=True)
    start_latitude = Column(Float, nullable=True)
    start_longitude = Column(Float, nullable=True)

    # End location
    end_location = Column(String(255), nullable=False, index=True)
    end_latitude = Column(Float, nullable=True)
    end_longitude = Column(Float, nullable=True)

    # Estimates
    distance_km = Column(Float, nullable=True)
    estimated_duration_minutes = Column(Integer, nullable=True)

    # Ownership - identity lives in the auth service, so no FK
    route_type = Column(
        Enum(RouteType, name="route_type", values_callable=lambda e: [m.value for m in e]),
        default=RouteType.CUSTOM,
        nullable=False,
        index=True
    )
    created_by = Column(Integer, nullable=True, index=True)

    # Flags
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_public = Column(Boolean, default=False, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def start_coordinate(self):
        if self.start_latitude is None or self.start_longitude is None:
            return None
        return (self.start_latitude, self.start_longitude)

    @property
    def end_coordinate(self):
        if self.end_latitude is None or self.end_longitude is None:
            return None
        return (self.end_latitude, self.end_longitude)

    def __repr__(self):
        return f"<Route(id={self.id}, name='{self.name}', type='{self.route_type.value}')>"
