"""
Trip database model.

Trips are posted by drivers against a route and carry a finite seat capacity.
"""

from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Enum, Numeric, Boolean, Text, JSON, CheckConstraint
)
from sqlalchemy.sql import func
from rideshare.app.db.session import Base
from rideshare.app.models.trip_enums import TripStatus


class Trip(Base):
    """
    Trip model.

    ``seats_committed`` mirrors the sum of approved request seats and is written
    only by the capacity allocator, together with ``version``, through a
    conditional UPDATE. The CHECK constraint backs the invariant at the store.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Route and driver
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)
    driver_id = Column(Integer, nullable=False, index=True)

    # Trip details
    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    departure_time = Column(DateTime(timezone=True), nullable=False, index=True)
    arrival_time = Column(DateTime(timezone=True), nullable=True)

    # Capacity
    available_seats = Column(Integer, nullable=False, default=1)
    seats_committed = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)

    # Pricing
    price_per_seat = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")

    # Status
    status = Column(
        Enum(TripStatus, name="trip_status", values_callable=lambda e: [m.value for m in e]),
        default=TripStatus.SCHEDULED,
        nullable=False,
        index=True
    )

    # Extras
    pickup_flexibility_minutes = Column(Integer, nullable=False, default=15)
    special_instructions = Column(Text, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_pattern = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint('available_seats >= 1', name='ck_trips_available_seats_positive'),
        CheckConstraint(
            'seats_committed >= 0 AND seats_committed <= available_seats',
            name='ck_trips_seats_committed_bounds'
        ),
    )

    @property
    def remaining_seats(self) -> int:
        return self.available_seats - (self.seats_committed or 0)

    def __repr__(self):
        return f"<Trip(id={self.id}, route_id={self.route_id}, status='{self.status.value}')>"
