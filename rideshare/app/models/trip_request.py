"""
Trip Request database model.

A passenger's bid for seats on a trip, subject to driver approval.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, Numeric, String, Text, Index, text
from sqlalchemy.sql import func
from rideshare.app.db.session import Base
from rideshare.app.models.trip_enums import TripRequestStatus


class TripRequest(Base):
    """
    Trip Request model.

    ``total_price`` is frozen at creation. Requests are never deleted; they
    end as rejected or cancelled. The partial unique index allows one active
    (pending or approved) request per trip and passenger.
    """
    __tablename__ = "trip_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    passenger_id = Column(Integer, nullable=False, index=True)
    pickup_stop_id = Column(Integer, ForeignKey('stop_points.id', ondelete="SET NULL"), nullable=True, index=True)
    dropoff_stop_id = Column(Integer, ForeignKey('stop_points.id', ondelete="SET NULL"), nullable=True, index=True)

    # Request details
    requested_seats = Column(Integer, nullable=False, default=1)
    message = Column(Text, nullable=True)
    pickup_time = Column(DateTime(timezone=True), nullable=True)
    dropoff_time = Column(DateTime(timezone=True), nullable=True)
    total_price = Column(Numeric(10, 2), nullable=False, default=0)

    # Status
    status = Column(
        Enum(TripRequestStatus, name="trip_request_status", values_callable=lambda e: [m.value for m in e]),
        default=TripRequestStatus.PENDING,
        nullable=False,
        index=True
    )

    # Decision tracking
    decision_reason = Column(String(500), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index(
            'ix_trip_requests_active_passenger',
            'trip_id', 'passenger_id',
            unique=True,
            postgresql_where=text("status IN ('pending', 'approved')"),
            sqlite_where=text("status IN ('pending', 'approved')"),
        ),
    )

    def __repr__(self):
        return f"<TripRequest(id={self.id}, trip_id={self.trip_id}, status='{self.status.value}')>"
