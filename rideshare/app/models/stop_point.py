"""
Stop Point database model.

Stops are ordered waypoints on a route, usable for pickup and dropoff.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Boolean, Text, UniqueConstraint
from sqlalchemy.sql import func
from rideshare.app.db.session import Base


class StopPoint(Base):
    """
    Stop Point model.

    ``stop_order`` is dense and 1-based within a route (1, 2, 3, ...).
    Stops are owned by their route and deleted with it.
    """
    __tablename__ = "stop_points"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Route reference
    route_id = Column(Integer, ForeignKey('routes.id', ondelete="CASCADE"), nullable=False, index=True)

    # Stop details
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=True)

    # Position in route (1, 2, 3, ...)
    stop_order = Column(Integer, nullable=False)

    # Capabilities
    is_pickup_point = Column(Boolean, default=True, nullable=False)
    is_dropoff_point = Column(Boolean, default=True, nullable=False)

    # Minutes from route start
    estimated_arrival_time = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('route_id', 'stop_order', name='uq_stop_points_route_order'),
    )

    @property
    def coordinate(self):
        return (self.latitude, self.longitude)

    def __repr__(self):
        return f"<StopPoint(id={self.id}, route_id={self.route_id}, order={self.stop_order})>"
