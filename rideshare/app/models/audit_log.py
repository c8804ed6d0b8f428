"""
Audit Log Database Model.

Tracks route, trip and seat-allocation events for dispute resolution and monitoring.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from rideshare.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking state-changing actions.

    Events logged:
    - ROUTE_CREATED / ROUTE_UPDATED / ROUTE_DEACTIVATED
    - STOP_POINT_ADDED / STOP_POINT_UPDATED / STOP_POINT_REMOVED
    - TRIP_CREATED / TRIP_UPDATED / TRIP_STARTED / TRIP_COMPLETED / TRIP_CANCELLED
    - TRIP_REQUEST_CREATED / UPDATED / APPROVED / REJECTED / CANCELLED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Who was affected by the action (passenger on a decision, for instance)
    target_user_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username})>"
