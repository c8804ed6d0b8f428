"""
Audit logging service for tracking route, trip and seat events.

Provides centralized logging for dispute resolution and monitoring.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from rideshare.app.models.audit_log import AuditLog

logger = logging.getLogger("rideshare.audit")


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""

    # Route Catalog
    ROUTE_CREATED = "ROUTE_CREATED"
    ROUTE_UPDATED = "ROUTE_UPDATED"
    ROUTE_DEACTIVATED = "ROUTE_DEACTIVATED"
    STOP_POINT_ADDED = "STOP_POINT_ADDED"
    STOP_POINT_UPDATED = "STOP_POINT_UPDATED"
    STOP_POINT_REMOVED = "STOP_POINT_REMOVED"

    # Trip Registry
    TRIP_CREATED = "TRIP_CREATED"
    TRIP_UPDATED = "TRIP_UPDATED"
    TRIP_STARTED = "TRIP_STARTED"
    TRIP_COMPLETED = "TRIP_COMPLETED"
    TRIP_CANCELLED = "TRIP_CANCELLED"

    # Request Ledger
    TRIP_REQUEST_CREATED = "TRIP_REQUEST_CREATED"
    TRIP_REQUEST_UPDATED = "TRIP_REQUEST_UPDATED"
    TRIP_REQUEST_APPROVED = "TRIP_REQUEST_APPROVED"
    TRIP_REQUEST_REJECTED = "TRIP_REQUEST_REJECTED"
    TRIP_REQUEST_CANCELLED = "TRIP_REQUEST_CANCELLED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    target_user_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Optional[AuditLog]:
    """
    Log an event to the audit log.

    Called after the business transaction has committed. The entry is written
    in its own session on the same engine, so the caller's instances stay
    loaded and a failed audit write is logged instead of failing an operation
    that already succeeded.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action
        actor_username: Username of actor
        target_user_id: ID of user being acted upon (if applicable)
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance, or None if the write failed
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        target_user_id=target_user_id,
        meta_data=metadata
    )

    async with AsyncSession(bind=db.bind, expire_on_commit=False) as audit_db:
        try:
            audit_db.add(audit_log)
            await audit_db.commit()
            await audit_db.refresh(audit_log)
        except SQLAlchemyError as e:
            await audit_db.rollback()
            logger.error("Audit write failed", extra={"action": action, "actor_id": actor_id, "error": str(e)})
            return None

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    action: Optional[str] = None,
    actor_id: Optional[int] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if action:
        query = query.where(AuditLog.action == action)

    if actor_id:
        query = query.where(AuditLog.actor_id == actor_id)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
