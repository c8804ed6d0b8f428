"""
Route catalog service.

Routes and their ordered stop points. ``stop_order`` stays dense (1..N)
within a route: inserts shift later stops up, deletes renumber the rest.
Reordering is serialized per route by locking the route row.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, or_, and_, case
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.app.core.exceptions import (
    ValidationError,
    InsufficientPermissionsError,
    RouteNotFoundError,
    StopPointNotFoundError,
)
from rideshare.app.models.enums import UserRole
from rideshare.app.models.route import Route
from rideshare.app.models.route_enums import RouteType
from rideshare.app.models.stop_point import StopPoint
from rideshare.app.schemas.route import RouteCreate, RouteUpdate, StopPointCreate, StopPointUpdate
from rideshare.app.services import geo_index
from rideshare.app.services.audit import log_event, AuditAction

logger = logging.getLogger("rideshare.routes")

REQUIRED_ROUTE_FIELDS = ("name", "start_location", "end_location")
NON_NULLABLE_ROUTE_FIELDS = ("is_public",)
NON_NULLABLE_STOP_FIELDS = ("latitude", "longitude", "is_pickup_point", "is_dropoff_point")


def can_edit(route: Route, user: dict) -> bool:
    """
    Whether ``user`` may modify ``route``.

    Admins may edit anything. Otherwise only the creator may; system
    default routes have no creator and are admin-only.
    """
    if user.get("role") == UserRole.ADMIN.value:
        return True

    return route.created_by is not None and route.created_by == user.get("user_id")


def _ensure_can_edit(route: Route, user: dict) -> None:
    if route.route_type == RouteType.DEFAULT and user.get("role") != UserRole.ADMIN.value:
        raise InsufficientPermissionsError("Only administrators can modify default routes")

    if not can_edit(route, user):
        raise InsufficientPermissionsError("You do not have permission to modify this route")


def _check_required(values: dict) -> None:
    missing = [
        field for field in REQUIRED_ROUTE_FIELDS
        if field in values and (values[field] is None or not str(values[field]).strip())
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"fields": missing}
        )


def _reject_nulls(changes: dict, fields) -> None:
    nulls = sorted(field for field in fields if field in changes and changes[field] is None)
    if nulls:
        raise ValidationError(
            f"Fields cannot be null: {', '.join(nulls)}",
            details={"fields": nulls}
        )


def _new_stop(route_id: int, data: StopPointCreate, stop_order: int) -> StopPoint:
    if not data.name or not data.name.strip():
        raise ValidationError("Stop point name is required", details={"fields": ["name"]})

    return StopPoint(
        route_id=route_id,
        name=data.name.strip(),
        description=data.description,
        latitude=data.latitude,
        longitude=data.longitude,
        address=data.address,
        stop_order=stop_order,
        is_pickup_point=data.is_pickup_point,
        is_dropoff_point=data.is_dropoff_point,
        estimated_arrival_time=data.estimated_arrival_time,
    )


def _route_metadata(route: Route) -> dict:
    return {"route_id": route.id, "name": route.name, "route_type": route.route_type.value}


async def get_route(db: AsyncSession, route_id: int, include_inactive: bool = False) -> Route:
    """
    Fetch a route by ID.

    Raises:
        RouteNotFoundError: Route missing, or deactivated and ``include_inactive`` is False
    """
    query = select(Route).where(Route.id == route_id)
    if not include_inactive:
        query = query.where(Route.is_active == True)

    result = await db.execute(query)
    route = result.scalar_one_or_none()

    if not route:
        raise RouteNotFoundError(route_id)

    return route


async def _lock_route(db: AsyncSession, route_id: int) -> Route:
    # Row lock serializes stop reordering per route (no-op on SQLite)
    result = await db.execute(
        select(Route)
        .where(Route.id == route_id, Route.is_active == True)
        .with_for_update()
    )
    route = result.scalar_one_or_none()

    if not route:
        raise RouteNotFoundError(route_id)

    return route


async def _insert_route(db: AsyncSession, data: RouteCreate, route_type: RouteType, created_by: Optional[int], is_public: bool) -> Route:
    values = data.model_dump(exclude={"stop_points", "is_public"})
    _check_required(values)

    route = Route(
        **{k: (v.strip() if isinstance(v, str) and k in REQUIRED_ROUTE_FIELDS else v) for k, v in values.items()},
        route_type=route_type,
        created_by=created_by,
        is_active=True,
        is_public=is_public,
    )
    db.add(route)
    await db.flush()

    for position, stop_data in enumerate(data.stop_points, start=1):
        db.add(_new_stop(route.id, stop_data, position))

    await db.flush()
    return route


async def create_route(db: AsyncSession, data: RouteCreate, created_by: int) -> Route:
    """
    Create a custom route owned by ``created_by``.

    Inline stop points are appended in the order given.

    Raises:
        ValidationError: name, start_location or end_location blank
    """
    route = await _insert_route(db, data, RouteType.CUSTOM, created_by, data.is_public)
    await db.commit()
    await db.refresh(route)

    logger.info("Route created", extra={"route_id": route.id, "created_by": created_by})
    await log_event(
        db,
        action=AuditAction.ROUTE_CREATED,
        actor_id=created_by,
        metadata={**_route_metadata(route), "stop_points": len(data.stop_points)},
    )
    return route


async def create_default_route(db: AsyncSession, data: RouteCreate) -> Route:
    """
    Create a public, system-owned route. Idempotent by name.
    """
    result = await db.execute(
        select(Route).where(Route.route_type == RouteType.DEFAULT, Route.name == data.name)
    )
    existing = result.scalars().first()
    if existing:
        return existing

    route = await _insert_route(db, data, RouteType.DEFAULT, None, True)
    await db.commit()
    await db.refresh(route)

    logger.info("Default route created", extra={"route_id": route.id, "route_name": route.name})
    await log_event(db, action=AuditAction.ROUTE_CREATED, metadata=_route_metadata(route))
    return route


async def list_public_routes(db: AsyncSession, limit: int = 50, offset: int = 0) -> Tuple[List[Route], int]:
    """Active public routes, default routes first, with the total count."""
    conditions = (Route.is_active == True, Route.is_public == True)

    total = (await db.execute(select(func.count(Route.id)).where(*conditions))).scalar() or 0

    result = await db.execute(
        select(Route)
        .where(*conditions)
        .order_by(case((Route.route_type == RouteType.DEFAULT, 0), else_=1), Route.name, Route.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def list_user_routes(db: AsyncSession, user_id: int) -> List[Route]:
    """Active routes created by ``user_id``, newest first."""
    result = await db.execute(
        select(Route)
        .where(Route.created_by == user_id, Route.is_active == True)
        .order_by(Route.created_at.desc(), Route.id.desc())
    )
    return list(result.scalars().all())


async def update_route(db: AsyncSession, route_id: int, data: RouteUpdate, actor: dict) -> Route:
    """
    Update route fields.

    Raises:
        RouteNotFoundError, InsufficientPermissionsError, ValidationError
    """
    route = await get_route(db, route_id)
    _ensure_can_edit(route, actor)

    changes = data.model_dump(exclude_unset=True)
    _check_required(changes)
    _reject_nulls(changes, NON_NULLABLE_ROUTE_FIELDS)

    for field, value in changes.items():
        if field in REQUIRED_ROUTE_FIELDS:
            value = value.strip()
        setattr(route, field, value)

    await db.commit()
    await db.refresh(route)

    await log_event(
        db,
        action=AuditAction.ROUTE_UPDATED,
        actor_id=actor.get("user_id"),
        actor_username=actor.get("sub"),
        metadata={**_route_metadata(route), "fields": sorted(changes)},
    )
    return route


async def deactivate_route(db: AsyncSession, route_id: int, actor: dict) -> Route:
    """
    Soft-delete a route. Default routes require an administrator.
    """
    route = await get_route(db, route_id)
    _ensure_can_edit(route, actor)

    route.is_active = False
    await db.commit()
    await db.refresh(route)

    logger.info("Route deactivated", extra={"route_id": route.id, "actor_id": actor.get("user_id")})
    await log_event(
        db,
        action=AuditAction.ROUTE_DEACTIVATED,
        actor_id=actor.get("user_id"),
        actor_username=actor.get("sub"),
        metadata=_route_metadata(route),
    )
    return route


async def list_stop_points(db: AsyncSession, route_id: int) -> List[StopPoint]:
    """Stop points of an active route ordered by ``stop_order``."""
    await get_route(db, route_id)

    result = await db.execute(
        select(StopPoint)
        .where(StopPoint.route_id == route_id)
        .order_by(StopPoint.stop_order)
    )
    return list(result.scalars().all())


async def get_stop_point(db: AsyncSession, route_id: int, stop_id: int) -> StopPoint:
    result = await db.execute(
        select(StopPoint).where(StopPoint.id == stop_id, StopPoint.route_id == route_id)
    )
    stop = result.scalar_one_or_none()

    if not stop:
        raise StopPointNotFoundError(stop_id)

    return stop


async def add_stop_point(db: AsyncSession, route_id: int, data: StopPointCreate, actor: dict) -> StopPoint:
    """
    Add a stop point to a route.

    Without ``stop_order`` the stop is appended. An explicit order is
    clamped to [1, N+1] and every stop at or after it moves up by one.
    """
    route = await _lock_route(db, route_id)
    _ensure_can_edit(route, actor)

    max_order = (
        await db.execute(select(func.max(StopPoint.stop_order)).where(StopPoint.route_id == route_id))
    ).scalar() or 0

    if data.stop_order is None:
        position = max_order + 1
    else:
        position = min(max(data.stop_order, 1), max_order + 1)

    # Shift from the tail so each single-row update keeps (route_id, stop_order) unique
    result = await db.execute(
        select(StopPoint.id)
        .where(StopPoint.route_id == route_id, StopPoint.stop_order >= position)
        .order_by(StopPoint.stop_order.desc())
    )
    for stop_id in result.scalars().all():
        await db.execute(
            update(StopPoint)
            .where(StopPoint.id == stop_id)
            .values(stop_order=StopPoint.stop_order + 1)
            .execution_options(synchronize_session="fetch")
        )

    stop = _new_stop(route_id, data, position)
    db.add(stop)
    await db.commit()
    await db.refresh(stop)

    await log_event(
        db,
        action=AuditAction.STOP_POINT_ADDED,
        actor_id=actor.get("user_id"),
        actor_username=actor.get("sub"),
        metadata={"route_id": route_id, "stop_id": stop.id, "stop_order": position},
    )
    return stop


async def update_stop_point(
    db: AsyncSession,
    route_id: int,
    stop_id: int,
    data: StopPointUpdate,
    actor: dict
) -> StopPoint:
    """Update a stop point's non-ordering fields."""
    route = await get_route(db, route_id)
    _ensure_can_edit(route, actor)

    stop = await get_stop_point(db, route_id, stop_id)
    changes = data.model_dump(exclude_unset=True)

    if "name" in changes and (changes["name"] is None or not changes["name"].strip()):
        raise ValidationError("Stop point name is required", details={"fields": ["name"]})
    _reject_nulls(changes, NON_NULLABLE_STOP_FIELDS)

    for field, value in changes.items():
        setattr(stop, field, value)

    await db.commit()
    await db.refresh(stop)

    await log_event(
        db,
        action=AuditAction.STOP_POINT_UPDATED,
        actor_id=actor.get("user_id"),
        actor_username=actor.get("sub"),
        metadata={"route_id": route_id, "stop_id": stop_id, "fields": sorted(changes)},
    )
    return stop


async def remove_stop_point(db: AsyncSession, route_id: int, stop_id: int, actor: dict) -> None:
    """
    Delete a stop point and renumber the remaining stops to 1..N,
    keeping their previous relative order.
    """
    route = await _lock_route(db, route_id)
    _ensure_can_edit(route, actor)

    stop = await get_stop_point(db, route_id, stop_id)
    removed_order = stop.stop_order

    await db.delete(stop)
    await db.flush()

    # Ascending pass only ever moves a stop into a slot freed before it
    result = await db.execute(
        select(StopPoint.id, StopPoint.stop_order)
        .where(StopPoint.route_id == route_id)
        .order_by(StopPoint.stop_order)
    )
    for position, (remaining_id, current_order) in enumerate(result.all(), start=1):
        if current_order != position:
            await db.execute(
                update(StopPoint)
                .where(StopPoint.id == remaining_id)
                .values(stop_order=position)
                .execution_options(synchronize_session="fetch")
            )

    await db.commit()

    await log_event(
        db,
        action=AuditAction.STOP_POINT_REMOVED,
        actor_id=actor.get("user_id"),
        actor_username=actor.get("sub"),
        metadata={"route_id": route_id, "stop_id": stop_id, "stop_order": removed_order},
    )


def _box_condition(lat_column, lng_column, box: geo_index.BoundingBox):
    conditions = [lat_column.isnot(None), lat_column.between(box.min_latitude, box.max_latitude)]
    if box.min_longitude is not None:
        conditions.append(lng_column.between(box.min_longitude, box.max_longitude))
    return and_(*conditions)


async def find_nearby_routes(
    db: AsyncSession,
    center,
    radius_km: float,
    limit: Optional[int] = None
) -> List[geo_index.Ranked]:
    """
    Active routes whose start or end lies within ``radius_km`` of ``center``,
    nearest first. A route's distance is the nearer of its two endpoints.
    """
    box = geo_index.bounding_box(center, radius_km)

    result = await db.execute(
        select(Route).where(
            Route.is_active == True,
            or_(
                _box_condition(Route.start_latitude, Route.start_longitude, box),
                _box_condition(Route.end_latitude, Route.end_longitude, box),
            ),
        )
    )

    ranked = geo_index.within_radius(
        center,
        result.scalars().all(),
        radius_km,
        locate=lambda r: [r.start_coordinate, r.end_coordinate],
        identify=lambda r: r.id,
    )
    return ranked[:limit] if limit else ranked


async def find_nearby_stops(
    db: AsyncSession,
    center,
    radius_km: float,
    limit: Optional[int] = None
) -> List[geo_index.Ranked]:
    """Stop points of active routes within ``radius_km`` of ``center``, nearest first."""
    box = geo_index.bounding_box(center, radius_km)

    result = await db.execute(
        select(StopPoint)
        .join(Route, Route.id == StopPoint.route_id)
        .where(
            Route.is_active == True,
            _box_condition(StopPoint.latitude, StopPoint.longitude, box),
        )
    )

    ranked = geo_index.within_radius(
        center,
        result.scalars().all(),
        radius_km,
        locate=lambda s: s.coordinate,
        identify=lambda s: s.id,
    )
    return ranked[:limit] if limit else ranked


async def search_routes(db: AsyncSession, term: str, limit: int = 50) -> List[Route]:
    """
    Case-insensitive substring search over name, description and both
    location labels of active routes.
    """
    if not term or not term.strip():
        raise ValidationError("Search term is required", details={"fields": ["q"]})

    pattern = f"%{term.strip()}%"
    result = await db.execute(
        select(Route)
        .where(
            Route.is_active == True,
            or_(
                Route.name.ilike(pattern),
                Route.description.ilike(pattern),
                Route.start_location.ilike(pattern),
                Route.end_location.ilike(pattern),
            ),
        )
        .order_by(Route.name, Route.id)
        .limit(limit)
    )
    return list(result.scalars().all())
