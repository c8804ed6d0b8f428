"""
Route Catalog API Endpoints.

Public route discovery plus route and stop point management for their creators.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.app.core.config import settings
from rideshare.app.core.dependencies import get_current_user
from rideshare.app.core.guards import require_admin
from rideshare.app.db.session import get_db
from rideshare.app.schemas.route import (
    RouteCreate,
    RouteUpdate,
    RouteResponse,
    RouteDetailResponse,
    RouteListResponse,
    NearbyRouteResponse,
    NearbyStopResponse,
    StopPointCreate,
    StopPointUpdate,
    StopPointResponse,
)
from rideshare.app.schemas.trip import TripResponse
from rideshare.app.services import route_catalog, trip_registry
from rideshare.app.services.geo_index import Coordinate

router = APIRouter(prefix="/routes", tags=["Routes"])
stops_router = APIRouter(prefix="/stops", tags=["Stop Points"])


@router.get("", response_model=RouteListResponse)
async def list_routes(
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    """List active public routes, system defaults first."""
    routes, total = await route_catalog.list_public_routes(db, limit=limit, offset=offset)
    return RouteListResponse(
        routes=[RouteResponse.model_validate(r) for r in routes],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=RouteDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_route(
    data: RouteCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a custom route owned by the caller.

    Stop points given inline are stored in the order listed.
    """
    route = await route_catalog.create_route(db, data, created_by=current_user["user_id"])
    stops = await route_catalog.list_stop_points(db, route.id)
    return _route_detail(route, stops)


@router.post("/defaults", response_model=RouteDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_default_route(
    data: RouteCreate,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create a system default route (Admin only). Returns the existing one if the name is taken."""
    route = await route_catalog.create_default_route(db, data)
    stops = await route_catalog.list_stop_points(db, route.id)
    return _route_detail(route, stops)


@router.get("/search", response_model=List[NearbyRouteResponse])
async def search_routes(
    q: Optional[str] = Query(None, description="Text to match against name, description and locations"),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: float = Query(settings.default_route_radius_km, gt=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: AsyncSession = Depends(get_db)
):
    """
    Search routes by text or by proximity.

    With ``latitude``/``longitude`` the results are the routes whose start or
    end lies within ``radius_km``, nearest first. Otherwise ``q`` is required.
    """
    if latitude is not None and longitude is not None:
        ranked = await route_catalog.find_nearby_routes(db, Coordinate(latitude, longitude), radius_km, limit=limit)
        return [
            NearbyRouteResponse(route=RouteResponse.model_validate(r.item), distance_km=round(r.distance_km, 3))
            for r in ranked
        ]

    if latitude is not None or longitude is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Both latitude and longitude are required for a proximity search"
        )

    routes = await route_catalog.search_routes(db, q, limit=limit)
    return [NearbyRouteResponse(route=RouteResponse.model_validate(r)) for r in routes]


@router.get("/mine", response_model=List[RouteResponse])
async def list_my_routes(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List active routes created by the caller."""
    routes = await route_catalog.list_user_routes(db, current_user["user_id"])
    return [RouteResponse.model_validate(r) for r in routes]


@router.get("/{route_id}", response_model=RouteDetailResponse)
async def get_route(
    route_id: int = Path(..., description="Route ID"),
    db: AsyncSession = Depends(get_db)
):
    """Get an active route with its ordered stop points."""
    route = await route_catalog.get_route(db, route_id)
    stops = await route_catalog.list_stop_points(db, route_id)
    return _route_detail(route, stops)


@router.put("/{route_id}", response_model=RouteResponse)
async def update_route(
    data: RouteUpdate,
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update route details (creator or Admin)."""
    route = await route_catalog.update_route(db, route_id, data, current_user)
    return RouteResponse.model_validate(route)


@router.delete("/{route_id}", response_model=RouteResponse)
async def deactivate_route(
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Deactivate a route (creator or Admin).

    Routes are never physically deleted. Default routes need an Admin.
    """
    route = await route_catalog.deactivate_route(db, route_id, current_user)
    return RouteResponse.model_validate(route)


@router.get("/{route_id}/stops", response_model=List[StopPointResponse])
async def list_stop_points(
    route_id: int = Path(..., description="Route ID"),
    db: AsyncSession = Depends(get_db)
):
    """List a route's stop points in order."""
    stops = await route_catalog.list_stop_points(db, route_id)
    return [StopPointResponse.model_validate(s) for s in stops]


@router.post("/{route_id}/stops", response_model=StopPointResponse, status_code=status.HTTP_201_CREATED)
async def add_stop_point(
    data: StopPointCreate,
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Add a stop point.

    Appended when ``stop_order`` is omitted; otherwise inserted at that
    position (clamped to the end) and later stops move down one place.
    """
    stop = await route_catalog.add_stop_point(db, route_id, data, current_user)
    return StopPointResponse.model_validate(stop)


@router.put("/{route_id}/stops/{stop_id}", response_model=StopPointResponse)
async def update_stop_point(
    data: StopPointUpdate,
    route_id: int = Path(..., description="Route ID"),
    stop_id: int = Path(..., description="Stop point ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update a stop point's details. Ordering is not editable here."""
    stop = await route_catalog.update_stop_point(db, route_id, stop_id, data, current_user)
    return StopPointResponse.model_validate(stop)


@router.delete("/{route_id}/stops/{stop_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_stop_point(
    route_id: int = Path(..., description="Route ID"),
    stop_id: int = Path(..., description="Stop point ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Remove a stop point; the remaining stops are renumbered 1..N."""
    await route_catalog.remove_stop_point(db, route_id, stop_id, current_user)


@router.get("/{route_id}/trips", response_model=List[TripResponse])
async def list_route_trips(
    route_id: int = Path(..., description="Route ID"),
    include_expired: bool = Query(False),
    db: AsyncSession = Depends(get_db)
):
    """List non-cancelled trips on a route."""
    trips = await trip_registry.list_route_trips(db, route_id, include_expired=include_expired)
    return [TripResponse.model_validate(t) for t in trips]


@stops_router.get("/nearby", response_model=List[NearbyStopResponse])
async def find_nearby_stops(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(settings.default_stop_radius_km, gt=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: AsyncSession = Depends(get_db)
):
    """Stop points of active routes near a location, nearest first."""
    ranked = await route_catalog.find_nearby_stops(db, Coordinate(latitude, longitude), radius_km, limit=limit)
    return [
        NearbyStopResponse(stop_point=StopPointResponse.model_validate(r.item), distance_km=round(r.distance_km, 3))
        for r in ranked
    ]


def _route_detail(route, stops) -> RouteDetailResponse:
    return RouteDetailResponse(
        **RouteResponse.model_validate(route).model_dump(),
        stop_points=[StopPointResponse.model_validate(s) for s in stops],
    )
