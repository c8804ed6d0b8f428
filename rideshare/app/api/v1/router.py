"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from rideshare.app.api.v1.endpoints import routes, trips, trip_requests

router = APIRouter()

# Route catalog and stop discovery
router.include_router(routes.router)
router.include_router(routes.stops_router)

# Trips and seat requests
router.include_router(trips.router)
router.include_router(trip_requests.router)
