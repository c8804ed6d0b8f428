"""
Database seeding script for system default routes.

Creates the public default routes (with their stop points) that every user
can post trips on. Safe to run repeatedly: routes are matched by name.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.ext.asyncio import AsyncSession

from rideshare.app.db.session import AsyncSessionLocal, engine, Base
from rideshare.app.schemas.route import RouteCreate, StopPointCreate
from rideshare.app.services.route_catalog import create_default_route
import rideshare.app.main  # noqa: F401  (registers models)


def _stop(name, latitude, longitude, order, description=None):
    return StopPointCreate(
        name=name,
        description=description,
        latitude=latitude,
        longitude=longitude,
        estimated_arrival_time=(order - 1) * 10,
    )


DEFAULT_ROUTES = [
    RouteCreate(
        name="CBD to Airport",
        description="Central Business District to Jomo Kenyatta International Airport",
        start_location="Nairobi CBD",
        start_latitude=-1.2864,
        start_longitude=36.8172,
        end_location="JKIA",
        end_latitude=-1.3192,
        end_longitude=36.9278,
        distance_km=18.5,
        estimated_duration_minutes=45,
        stop_points=[
            _stop("CBD Bus Station", -1.2864, 36.8172, 1, "Main bus terminal in the city center"),
            _stop("Uhuru Highway Junction", -1.2921, 36.8219, 2),
            _stop("Wilson Airport", -1.3218, 36.8148, 3),
            _stop("JKIA Terminal 1", -1.3192, 36.9278, 4, "International departures"),
        ],
    ),
    RouteCreate(
        name="University to Shopping Mall",
        description="University of Nairobi to Westgate Shopping Mall",
        start_location="University of Nairobi",
        start_latitude=-1.2796,
        start_longitude=36.8077,
        end_location="Westgate Mall",
        end_latitude=-1.2676,
        end_longitude=36.8071,
        distance_km=8.2,
        estimated_duration_minutes=25,
        stop_points=[
            _stop("University Main Gate", -1.2796, 36.8077, 1),
            _stop("Museum Hill", -1.2743, 36.8138, 2),
            _stop("Westlands Roundabout", -1.2693, 36.8096, 3),
            _stop("Westgate Mall", -1.2676, 36.8071, 4),
        ],
    ),
    RouteCreate(
        name="Industrial Area to Residential Zone",
        description="Industrial Area to Karen residential area",
        start_location="Industrial Area",
        start_latitude=-1.3031,
        start_longitude=36.8595,
        end_location="Karen",
        end_latitude=-1.3197,
        end_longitude=36.6829,
        distance_km=15.3,
        estimated_duration_minutes=35,
        stop_points=[
            _stop("Industrial Area Gate", -1.3031, 36.8595, 1),
            _stop("Nyayo Stadium", -1.3017, 36.8344, 2),
            _stop("Lang'ata Road Junction", -1.3141, 36.7821, 3),
            _stop("Karen Shopping Center", -1.3197, 36.6829, 4),
        ],
    ),
]


async def seed_default_routes(db: AsyncSession) -> list:
    """Create every default route that does not exist yet; returns all of them."""
    return [await create_default_route(db, data) for data in DEFAULT_ROUTES]


async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Seeding default routes...")
        routes = await seed_default_routes(db)
        for route in routes:
            print(f"✅ {route.name} (id={route.id})")

    await engine.dispose()
    print("\n🎉 Default route seeding completed")


if __name__ == "__main__":
    asyncio.run(main())
