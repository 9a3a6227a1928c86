import os
import sys
import asyncio
import logging

# Scripts run from app/; make the flat packages importable
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import AsyncSession

from core.db import AsyncSessionLocal, Base, engine
from core.environment import FleetSettings
from core.logging import setup_logging
from models import Driver, Vehicle

logger = logging.getLogger(__name__)

# plate, brand, model, color, year, current odometer, km since last revision
DEMO_FLEET = [
    ("ABC1D23", "Fiat", "Strada", "White", 2022, 4200, 4200),
    ("BRA2E19", "Volkswagen", "Saveiro", "Silver", 2021, 9300, 9300),
    ("QWE4R56", "Chevrolet", "Onix", "Black", 2023, 20650, 10650),
    ("RTY7U89", "Toyota", "Hilux", "Grey", 2020, 0, 0),
]

DEMO_DRIVERS = [
    ("Ana Souza", "ana.souza@example.com"),
    ("Bruno Lima", "bruno.lima@example.com"),
    ("Carla Mendes", None),
]


def build_vehicle(plate, brand, model, color, year, odometer, since_revision, settings: FleetSettings) -> Vehicle:
    """New vehicle with thresholds and revision margin taken from the fleet settings."""
    last_revision = odometer - since_revision
    return Vehicle(
        plate=plate,
        brand=brand,
        model=model,
        color=color,
        year=year,
        current_odometer=odometer,
        next_service_odometer=last_revision + settings.service_interval_km,
        next_revision_odometer=last_revision + settings.revision_interval_km,
        service_margin_km=settings.default_service_margin_km,
    )


async def seed_fleet(db: AsyncSession, settings: FleetSettings):
    vehicles = [build_vehicle(*row, settings=settings) for row in DEMO_FLEET]
    drivers = [Driver(name=name, email=email) for name, email in DEMO_DRIVERS]
    db.add_all(vehicles)
    db.add_all(drivers)
    await db.commit()
    logger.info("Seed data inserted", extra={"vehicles": len(vehicles), "drivers": len(drivers)})
    return vehicles, drivers


async def seed():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        await seed_fleet(db, FleetSettings.from_env())


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
