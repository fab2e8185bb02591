#!/usr/bin/env python3
"""Setup script for the booking engine: migrate the schema and seed sample inventory."""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from booking_engine.core.clock import utcnow
from booking_engine.core.config import settings
from booking_engine.core.database import Database
from booking_engine.core.dependencies import Requestor, Role, issue_token
from booking_engine.models import *  # Import all models to ensure they're registered
from booking_engine.models.resource import ResourceKind
from booking_engine.services.reservation_coordinator import ReservationCoordinator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SEED_ADMIN = Requestor(user_id="seed-admin", roles=frozenset({Role.ADMIN}))


def setup_database():
    """Bring the schema up to the latest migration."""
    logger.info("Setting up database...")

    try:
        alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
        alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))
        alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)

        logger.info("Running database migrations...")
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed")

    except Exception as e:
        logger.error(f"Database setup failed: {e}")
        raise


async def create_sample_data(database: Database):
    """Create a tour, a few flights and a room type for trying the API."""
    logger.info("Creating sample data...")

    async with database.session() as session:
        existing = (await session.execute(select(func.count()).select_from(Tour))).scalar_one()
    if existing > 0:
        logger.info("Sample data already exists, skipping...")
        return

    coordinator = ReservationCoordinator(database, settings)
    base_date = utcnow().replace(minute=0, second=0, microsecond=0) + timedelta(days=30)

    await coordinator.create_resource(
        ResourceKind.TOUR,
        {
            "name": "Northern Lights Adventure",
            "description": "Experience the magical Aurora Borealis in Iceland with expert guides",
            "starts_at": base_date,
            "ends_at": base_date + timedelta(days=4),
            "capacity_total": 40,
            "price_amount": 29999,
            "price_currency": "USD",
        },
        SEED_ADMIN,
    )

    for i in range(3):
        departs_at = base_date + timedelta(days=i * 7, hours=8)
        await coordinator.create_resource(
            ResourceKind.FLIGHT,
            {
                "name": "Reykjavik to Akureyri",
                "flight_number": f"FI{310 + i}",
                "origin": "RKV",
                "destination": "AEY",
                "departs_at": departs_at,
                "arrives_at": departs_at + timedelta(minutes=45),
                "capacity_total": 70,
                "price_amount": 12900,
                "price_currency": "USD",
            },
            SEED_ADMIN,
        )

    await coordinator.create_resource(
        ResourceKind.ROOM,
        {
            "name": "Aurora View Double",
            "hotel_name": "Hotel Borealis",
            "room_type": "DOUBLE",
            "max_occupancy": 2,
            "capacity_total": 12,
            "price_amount": 18500,
            "price_currency": "USD",
        },
        SEED_ADMIN,
    )

    logger.info("Sample data created successfully!")


async def seed():
    database = Database.from_settings(settings)
    try:
        await create_sample_data(database)
    finally:
        await database.dispose()


def main():
    """Main setup function."""
    logger.info("Starting booking engine setup...")

    # Setup database
    setup_database()

    # Create sample data
    asyncio.run(seed())

    logger.info("Setup completed successfully!")
    logger.info("Admin token for local testing: %s", issue_token("seed-admin", [Role.ADMIN.value]))
    logger.info(
        "You can now start the API server with: cd server && uvicorn booking_engine.main:app --reload"
    )


if __name__ == "__main__":
    main()
