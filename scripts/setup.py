#!/usr/bin/env python3
"""Setup script for the waitlist engine: migrate the database and load demo data."""

import argparse
import asyncio
import logging
from datetime import timedelta
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from waitlist_engine.core.clock import utcnow
from waitlist_engine.core.database import async_session_factory, close_db
from waitlist_engine.models import WaitlistEntry
from waitlist_engine.services.waitlist_service import WaitlistService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

server_dir = Path(__file__).parent.parent / "server"


def setup_database() -> None:
    """Run Alembic migrations up to head."""
    logger.info("Running database migrations...")
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Queue three demo clients for one fully booked slot."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        existing = await db.execute(select(func.count(WaitlistEntry.id)))
        if existing.scalar() > 0:
            logger.info("Sample data already exists, skipping...")
            return

        service = WaitlistService(db)
        slot = (utcnow() + timedelta(days=3)).replace(hour=10, minute=0, second=0, microsecond=0)
        for client_id in ("client-ada", "client-ben", "client-cy"):
            entry = await service.enroll(
                client_id=client_id,
                service_id="svc-haircut",
                employee_id="emp-sam",
                requested_date_time=slot,
                duration=45,
                addon_ids=["addon-wash"],
                total_price=4500,
            )
            logger.info(f"Enrolled {client_id} at position {entry.position}")

    await close_db()
    logger.info("Sample data created successfully!")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--sample-data", action="store_true", help="Load demo waitlist entries")
    args = parser.parse_args()

    setup_database()
    if args.sample_data:
        asyncio.run(create_sample_data())

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: uvicorn waitlist_engine.main:app --reload")


if __name__ == "__main__":
    main()
