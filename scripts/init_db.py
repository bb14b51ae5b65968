#!/usr/bin/env python3
"""Create the database schema and seed a sample listing."""

import asyncio
import logging

from sqlalchemy import func, select

from campbook.core.database import async_session_factory, close_db, init_db
from campbook.models import Listing
from campbook.services.listing_service import ListingService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_OWNER_ID = "00000000-0000-0000-0000-000000000001"


async def create_sample_data() -> None:
    """Create a sample listing unless listings already exist."""
    async with async_session_factory() as db:
        existing = await db.execute(select(func.count()).select_from(Listing))
        if existing.scalar_one() > 0:
            logger.info("Sample data already exists, skipping...")
            return

        listing = await ListingService(db).create_listing(
            owner_id=SAMPLE_OWNER_ID,
            title="Lakeside pitch with hook-up",
            price_per_night=3500,
            max_guests=4,
        )
        logger.info("Created sample listing", extra={"listing_id": str(listing.id)})


async def main() -> None:
    try:
        await init_db()
        logger.info("Database schema created")
        await create_sample_data()
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
