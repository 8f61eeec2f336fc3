#!/usr/bin/env python3
"""
Database initialisation script.

Creates the ScreenSync tables and optionally seeds a small demo fleet:
two venues, three linked screens and two advertisers with approved videos.

Usage:
    python scripts/init_db.py [--drop-existing] [--seed]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from screensync.common.config import get_settings
from screensync.common.database import close_db, create_tables, db, drop_tables, init_db
from screensync.common.logger import get_logger, setup_logging
from screensync.models import (
    AdAsset,
    Advertiser,
    ApprovalStatus,
    ContractStatus,
    Location,
    Screen,
)

logger = get_logger(__name__)


async def seed_data() -> None:
    """Seed a demo fleet for development."""
    logger.info("Seeding demo fleet...")

    async with db.session() as session:
        result = await session.execute(select(Location).limit(1))
        if result.scalar():
            logger.info("Data already exists, skipping seed")
            return

        # ------------------------------------------------------------------
        # Venues and screens
        # ------------------------------------------------------------------
        markthal = Location(name="Markthal", city="Rotterdam", region_code="ZH")
        station = Location(name="Utrecht Centraal", city="Utrecht", region_code="UT")
        session.add_all([markthal, station])
        await session.flush()

        screens = [
            Screen(name="Markthal Entrance", player_id="100001", location_id=markthal.id),
            Screen(name="Markthal Food Court", player_id="100002", location_id=markthal.id),
            Screen(name="Utrecht Hall B", player_id="100003", location_id=station.id),
        ]
        session.add_all(screens)
        logger.info("Created screens", count=len(screens))

        # ------------------------------------------------------------------
        # Advertisers with approved videos
        # ------------------------------------------------------------------
        advertisers = [
            Advertiser(
                name="Bakkerij Jansen",
                contract_status=ContractStatus.SIGNED.value,
                target_cities=["Rotterdam"],
            ),
            Advertiser(
                name="Fietsenwinkel Utrecht",
                contract_status=ContractStatus.ACTIVE.value,
                target_region_codes=["UT"],
            ),
        ]
        session.add_all(advertisers)
        await session.flush()

        for advertiser in advertisers:
            session.add(
                AdAsset(
                    advertiser_id=advertiser.id,
                    storage_path=f"ads/{advertiser.id}/video.mp4",
                    original_filename="video.mp4",
                    mime_type="video/mp4",
                    approval_status=ApprovalStatus.APPROVED.value,
                )
            )
        logger.info("Created advertisers", count=len(advertisers))

    logger.info("Database seeding completed")


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Initialize the ScreenSync database")
    parser.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Seed a demo fleet of venues, screens and advertisers",
    )

    args = parser.parse_args()

    settings = get_settings()
    setup_logging()
    logger.info("Initializing database", host=settings.database.host, port=settings.database.port)

    await init_db()
    try:
        if args.drop_existing:
            logger.warning("Dropping existing tables...")
            await drop_tables()
        await create_tables()

        if args.seed:
            await seed_data()
    finally:
        await close_db()

    logger.info("Database initialization complete!")


if __name__ == "__main__":
    asyncio.run(main())
