"""
create_tables.py
----------------
Create (or recreate) the BubbleChat schema: users, personas, threads,
messages and content_reports.

Usage:
    python create_tables.py            # create missing tables
    python create_tables.py --drop     # drop everything first (dev only)
"""

import argparse
import asyncio

from bubblechat.core.logging import configure_logging, get_logger
from bubblechat.db.session import engine
from bubblechat.models import Base  # populates metadata with every table

logger = get_logger(__name__)


async def create_all_tables(drop: bool = False) -> None:
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
            logger.warning("Dropped all tables")
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    logger.info("Tables ready", tables=sorted(Base.metadata.tables))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the BubbleChat database schema.")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(create_all_tables(drop=args.drop))
