# Copyright (c) 2026 Flowsmith Contributors. All Rights Reserved.

"""
Database Initialization — Create tables from ORM metadata.
"""

import asyncio

from flowsmith.storage.database import close_db, create_all_tables

# Ensure models are imported so Base.metadata knows about them
import flowsmith.storage.models  # noqa: F401


async def init():
    """Create the workflow tables."""
    print("[init_db] Creating tables...")
    await create_all_tables()
    print("[init_db] Done.")
    await close_db()


def main():
    asyncio.run(init())


if __name__ == "__main__":
    main()
