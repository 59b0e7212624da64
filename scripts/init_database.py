#!/usr/bin/env python3
"""
Initialize the library database.

This script:
1. Creates all database tables
2. Loads reference data (membership types, locations, first admin)
3. Optionally loads Faker-generated demo data

Usage:
    python scripts/init_database.py [--drop-existing] [--sample-data] [--database-url URL]
"""

import argparse
import logging
import sys

from library_circulation.config import get_config
from library_circulation.database.seed import seed_demo_data, seed_reference_data
from library_circulation.database.session import DatabaseManager
from library_circulation.errors import LibraryError

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Initialize the library circulation database")
    parser.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating new ones",
    )
    parser.add_argument(
        "--sample-data",
        action="store_true",
        help="Load generated demo data after creating tables",
    )
    parser.add_argument("--database-url", help="Override the configured database URL")
    parser.add_argument("--admin-email", default="admin@library.local")
    parser.add_argument("--admin-password", default="admin123")

    args = parser.parse_args()

    config = get_config()
    db = DatabaseManager(
        args.database_url or config.get_database_url(), busy_timeout=config.sqlite_busy_timeout
    )

    if not db.verify_connection():
        logger.error("Failed to connect to database")
        sys.exit(1)

    try:
        db.init_database(drop_existing=args.drop_existing)

        with db.session_scope() as session:
            seed_reference_data(session, config, args.admin_email, args.admin_password)
        logger.info("Reference data loaded")

        if args.sample_data:
            with db.session_scope() as session:
                summary = seed_demo_data(session)
            logger.info("Demo data loaded: %s", summary)
    except LibraryError as e:
        logger.error("Initialization failed: %s", e.message)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
