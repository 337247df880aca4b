"""Database setup for workshop environments.

Creates all application tables, optionally with a table prefix so several
attendees can share one database. ``users`` and ``knowledge_entries`` are
always shared (never prefixed).

Usage:
    python -m apps.setup_db.main
    python -m apps.setup_db.main --table-prefix cole
"""
import argparse
import os
import sys
from typing import List, Optional


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create Workshop Chat database tables")
    parser.add_argument(
        "--table-prefix",
        default=None,
        help="Prefix for per-tenant tables (default: TABLE_PREFIX from the environment)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: DATABASE_URL from the environment)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    # Table names are resolved from settings when the models are imported
    if args.table_prefix is not None:
        os.environ["TABLE_PREFIX"] = args.table_prefix
    if args.database_url is not None:
        os.environ["DATABASE_URL"] = args.database_url

    from workshop_chat.core.config import get_settings

    get_settings.cache_clear()

    from workshop_chat.core.database import (
        CONVERSATIONS_TABLE,
        KNOWLEDGE_TABLE,
        USERS_TABLE,
        init_db,
        prefixed,
    )
    from workshop_chat.core.logging_config import setup_logging

    logger = setup_logging("setup_db")
    prefix = get_settings().table_prefix

    # Model table names are fixed when workshop_chat.core.database is first imported
    if CONVERSATIONS_TABLE != prefixed("chat_conversations"):
        logger.error(
            f"Table prefix {prefix!r} requested, but the models were already loaded as "
            f"{CONVERSATIONS_TABLE!r}. Run setup in a fresh process (python -m apps.setup_db.main)."
        )
        return 2

    if prefix:
        logger.info(f"Setting up database with prefix {prefix!r}...")
    else:
        logger.info("Setting up database (no prefix)...")

    try:
        tables = init_db()
    except Exception as e:
        logger.error(f"Setup failed: {e}", exc_info=True)
        return 1

    shared = {USERS_TABLE, KNOWLEDGE_TABLE}
    for table in tables:
        logger.info(f"  {table}{' (shared)' if table in shared else ''}")

    logger.info("Done! All tables created.")
    if prefix:
        own = [t for t in tables if t not in shared]
        logger.info(f"Your tables: {', '.join(own)}")
        logger.info(f"Shared tables: {', '.join(sorted(shared))}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
