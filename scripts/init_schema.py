#!/usr/bin/env python3
"""Install the Postgres tables the API expects.

Usage:
    # Using environment variables:
    DATABASE_URL=postgresql://localhost:5432/asktrevor python scripts/init_schema.py

    # Or with command line args:
    python scripts/init_schema.py --database-url postgresql://localhost:5432/asktrevor

    # Print the DDL without connecting:
    python scripts/init_schema.py --dry-run

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def init_schema(database_url: str) -> list[str]:
    """Create any missing tables and indexes, then verify them.

    Returns:
        the names of the required tables
    """
    from asktrevor.storage.postgres import REQUIRED_TABLES, PostgresStore

    store = PostgresStore(database_url, verify_schema=False)
    try:
        store.ensure_schema()
        store._verify_required_schema()
    finally:
        store.close()
    return list(REQUIRED_TABLES)


def main():
    parser = argparse.ArgumentParser(
        description="Install the Ask Trevor Postgres schema",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="PostgreSQL connection string (or set DATABASE_URL env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the schema DDL without connecting",
    )

    args = parser.parse_args()

    if args.dry_run:
        from asktrevor.storage.postgres import SCHEMA_SQL

        print(SCHEMA_SQL)
        return

    if not args.database_url:
        print("Error: --database-url or DATABASE_URL environment variable required")
        sys.exit(1)

    try:
        tables = init_schema(args.database_url)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("Schema ready:")
    for table in tables:
        print(f"  {table}")


if __name__ == "__main__":
    main()
