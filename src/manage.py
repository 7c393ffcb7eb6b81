"""Storefront database management CLI.

Provides commands to create and drop the database schema and to run the
expired-order sweep by hand. Reuses the setup_db/drop_db utilities in
storefront.utils.db.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
    python src/manage.py sweep      # Cancel expired unpaid orders once
"""

import argparse
import sys
from datetime import timedelta


def setup_database():
    """Create the storefront database schema."""
    from storefront.domain import storefront
    from storefront.utils.db import setup_db

    print("Initializing storefront domain...")
    storefront.init()
    print("Creating storefront database schema...")
    setup_db(storefront)
    print("Done.")


def drop_database():
    """Drop the storefront database schema."""
    from storefront.domain import storefront
    from storefront.utils.db import drop_db

    print("Initializing storefront domain...")
    storefront.init()
    print("Dropping storefront database schema...")
    drop_db(storefront)
    print("Done.")


def sweep_expired_orders(hours=None):
    """Cancel pending gateway orders older than the expiry threshold."""
    from storefront.domain import storefront
    from storefront.order.expiry import sweep

    storefront.init()
    threshold = timedelta(hours=hours) if hours is not None else None
    with storefront.domain_context():
        result = sweep(threshold=threshold)
    print(f"Scanned {result.scanned}, cancelled {result.cancelled}, skipped {result.skipped}.")


def main():
    parser = argparse.ArgumentParser(description="Storefront database management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    sweep_parser = subparsers.add_parser("sweep", help="Cancel expired unpaid orders")
    sweep_parser.add_argument(
        "--hours",
        type=float,
        help="Expiry threshold in hours (default: ORDER_EXPIRY_HOURS or 24)",
    )

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "sweep":
        sweep_expired_orders(args.hours)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
