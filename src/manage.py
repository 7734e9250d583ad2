"""Doorstep database management CLI.

Provides commands to create and drop the database schema of every domain
and to load a small demo catalogue with one delivery zone.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
    python src/manage.py seed       # Demo zone and products
"""

import argparse
import sys

DOMAIN_NAMES = ["inventory", "delivery", "ordering", "payments"]

DEMO_ZONE = {
    "name": "Brussels Central",
    "postal_codes": [str(code) for code in range(1000, 1051)],
    "fee_cents": 399,
    "free_threshold_cents": 4000,
}

DEMO_PRODUCTS = [
    ("Whole milk", "1L", 129, 40),
    ("Sourdough bread", "800g", 389, 15),
    ("Free-range eggs", "12 pcs", 459, 25),
    ("Bananas", "1kg", 219, 30),
    ("Espresso beans", "500g", 1299, 8),
]


def _domains(names=None):
    from delivery.domain import delivery
    from inventory.domain import inventory
    from ordering.domain import ordering
    from payments.domain import payments

    all_domains = {
        "inventory": inventory,
        "delivery": delivery,
        "ordering": ordering,
        "payments": payments,
    }
    return {name: all_domains[name] for name in names} if names else all_domains


def setup_databases(names=None):
    """Create database schemas for the specified (or all) domains."""
    from shared.db import setup_db

    for name, domain in _domains(names).items():
        print(f"Initializing {name} domain...")
        domain.init()
        print(f"Creating {name} database schema...")
        setup_db(domain)
        print(f"  {name} schema ready.")

    print("Done.")


def drop_databases(names=None):
    """Drop database schemas for the specified (or all) domains."""
    from shared.db import drop_db

    for name, domain in _domains(names).items():
        print(f"Initializing {name} domain...")
        domain.init()
        print(f"Dropping {name} database schema...")
        drop_db(domain)
        print(f"  {name} schema dropped.")

    print("Done.")


def seed():
    from delivery.info import add_zone
    from inventory.domain import inventory
    from inventory.stock.adjustment import RegisterProduct

    setup_databases()

    zone_id = add_zone(**DEMO_ZONE)
    print(f"Zone {DEMO_ZONE['name']}: {zone_id}")

    with inventory.domain_context():
        for name, size, price, stock in DEMO_PRODUCTS:
            product_id = inventory.process(
                RegisterProduct(name=name, size=size, unit_price_cents=price, initial_stock=stock),
                asynchronous=False,
            )
            print(f"  {name} ({size}): {product_id}")

    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Doorstep database management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup-db", help="Create all database tables")
    setup_parser.add_argument(
        "--domain",
        choices=DOMAIN_NAMES,
        nargs="*",
        help="Specific domain(s) to set up (default: all)",
    )

    drop_parser = subparsers.add_parser("drop-db", help="Drop all database tables")
    drop_parser.add_argument(
        "--domain",
        choices=DOMAIN_NAMES,
        nargs="*",
        help="Specific domain(s) to drop (default: all)",
    )

    subparsers.add_parser("seed", help="Load a demo delivery zone and products")

    args = parser.parse_args()

    from shared.config import get_settings
    from shared.logging import configure_logging

    configure_logging(get_settings())

    if args.command == "setup-db":
        setup_databases(args.domain)
    elif args.command == "drop-db":
        drop_databases(args.domain)
    elif args.command == "seed":
        seed()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
