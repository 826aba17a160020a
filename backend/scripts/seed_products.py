import argparse
import asyncio
import sys
from pathlib import Path

"""
Seed demo products into the catalog.

Run from the repo root:
  python backend/scripts/seed_products.py --reset
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.config import get_settings  # noqa: E402
from core.logging import configure_logging  # noqa: E402
from db.store import InventoryStore  # noqa: E402

DEMO_PRODUCTS = [
    {"name": "Espresso", "price": 2.50, "stock": 200},
    {"name": "Cappuccino", "price": 3.20, "stock": 150},
    {"name": "Croissant", "price": 2.10, "stock": 40},
    {"name": "Bottled Water", "price": 1.00, "stock": 120},
    {"name": "Chocolate Muffin", "price": 2.80, "stock": 30},
]


async def seed_products(reset: bool, dry_run: bool) -> None:
    settings = get_settings()
    configure_logging(settings)
    store = InventoryStore.from_settings(settings)
    try:
        await store.create_all()
        existing = await store.list_products()
        existing_names = {p.name.strip().lower() for p in existing}

        if reset:
            print(f"Deleting {len(existing)} products{' (dry run)' if dry_run else ''}")
            if not dry_run:
                for p in existing:
                    await store.delete_product(p.id)
            existing_names = set()

        created = 0
        for fields in DEMO_PRODUCTS:
            if fields["name"].lower() in existing_names:
                continue
            if not dry_run:
                await store.create_product(fields)
            created += 1
        print(f"Created products: {created}{' (dry run)' if dry_run else ''}")
    finally:
        await store.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo products")
    parser.add_argument("--reset", action="store_true", help="Delete all products first")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would change")
    args = parser.parse_args()
    asyncio.run(seed_products(reset=args.reset, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
