#!/usr/bin/env python3
"""
Fill in missing product images.

Looks up an image for every product stored without one, using the same
image-only lookup the history endpoint uses. Prices and names are left
alone.

Usage:
    python scripts/backfill_images.py [--limit N] [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from junktrunk.db.models import Product
from junktrunk.db.session import AsyncSessionLocal, engine
from junktrunk.logging_config import setup_logging
from junktrunk.lookup.pipeline import resolution_pipeline


async def backfill_images(limit: int | None = None, dry_run: bool = False):
    """Look up and store images for products that have none."""
    print("Starting image backfill...")

    async with AsyncSessionLocal() as db:
        query = select(Product).where(Product.image_url.is_(None)).order_by(Product.id)
        if limit:
            query = query.limit(limit)
        products = (await db.execute(query)).scalars().all()

        print(f"Products without an image: {len(products)}")
        if not products:
            print("\nNothing to backfill.")
            return

        found = 0
        for product in products:
            image = await resolution_pipeline.resolve_image(product.barcode)
            if not image:
                print(f"  - {product.barcode}: no image found")
                continue
            found += 1
            print(f"  - {product.barcode}: {image}")
            if not dry_run:
                product.image_url = image

        if dry_run:
            print(f"\n[DRY RUN] Would update {found} of {len(products)} products")
            return

        await db.commit()
        print(f"\n[OK] Updated {found} of {len(products)} products")


async def main():
    parser = argparse.ArgumentParser(description="Backfill missing product images")
    parser.add_argument("--limit", type=int, default=None, help="Max products to process")
    parser.add_argument("--dry-run", action="store_true", help="Look up but do not save")
    args = parser.parse_args()

    try:
        await backfill_images(limit=args.limit, dry_run=args.dry_run)
    finally:
        await resolution_pipeline.close()
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
