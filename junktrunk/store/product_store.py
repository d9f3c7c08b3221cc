"""Product persistence: scan handling, upserts and scan history."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from junktrunk import metrics
from junktrunk.config import settings
from junktrunk.db.models import Product, ScanEvent
from junktrunk.lookup.base import PartialResult
from junktrunk.lookup.merge import choose_image, plan_refresh
from junktrunk.lookup.pipeline import ResolutionPipeline

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "price", "image_url", "description")


class InvalidBarcodeError(ValueError):
    """Raised when a scan is submitted without a usable barcode."""
    pass


@dataclass
class ScanResult:
    """Outcome of one scan."""

    barcode: str
    found: bool
    product: Optional[Product] = None
    previous_scan: Optional[ScanEvent] = None
    is_new: bool = False
    refreshed: bool = False


@dataclass
class HistoryEntry:
    """A scan joined with its product's current data (detached snapshot)."""

    scan_id: int
    scanned_at: datetime
    latitude: Optional[Decimal]
    longitude: Optional[Decimal]
    user_id: Optional[int]
    product_id: int
    barcode: str
    name: Optional[str]
    image: Optional[str]
    prices: list


def _to_decimal(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


class ProductStore:
    """
    Owns the products and scan_history tables.

    The resolution pipeline only proposes data; this class decides how it
    is applied to stored rows.
    """

    def __init__(self, db: AsyncSession, pipeline: ResolutionPipeline):
        self.db = db
        self.pipeline = pipeline

    # ------------------------------------------------------------------
    # Repository operations
    # ------------------------------------------------------------------

    async def find_by_barcode(self, barcode: str) -> Optional[Product]:
        result = await self.db.execute(select(Product).where(Product.barcode == barcode))
        return result.scalar_one_or_none()

    async def get_product(self, product_id: int) -> Optional[Product]:
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        return result.scalar_one_or_none()

    def _dialect_insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")

    async def insert_or_merge_by_barcode(
        self,
        barcode: str,
        resolved: PartialResult,
        image_url: Optional[str] = None,
        price: Optional[Decimal] = None,
    ) -> Product:
        """
        Atomically create the product, or merge into the row a concurrent
        scan created first.

        On conflict only the image is merged (the new one if non-null,
        otherwise the stored one); every other column keeps the first
        writer's value.
        """
        insert = self._dialect_insert()
        now = datetime.utcnow()

        stmt = insert(Product).values(
            barcode=barcode,
            name=resolved.name,
            price=price,
            image_url=image_url,
            brand=resolved.brand,
            category=resolved.category,
            origin_platform=resolved.platform,
            origin_url=resolved.platform_url,
            prices=resolved.price_dicts(),
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Product.barcode],
            set_={
                "image_url": func.coalesce(stmt.excluded.image_url, Product.image_url),
                "updated_at": now,
            },
        ).returning(Product.id)

        product_id = (await self.db.execute(stmt)).scalar_one()

        result = await self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def update_prices(self, product: Product, prices: list[dict[str, str]]) -> None:
        product.prices = list(prices)
        await self.db.flush()

    async def update_image(self, product: Product, image_url: str) -> None:
        product.image_url = image_url
        await self.db.flush()

    async def insert_scan_event(
        self,
        product_id: int,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        user_id: Optional[int] = None,
    ) -> ScanEvent:
        event = ScanEvent(
            product_id=product_id,
            scanned_at=datetime.utcnow(),
            latitude=_to_decimal(latitude),
            longitude=_to_decimal(longitude),
            user_id=user_id,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def latest_scan_event(self, product_id: int) -> Optional[ScanEvent]:
        result = await self.db.execute(
            select(ScanEvent)
            .where(ScanEvent.product_id == product_id)
            .order_by(ScanEvent.scanned_at.desc(), ScanEvent.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def query_scan_events_since(
        self, since: datetime, user_id: Optional[int] = None
    ) -> list[tuple[ScanEvent, Product]]:
        query = (
            select(ScanEvent, Product)
            .join(Product, ScanEvent.product_id == Product.id)
            .where(ScanEvent.scanned_at >= since)
        )
        if user_id is not None:
            query = query.where(ScanEvent.user_id == user_id)
        query = query.order_by(ScanEvent.scanned_at.desc(), ScanEvent.id.desc())

        result = await self.db.execute(query)
        return [(scan, product) for scan, product in result.all()]

    # ------------------------------------------------------------------
    # Scan workflow
    # ------------------------------------------------------------------

    async def scan(
        self,
        barcode: Optional[str],
        client_price: Optional[float] = None,
        client_image: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        user_id: Optional[int] = None,
    ) -> ScanResult:
        """
        Handle one barcode scan.

        Known barcodes log the scan first, then refresh prices/image from the
        pipeline (keeping stored data if every source fails). Unknown
        barcodes are resolved and created only if some source names them.

        Raises:
            InvalidBarcodeError: If the barcode is missing or blank
        """
        barcode = (barcode or "").strip()
        if not barcode:
            raise InvalidBarcodeError("Barcode is required")

        product = await self.find_by_barcode(barcode)
        if product is not None:
            return await self._scan_existing(
                product, client_image, latitude, longitude, user_id
            )
        return await self._scan_new(
            barcode, client_price, client_image, latitude, longitude, user_id
        )

    async def _scan_existing(
        self,
        product: Product,
        client_image: Optional[str],
        latitude: Optional[float],
        longitude: Optional[float],
        user_id: Optional[int],
    ) -> ScanResult:
        logger.info(f"Product {product.id} found for barcode {product.barcode}, refreshing")

        # Read before writing so "last scanned" reflects the prior visit
        previous = await self.latest_scan_event(product.id)
        await self.insert_scan_event(product.id, latitude, longitude, user_id)
        await self.db.commit()

        resolved = await self.pipeline.resolve(product.barcode)
        plan = plan_refresh(product.image_url, resolved, client_image)

        if resolved is None:
            logger.warning(
                f"Refresh skipped for {product.barcode}: no source answered, returning cached data"
            )
        if plan.prices is not None:
            await self.update_prices(product, plan.prices)
        if plan.image is not None:
            await self.update_image(product, plan.image)
        if plan.has_changes:
            await self.db.commit()
            logger.info(
                f"Refreshed product {product.id}: "
                f"prices={'updated' if plan.prices is not None else 'kept'}, "
                f"image={'updated' if plan.image is not None else 'kept'}"
            )

        metrics.record_scan("existing")
        return ScanResult(
            barcode=product.barcode,
            found=True,
            product=product,
            previous_scan=previous,
            is_new=False,
            refreshed=resolved is not None,
        )

    async def _scan_new(
        self,
        barcode: str,
        client_price: Optional[float],
        client_image: Optional[str],
        latitude: Optional[float],
        longitude: Optional[float],
        user_id: Optional[int],
    ) -> ScanResult:
        logger.info(f"Barcode {barcode} not in database, looking up")
        # Don't hold a connection open while external sources are queried
        await self.db.rollback()

        resolved = await self.pipeline.resolve(barcode)
        if resolved is None:
            metrics.record_scan("not_found")
            return ScanResult(barcode=barcode, found=False)

        product = await self.insert_or_merge_by_barcode(
            barcode,
            resolved,
            image_url=choose_image(client_image, resolved.image),
            price=_to_decimal(client_price),
        )
        await self.insert_scan_event(product.id, latitude, longitude, user_id)
        await self.db.commit()
        logger.info(f"Product saved with ID {product.id} for barcode {barcode}")

        metrics.record_scan("created")
        return ScanResult(barcode=barcode, found=True, product=product, is_new=True, refreshed=True)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_history(
        self, since: datetime, user_id: Optional[int] = None
    ) -> list[HistoryEntry]:
        """
        Scans at or after ``since``, newest first, with product data.

        Products without a stored image get a best-effort image lookup;
        a failed lookup leaves the image empty instead of failing the call.
        """
        rows = await self.query_scan_events_since(since, user_id)

        missing = {product.barcode: product for _, product in rows if not product.image_url}
        images: dict[str, Optional[str]] = {}
        if missing and settings.history_backfill_enabled:
            images = await self._find_images(list(missing))

        entries = [
            HistoryEntry(
                scan_id=scan.id,
                scanned_at=scan.scanned_at,
                latitude=scan.latitude,
                longitude=scan.longitude,
                user_id=scan.user_id,
                product_id=product.id,
                barcode=product.barcode,
                name=product.name,
                image=product.image_url or images.get(product.barcode),
                prices=list(product.prices or []),
            )
            for scan, product in rows
        ]

        found = {barcode: image for barcode, image in images.items() if image}
        if found:
            await self._save_backfilled_images(missing, found)
        return entries

    async def _find_image(self, barcode: str, semaphore: asyncio.Semaphore) -> Optional[str]:
        async with semaphore:
            try:
                image = await self.pipeline.resolve_image(barcode)
            except Exception as e:
                logger.warning(f"Error fetching image for {barcode}: {e}")
                image = None
        metrics.record_history_backfill(image is not None)
        return image

    async def _find_images(self, barcodes: list[str]) -> dict[str, Optional[str]]:
        semaphore = asyncio.Semaphore(max(1, settings.history_backfill_concurrency))
        found = await asyncio.gather(*(self._find_image(b, semaphore) for b in barcodes))
        return dict(zip(barcodes, found))

    async def _save_backfilled_images(
        self, products: dict[str, Product], images: dict[str, str]
    ) -> None:
        """Persist looked-up images; a storage error here only costs the cache."""
        try:
            for barcode, image in images.items():
                products[barcode].image_url = image
            await self.db.commit()
            logger.info(f"Saved {len(images)} backfilled images")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Could not save backfilled images: {e}")

    # ------------------------------------------------------------------
    # Manual edits
    # ------------------------------------------------------------------

    async def update_product(self, product_id: int, fields: dict[str, Any]) -> Optional[Product]:
        """
        Partially update name, price, image_url and description.

        Returns:
            The updated product, or None if it does not exist
        """
        product = await self.get_product(product_id)
        if product is None:
            return None

        for key, value in fields.items():
            if key not in UPDATABLE_FIELDS:
                continue
            if key == "price":
                value = _to_decimal(value)
            setattr(product, key, value)

        await self.db.commit()
        return product
