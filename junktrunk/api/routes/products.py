"""Product scan, history and edit routes."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError

from junktrunk.api.deps import get_product_store
from junktrunk.db.models import Product
from junktrunk.lookup.base import PriceRecord
from junktrunk.lookup.prices import format_price
from junktrunk.store.product_store import InvalidBarcodeError, ProductStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"


class ScanRequest(BaseModel):
    barcode: Optional[str] = None
    price: Optional[float] = None
    image_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    user_id: Optional[int] = None

    @field_validator("barcode", mode="before")
    @classmethod
    def coerce_barcode(cls, v: Any) -> Any:
        """Some scanners send numeric barcodes as JSON numbers."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class PriceResponse(BaseModel):
    source: str
    price: str
    url: str


class ScannedProductResponse(BaseModel):
    id: int
    barcode: str
    name: Optional[str]
    price: Optional[str]
    image: Optional[str]
    description: Optional[str]
    suggestions: List[str] = []
    lastScannedAt: Optional[datetime]
    lastScannedLatitude: Optional[float]
    lastScannedLongitude: Optional[float]
    prices: List[PriceResponse]


class ScanResponse(BaseModel):
    success: bool = True
    product: ScannedProductResponse


class ScanNotFoundResponse(BaseModel):
    success: bool = False
    error: str = PRODUCT_NOT_FOUND
    message: str
    barcode: str


class HistoryProductResponse(BaseModel):
    id: int
    barcode: str
    name: str
    image: Optional[str]
    prices: List[PriceResponse]


class HistoryScanResponse(BaseModel):
    scanId: int
    scannedAt: Optional[datetime]
    latitude: Optional[float]
    longitude: Optional[float]
    userId: Optional[int]
    product: HistoryProductResponse


class HistoryResponse(BaseModel):
    success: bool = True
    count: int
    scans: List[HistoryScanResponse]


class ProductResponse(BaseModel):
    id: int
    barcode: str
    name: Optional[str]
    price: Optional[str]
    image: Optional[str]
    description: Optional[str]
    brand: Optional[str]
    category: Optional[str]
    suggestions: List[str] = []
    prices: List[PriceResponse]


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = None
    image_url: Optional[str] = None
    description: Optional[str] = None


class UpdateResponse(BaseModel):
    success: bool = True
    message: str


def _display_price(value: Optional[Decimal]) -> Optional[str]:
    return format_price(value) if value is not None else None


def _as_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _price_list(raw: Any) -> List[PriceResponse]:
    """Stored price entries, re-rendered; unusable rows are skipped."""
    if not isinstance(raw, list):
        return []
    prices = []
    for entry in raw:
        record = PriceRecord.from_dict(entry) if isinstance(entry, dict) else None
        if record is None:
            logger.warning(f"Skipping malformed stored price entry: {entry!r}")
            continue
        prices.append(PriceResponse(**record.to_dict()))
    return prices


def _product_response(product: Product) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        barcode=product.barcode,
        name=product.name,
        price=_display_price(product.price),
        image=product.image_url,
        description=product.description,
        brand=product.brand,
        category=product.category,
        prices=_price_list(product.prices),
    )


@router.post("/scan", response_model=Union[ScanResponse, ScanNotFoundResponse])
async def scan_product(
    payload: ScanRequest,
    store: ProductStore = Depends(get_product_store),
):
    """
    Scan a barcode.

    Known products are refreshed from the external sources (stored data is
    kept if they all fail). Unknown products are created only when some
    source can name them; otherwise PRODUCT_NOT_FOUND is returned.
    """
    try:
        result = await store.scan(
            payload.barcode,
            client_price=payload.price,
            client_image=payload.image_url,
            latitude=payload.latitude,
            longitude=payload.longitude,
            user_id=payload.user_id,
        )
    except InvalidBarcodeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError:
        logger.exception(f"Database error while scanning {payload.barcode}")
        raise HTTPException(status_code=500, detail="Database error")

    if not result.found:
        return ScanNotFoundResponse(
            message="Product not found in any API",
            barcode=result.barcode,
        )

    product = result.product
    previous = result.previous_scan
    return ScanResponse(
        product=ScannedProductResponse(
            id=product.id,
            barcode=product.barcode,
            name=product.name,
            price=_display_price(product.price),
            image=product.image_url,
            description=product.description,
            lastScannedAt=previous.scanned_at if previous else None,
            lastScannedLatitude=_as_float(previous.latitude) if previous else None,
            lastScannedLongitude=_as_float(previous.longitude) if previous else None,
            prices=_price_list(product.prices),
        )
    )


@router.get("/history/today", response_model=HistoryResponse)
async def get_today_history(
    user_id: Optional[int] = Query(None, description="Only scans by this user"),
    store: ProductStore = Depends(get_product_store),
):
    """Scans since 00:00 UTC today, newest first."""
    since = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    try:
        entries = await store.get_history(since=since, user_id=user_id)
    except SQLAlchemyError:
        logger.exception("Error fetching today's scan history")
        raise HTTPException(status_code=500, detail="Database error")

    scans = [
        HistoryScanResponse(
            scanId=entry.scan_id,
            scannedAt=entry.scanned_at,
            latitude=_as_float(entry.latitude),
            longitude=_as_float(entry.longitude),
            userId=entry.user_id,
            product=HistoryProductResponse(
                id=entry.product_id,
                barcode=entry.barcode or "",
                name=entry.name or "",
                image=entry.image,
                prices=_price_list(entry.prices),
            ),
        )
        for entry in entries
    ]
    return HistoryResponse(count=len(scans), scans=scans)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: int, store: ProductStore = Depends(get_product_store)):
    """Get a product by ID."""
    product = await store.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return _product_response(product)


@router.put("/{product_id}", response_model=UpdateResponse)
async def update_product(
    product_id: int,
    update: ProductUpdate,
    store: ProductStore = Depends(get_product_store),
):
    """Partially update a product's name, price, image or description."""
    fields = update.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    try:
        product = await store.update_product(product_id, fields)
    except SQLAlchemyError:
        logger.exception(f"Failed to update product {product_id}")
        raise HTTPException(status_code=500, detail="Failed to update product")

    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return UpdateResponse(message="Product updated successfully")
