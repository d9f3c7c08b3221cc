"""UPCItemDB source: the primary general-merchandise catalog."""

import logging
from typing import Any, Optional

from junktrunk.config import settings
from junktrunk.lookup.base import (
    UNKNOWN_PRODUCT_NAME,
    PartialResult,
    PriceRecord,
    SourceClient,
    clean_text,
    is_blocked_merchant,
)
from junktrunk.lookup.http_client import get_json, get_policy
from junktrunk.lookup.prices import to_decimal

logger = logging.getLogger(__name__)


class UPCItemDBSource(SourceClient):
    """
    Looks a barcode up in UPCItemDB.

    Supplies name, image, brand and category, plus one price per merchant
    offer. The item's lowest recorded price is used only when no offer
    survives the blocked-merchant filter.
    """

    name = "upcitemdb"

    def product_url(self, barcode: str) -> str:
        return f"https://www.upcitemdb.com/upc/{barcode}"

    def _endpoint(self) -> tuple[str, dict[str, str]]:
        base = settings.upcitemdb_base_url.rstrip("/")
        if settings.upcitemdb_user_key:
            return f"{base}/v1/lookup", {
                "user_key": settings.upcitemdb_user_key,
                "key_type": settings.upcitemdb_key_type,
            }
        return f"{base}/trial/lookup", {}

    async def _lookup(
        self, barcode: str, current: Optional[PartialResult]
    ) -> Optional[PartialResult]:
        client = await self._get_client()
        url, headers = self._endpoint()
        data = await get_json(
            client, url, get_policy(self.name), params={"upc": barcode}, headers=headers
        )

        items = data.get("items") or []
        if not items:
            return None
        return self.parse_item(items[0], barcode)

    def parse_item(self, item: dict[str, Any], barcode: str) -> PartialResult:
        """Translate one UPCItemDB item into a contribution."""
        page_url = self.product_url(barcode)
        images = item.get("images") or []

        return PartialResult(
            name=clean_text(item.get("title"))
            or clean_text(item.get("description"))
            or UNKNOWN_PRODUCT_NAME,
            image=clean_text(images[0]) if images else None,
            brand=clean_text(item.get("brand")),
            category=clean_text(item.get("category")),
            platform="UPCItemDB",
            platform_url=page_url,
            prices=tuple(self.extract_offer_prices(item, page_url)),
        )

    def extract_offer_prices(self, item: dict[str, Any], page_url: str) -> list[PriceRecord]:
        """All merchant offers, falling back to the lowest recorded price."""
        prices: list[PriceRecord] = []

        for offer in item.get("offers") or []:
            merchant = clean_text(offer.get("merchant"))
            price = to_decimal(offer.get("price"))
            if not merchant or price is None or price <= 0:
                continue
            if is_blocked_merchant(merchant):
                logger.debug(f"Skipping price from {merchant} (blocked merchant)")
                continue

            record = PriceRecord(
                source=merchant,
                price=price,
                url=clean_text(offer.get("link")) or page_url,
            )
            if not any(record.is_duplicate_of(seen) for seen in prices):
                prices.append(record)

        if not prices:
            lowest = to_decimal(item.get("lowest_recorded_price"))
            if lowest is not None and lowest > 0:
                prices.append(PriceRecord(source="UPCItemDB", price=lowest, url=page_url))

        return prices
