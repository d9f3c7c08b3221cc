"""eBay Finding API source: live listing prices by UPC."""

import logging
from typing import Any, Optional
from urllib.parse import quote

from junktrunk.config import settings
from junktrunk.lookup.base import PartialResult, PriceRecord, SourceClient, clean_text
from junktrunk.lookup.http_client import get_json, get_policy
from junktrunk.lookup.prices import to_decimal

logger = logging.getLogger(__name__)

PLACEHOLDER_APP_ID = "YourAppId"


def _first(value: Any) -> Any:
    """The Finding API wraps every value in a single-element list."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


class EbaySource(SourceClient):
    """
    Queries eBay listings by product identifier (UPC), not free text.

    Only prices are contributed; eBay titles and photos are listing-specific
    and are never trusted for product identity.
    """

    name = "ebay"

    @property
    def is_configured(self) -> bool:
        return bool(settings.ebay_app_id) and settings.ebay_app_id != PLACEHOLDER_APP_ID

    def search_url(self, barcode: str) -> str:
        return f"https://www.ebay.com/sch/i.html?_nkw={quote(barcode)}"

    async def _lookup(
        self, barcode: str, current: Optional[PartialResult]
    ) -> Optional[PartialResult]:
        client = await self._get_client()
        params = {
            "OPERATION-NAME": "findItemsByProduct",
            "SERVICE-VERSION": "1.0.0",
            "SECURITY-APPNAME": settings.ebay_app_id,
            "RESPONSE-DATA-FORMAT": "JSON",
            "REST-PAYLOAD": "",
            "productId": barcode,
            "productIdType": "UPC",
            "paginationInput.entriesPerPage": str(settings.ebay_max_results),
            "sortOrder": "PricePlusShippingLowest",
        }
        data = await get_json(client, settings.ebay_finding_url, get_policy(self.name), params=params)

        items = self.extract_items(data)
        if not items:
            return None

        prices = self.extract_prices(items, barcode)
        if not prices:
            return None
        return PartialResult(prices=tuple(prices))

    def extract_items(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        response = _first(data.get("findItemsByProductResponse"))
        if not response:
            return []
        search_result = _first(response.get("searchResult"))
        if not search_result:
            return []
        return search_result.get("item") or []

    def extract_prices(self, items: list[dict[str, Any]], barcode: str) -> list[PriceRecord]:
        """Prices in the API's lowest-first order, capped at ebay_max_results."""
        prices: list[PriceRecord] = []
        for item in items:
            selling_status = _first(item.get("sellingStatus")) or {}
            current_price = _first(selling_status.get("currentPrice")) or {}
            price = to_decimal(current_price.get("__value__"))
            if price is None or price <= 0:
                continue

            record = PriceRecord(
                source="eBay",
                price=price,
                url=clean_text(_first(item.get("viewItemURL"))) or self.search_url(barcode),
            )
            if any(record.is_duplicate_of(seen) for seen in prices):
                continue
            prices.append(record)
            if len(prices) >= settings.ebay_max_results:
                break
        return prices
