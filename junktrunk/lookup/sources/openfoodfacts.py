"""OpenFoodFacts source: food product catalog, identity only."""

import logging
from typing import Any, Optional

from junktrunk.config import settings
from junktrunk.lookup.base import (
    UNKNOWN_PRODUCT_NAME,
    PartialResult,
    SourceClient,
    clean_text,
)
from junktrunk.lookup.http_client import get_json, get_policy

logger = logging.getLogger(__name__)


class OpenFoodFactsSource(SourceClient):
    """Looks a barcode up in OpenFoodFacts. Never contributes prices."""

    name = "openfoodfacts"

    def product_url(self, barcode: str) -> str:
        return f"{settings.openfoodfacts_base_url.rstrip('/')}/product/{barcode}"

    async def _lookup(
        self, barcode: str, current: Optional[PartialResult]
    ) -> Optional[PartialResult]:
        client = await self._get_client()
        url = f"{settings.openfoodfacts_base_url.rstrip('/')}/api/v0/product/{barcode}.json"
        data = await get_json(
            client,
            url,
            get_policy(self.name),
            headers={"User-Agent": settings.openfoodfacts_user_agent},
        )

        if data.get("status") != 1 or not data.get("product"):
            logger.debug(f"OpenFoodFacts status {data.get('status')} for {barcode}")
            return None
        return self.parse_product(data["product"], barcode)

    def parse_product(self, product: dict[str, Any], barcode: str) -> PartialResult:
        return PartialResult(
            name=clean_text(product.get("product_name"))
            or clean_text(product.get("product_name_en"))
            or UNKNOWN_PRODUCT_NAME,
            image=clean_text(product.get("image_url"))
            or clean_text(product.get("image_front_url")),
            brand=clean_text(product.get("brands")),
            category=clean_text(product.get("categories")),
            platform="OpenFoodFacts",
            platform_url=self.product_url(barcode),
        )
