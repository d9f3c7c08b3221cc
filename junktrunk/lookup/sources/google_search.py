"""Google Custom Search source: last-resort prices, name and image."""

import asyncio
import logging
import re
from dataclasses import replace
from typing import Any, Optional
from urllib.parse import quote

import httpx

from junktrunk.config import settings
from junktrunk.lookup.base import PartialResult, PriceRecord, SourceClient, clean_text
from junktrunk.lookup.http_client import SourceUnavailable, get_json, get_policy
from junktrunk.lookup.prices import extract_prices

logger = logging.getLogger(__name__)

PLACEHOLDER_KEYS = {"your-api-key-here", "your-search-engine-id-here"}

# Marketplace suffixes appended to result titles
TITLE_NOISE = [
    re.compile(r"\s*-\s*Google Shopping.*", re.IGNORECASE),
    re.compile(r"\s*-\s*Amazon.*", re.IGNORECASE),
    re.compile(r"\s*-\s*eBay.*", re.IGNORECASE),
]

_BARCODE_IMAGE_MARKERS = ("barcode", "qr")


def clean_title(title: Optional[str]) -> Optional[str]:
    """Strip trailing marketplace names from a search result title."""
    if not title:
        return None
    for pattern in TITLE_NOISE:
        title = pattern.sub("", title)
    return title.strip() or None


def looks_like_barcode_image(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in _BARCODE_IMAGE_MARKERS)


class GoogleSearchSource(SourceClient):
    """
    Web search fallback with two sub-queries.

    The shopping query yields prices (regex-extracted from result text,
    labelled with the result's site) and a candidate name. The image query
    runs only while the product still has no image and skips results that
    look like pictures of the barcode itself.
    """

    name = "google"

    @property
    def is_configured(self) -> bool:
        key, cx = settings.google_api_key, settings.google_cx
        return bool(key and cx) and key not in PLACEHOLDER_KEYS and cx not in PLACEHOLDER_KEYS

    def search_url(self, barcode: str) -> str:
        return f"https://www.google.com/search?q={quote(barcode)}"

    async def _search(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        client = await self._get_client()
        data = await get_json(
            client,
            settings.google_search_url,
            get_policy(self.name),
            params={
                "key": settings.google_api_key,
                "cx": settings.google_cx,
                "safe": "active",
                **params,
            },
        )
        return data.get("items") or []

    async def _lookup(
        self, barcode: str, current: Optional[PartialResult]
    ) -> Optional[PartialResult]:
        errors: list[Exception] = []
        contribution = PartialResult()

        try:
            items = await self._search({"q": f"{barcode} buy price shopping", "num": 5})
            contribution = self.parse_shopping_results(items, barcode)
        except (SourceUnavailable, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Google shopping search failed for {barcode}: {e}")
            errors.append(e)

        if current is None or not current.image:
            try:
                image = await self._image_search(barcode)
                if image:
                    contribution = replace(contribution, image=image)
            except (SourceUnavailable, httpx.HTTPError, ValueError) as e:
                logger.warning(f"Google image search failed for {barcode}: {e}")
                errors.append(e)

        if contribution.is_empty and errors:
            raise errors[0]
        return contribution

    async def _image_search(self, barcode: str) -> Optional[str]:
        items = await self._search({"q": barcode, "searchType": "image", "num": 3})
        return self.pick_image(items)

    async def find_image(self, barcode: str) -> Optional[str]:
        """Run only the image query; the shopping query is skipped."""
        if not self.is_configured:
            return None
        try:
            return await asyncio.wait_for(
                self._image_search(barcode), timeout=settings.source_deadline_seconds
            )
        except (SourceUnavailable, httpx.HTTPError, ValueError, asyncio.TimeoutError) as e:
            logger.warning(f"Google image search failed for {barcode}: {e}")
            return None

    def parse_shopping_results(self, items: list[dict[str, Any]], barcode: str) -> PartialResult:
        """Prices from every result; name from the first usable title."""
        prices: list[PriceRecord] = []
        name = platform_url = None

        for item in items:
            link = clean_text(item.get("link")) or self.search_url(barcode)
            seller = clean_text(item.get("displayLink")) or "Google"
            text = " ".join(
                str(item.get(key) or "") for key in ("title", "snippet", "htmlSnippet")
            )

            for price in extract_prices(text):
                record = PriceRecord(source=seller, price=price, url=link)
                if not any(record.is_duplicate_of(seen) for seen in prices):
                    prices.append(record)

            if name is None:
                name = clean_title(item.get("title"))
                if name:
                    platform_url = link

        return PartialResult(
            name=name,
            platform="Google" if name else None,
            platform_url=platform_url,
            prices=tuple(prices),
        )

    def pick_image(self, items: list[dict[str, Any]]) -> Optional[str]:
        for item in items:
            link = clean_text(item.get("link"))
            if link and not looks_like_barcode_image(link):
                return link
        return None
