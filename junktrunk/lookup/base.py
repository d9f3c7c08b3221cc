"""Base source interface and value types for product resolution."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import httpx

from junktrunk import metrics
from junktrunk.config import settings
from junktrunk.lookup.http_client import PermanentURLError, SourceUnavailable
from junktrunk.lookup.prices import format_price, is_same_price, parse_price, quantize

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT_NAME = "Unknown Product"


@dataclass(frozen=True)
class PriceRecord:
    """One observed price from one merchant or platform."""

    source: str
    price: Decimal
    url: str

    def __post_init__(self):
        object.__setattr__(self, "price", quantize(self.price))

    def is_duplicate_of(self, other: "PriceRecord") -> bool:
        """Same source and a price within one cent."""
        return self.source == other.source and is_same_price(self.price, other.price)

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source, "price": format_price(self.price), "url": self.url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Optional["PriceRecord"]:
        """Rebuild a stored price entry; returns None for unusable rows."""
        price = parse_price(str(data.get("price") or ""))
        if price is None or price <= 0:
            return None
        return cls(
            source=str(data.get("source") or ""),
            price=price,
            url=str(data.get("url") or ""),
        )


@dataclass(frozen=True)
class PartialResult:
    """
    What one source contributes for a barcode.

    The pipeline also threads one of these through its stages as the
    merged accumulator, so a "finished" product is just a PartialResult
    with a name.
    """

    name: Optional[str] = None
    image: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    platform: Optional[str] = None
    platform_url: Optional[str] = None
    prices: tuple[PriceRecord, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not any(
            (self.name, self.image, self.brand, self.category, self.prices)
        )

    def price_dicts(self) -> list[dict[str, str]]:
        return [p.to_dict() for p in self.prices]


def clean_text(value: Any) -> Optional[str]:
    """Normalize an API string field; blank values count as absent."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def is_blocked_merchant(source: str, blocked: Optional[list[str]] = None) -> bool:
    """Case-insensitive substring match against the blocked merchant list."""
    terms = settings.blocked_merchants if blocked is None else blocked
    lowered = source.lower()
    return any(term.lower() in lowered for term in terms if term)


class SourceClient(ABC):
    """
    Abstract base class for external product sources.

    Subclasses implement ``_lookup``. The public ``lookup`` wraps it with a
    deadline and turns every failure into a NotFound (None) so one bad
    source never aborts a resolution.
    """

    #: Label used in logs and metrics
    name: str = "source"

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._http_client = client
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        """Whether the credentials this source needs are present."""
        return True

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=settings.source_timeout_seconds,
                follow_redirects=True,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def lookup(
        self, barcode: str, current: Optional[PartialResult] = None
    ) -> Optional[PartialResult]:
        """
        Look up a barcode in this source.

        Args:
            barcode: UPC/EAN to look up
            current: Accumulated result so far, for sources that only fill gaps

        Returns:
            The source's contribution, or None when nothing usable was found
            or the source failed.
        """
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._lookup(barcode, current),
                timeout=settings.source_deadline_seconds,
            )
        except PermanentURLError:
            metrics.record_source_lookup(self.name, "not_found", time.monotonic() - start)
            logger.info(f"{self.name}: no entry for {barcode}")
            return None
        except asyncio.TimeoutError:
            metrics.record_source_lookup(self.name, "timeout", time.monotonic() - start)
            logger.warning(
                f"{self.name}: lookup for {barcode} exceeded "
                f"{settings.source_deadline_seconds}s deadline"
            )
            return None
        except (SourceUnavailable, httpx.HTTPError) as e:
            metrics.record_source_lookup(self.name, "error", time.monotonic() - start)
            logger.warning(f"{self.name}: lookup failed for {barcode}: {e}")
            return None
        except (
            ValueError, KeyError, TypeError, IndexError, AttributeError, ArithmeticError
        ) as e:
            # Malformed payload (bad JSON, unexpected shape, unusable numbers)
            metrics.record_source_lookup(self.name, "error", time.monotonic() - start)
            logger.warning(f"{self.name}: malformed response for {barcode}: {e!r}")
            return None

        outcome = "not_found" if result is None or result.is_empty else "found"
        metrics.record_source_lookup(self.name, outcome, time.monotonic() - start)
        if outcome == "not_found":
            logger.info(f"{self.name}: nothing found for {barcode}")
            return None

        logger.info(
            f"{self.name}: found {barcode} "
            f"(name={'yes' if result.name else 'no'}, "
            f"image={'yes' if result.image else 'no'}, prices={len(result.prices)})"
        )
        return result

    async def find_image(self, barcode: str) -> Optional[str]:
        """Look up only an image for the barcode."""
        result = await self.lookup(barcode)
        return result.image if result else None

    @abstractmethod
    async def _lookup(
        self, barcode: str, current: Optional[PartialResult]
    ) -> Optional[PartialResult]:
        """
        Query the external API and translate its response.

        Raises:
            SourceUnavailable: On transport/HTTP failures
            PermanentURLError: When the API says the barcode does not exist
        """
        pass
