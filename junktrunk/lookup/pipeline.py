"""Multi-source barcode resolution pipeline.

Sources run strictly one after another. Each stage decides, from what the
earlier stages found, whether it is worth an external call at all:

1. primary catalog (UPCItemDB): always
2. food catalog (OpenFoodFacts): identity still incomplete or no prices yet
3. auction listings (eBay): always, when an app id is configured
4. web search (Google): no catalog settled the product, or name+image but no prices

A catalog "settles" the product when it leaves a name behind. The primary
catalog does not count as settling when it supplied an image but no prices,
so the food catalog and web search still get a chance to price it.

The merged result is returned only when it carries a name.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from junktrunk import metrics
from junktrunk.config import settings
from junktrunk.logging_config import get_logger
from junktrunk.lookup.base import PartialResult, SourceClient
from junktrunk.lookup.merge import ALL_FIELDS, PRICE_FIELDS, merge, truncate_prices
from junktrunk.lookup.sources import (
    EbaySource,
    GoogleSearchSource,
    OpenFoodFactsSource,
    UPCItemDBSource,
)

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ALL_FIELDS - PRICE_FIELDS


@dataclass(frozen=True)
class PipelineState:
    """Immutable accumulator threaded through the stages."""

    result: PartialResult = field(default_factory=PartialResult)
    found_in_primary: bool = False


def always(state: PipelineState) -> bool:
    return True


def primary_settles(result: PartialResult) -> bool:
    """Name found, and an image only counts once something priced it."""
    return bool(result.name) and (not result.image or bool(result.prices))


def has_name(result: PartialResult) -> bool:
    return bool(result.name)


def needs_food_catalog(state: PipelineState) -> bool:
    """Primary missed, or found a name but no image, or name+image but no prices."""
    r = state.result
    return (
        not state.found_in_primary
        or (bool(r.name) and not r.image)
        or (bool(r.name) and bool(r.image) and not r.prices)
    )


def needs_web_search(state: PipelineState) -> bool:
    """No catalog settled the product, or name+image were found but nothing priced them."""
    r = state.result
    return not state.found_in_primary or (bool(r.name) and bool(r.image) and not r.prices)


@dataclass(frozen=True)
class Stage:
    """One named step of the pipeline."""

    name: str
    source: SourceClient
    should_run: Callable[[PipelineState], bool]
    accepts: frozenset[str]
    settles: Optional[Callable[[PartialResult], bool]] = None


class ResolutionPipeline:
    """Resolves a barcode into one merged product record."""

    def __init__(
        self,
        primary: Optional[SourceClient] = None,
        food: Optional[SourceClient] = None,
        auction: Optional[SourceClient] = None,
        web: Optional[SourceClient] = None,
        max_prices: Optional[int] = None,
        blocked_merchants: Optional[list[str]] = None,
    ):
        self.primary = primary or UPCItemDBSource()
        self.food = food or OpenFoodFactsSource()
        self.auction = auction or EbaySource()
        self.web = web or GoogleSearchSource()
        self.max_prices = max_prices if max_prices is not None else settings.max_prices
        self.blocked_merchants = blocked_merchants

        self.stages = [
            Stage("primary", self.primary, always, ALL_FIELDS, settles=primary_settles),
            Stage("food", self.food, needs_food_catalog, IDENTITY_FIELDS, settles=has_name),
            Stage("auction", self.auction, always, PRICE_FIELDS),
            Stage("web_search", self.web, needs_web_search, ALL_FIELDS),
        ]

    async def run_stage(self, stage: Stage, barcode: str, state: PipelineState) -> PipelineState:
        """Run one stage if its predicate and configuration allow it."""
        log = get_logger(__name__, barcode=barcode, stage=stage.name)
        if not stage.should_run(state):
            log.debug(f"Skipping {stage.name} stage for {barcode}")
            return state
        if not stage.source.is_configured:
            log.debug(f"Skipping {stage.name} stage for {barcode}: source not configured")
            return state

        contribution = await stage.source.lookup(barcode, current=state.result)
        result = merge(
            state.result,
            contribution,
            accepts=stage.accepts,
            blocked_merchants=self.blocked_merchants,
        )
        # Only a source that actually answered can settle the product
        settled = (
            contribution is not None and stage.settles is not None and stage.settles(result)
        )
        found_in_primary = state.found_in_primary or settled
        return PipelineState(result=result, found_in_primary=found_in_primary)

    async def resolve(self, barcode: str) -> Optional[PartialResult]:
        """
        Resolve a barcode across all sources.

        Args:
            barcode: UPC/EAN to resolve

        Returns:
            Merged result with a non-empty name, or None when no source
            could name the product
        """
        log = get_logger(__name__, barcode=barcode)
        log.info(f"Resolving barcode {barcode}")
        state = PipelineState()
        for stage in self.stages:
            state = await self.run_stage(stage, barcode, state)

        result = truncate_prices(state.result, self.max_prices)
        found = bool(result.name)
        metrics.record_resolution(found)

        if not found:
            log.info(f"Barcode {barcode} not found in any source")
            return None

        log.info(
            f"Resolved {barcode} as '{result.name}' via {result.platform} "
            f"({len(result.prices)} prices, image={'yes' if result.image else 'no'})"
        )
        return result

    async def resolve_image(self, barcode: str) -> Optional[str]:
        """
        Find an image only, stopping at the first source that has one.

        Auction listings are never consulted, and the web source runs only
        its image query.
        """
        for source in (self.primary, self.food, self.web):
            if not source.is_configured:
                continue
            image = await source.find_image(barcode)
            if image:
                return image
        return None

    async def close(self):
        """Close every source's HTTP client."""
        for stage in self.stages:
            try:
                await stage.source.close()
            except Exception:
                logger.exception(f"Error closing {stage.name} source")


resolution_pipeline = ResolutionPipeline()
