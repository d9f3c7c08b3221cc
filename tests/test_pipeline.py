"""Tests for the multi-source resolution pipeline."""

from decimal import Decimal

import pytest

from junktrunk.lookup.base import PartialResult, PriceRecord
from junktrunk.lookup.http_client import TransientFetchError
from junktrunk.lookup.pipeline import (
    PipelineState,
    ResolutionPipeline,
    needs_food_catalog,
    needs_web_search,
    primary_settles,
)

from fakes import FakeSource

BARCODE = "012345678905"
BLOCKED = ["macys canada", "macy's canada"]


def price(source, amount):
    return PriceRecord(source=source, price=Decimal(amount), url=f"https://{source.lower()}.example.com")


def build_pipeline(primary=None, food=None, auction=None, web=None, **kwargs):
    sources = {
        "primary": primary or FakeSource("upcitemdb"),
        "food": food or FakeSource("openfoodfacts"),
        "auction": auction or FakeSource("ebay"),
        "web": web or FakeSource("google"),
    }
    kwargs.setdefault("blocked_merchants", BLOCKED)
    return ResolutionPipeline(**sources, **kwargs), sources


class TestPredicates:
    def test_food_runs_when_primary_missed(self):
        assert needs_food_catalog(PipelineState())

    def test_food_runs_when_name_without_image(self):
        state = PipelineState(result=PartialResult(name="Widget"), found_in_primary=True)
        assert needs_food_catalog(state)

    def test_food_runs_when_nothing_priced(self):
        state = PipelineState(
            result=PartialResult(name="Widget", image="w.jpg"), found_in_primary=True
        )
        assert needs_food_catalog(state)

    def test_food_skipped_when_complete(self):
        state = PipelineState(
            result=PartialResult(name="Widget", image="w.jpg", prices=(price("Foo", "1.00"),)),
            found_in_primary=True,
        )
        assert not needs_food_catalog(state)

    def test_primary_settles(self):
        assert primary_settles(PartialResult(name="Widget"))
        assert primary_settles(
            PartialResult(name="Widget", image="w.jpg", prices=(price("Foo", "1.00"),))
        )
        assert not primary_settles(PartialResult(name="Widget", image="w.jpg"))
        assert not primary_settles(PartialResult(image="w.jpg", prices=(price("Foo", "1.00"),)))

    def test_web_search(self):
        assert needs_web_search(PipelineState())
        assert not needs_web_search(
            PipelineState(result=PartialResult(name="Widget"), found_in_primary=True)
        )
        assert needs_web_search(
            PipelineState(result=PartialResult(name="Widget", image="w.jpg"), found_in_primary=True)
        )


class TestResolve:
    @pytest.mark.asyncio
    async def test_primary_hit_with_prices(self):
        primary = FakeSource(
            "upcitemdb",
            {
                BARCODE: PartialResult(
                    name="Widget",
                    platform="UPCItemDB",
                    platform_url="https://www.upcitemdb.com/upc/012345678905",
                    prices=(price("Foo", "10.00"), price("Macys Canada", "9.00")),
                )
            },
        )
        auction = FakeSource("ebay", {BARCODE: PartialResult(prices=(price("eBay", "12.00"),))})
        web = FakeSource("google", {BARCODE: PartialResult(name="Other")})
        pipeline, sources = build_pipeline(primary=primary, auction=auction, web=web)

        result = await pipeline.resolve(BARCODE)

        assert result.name == "Widget"
        assert result.platform == "UPCItemDB"
        assert [(p.source, p.price) for p in result.prices] == [
            ("Foo", Decimal("10.00")),
            ("eBay", Decimal("12.00")),
        ]
        # Name found without an image, so the food catalog is consulted
        assert sources["food"].calls == [BARCODE]
        # Primary hit and prices found: no web search
        assert web.calls == []

    @pytest.mark.asyncio
    async def test_food_catalog_names_product(self):
        food = FakeSource(
            "openfoodfacts",
            {
                BARCODE: PartialResult(
                    name="Cola",
                    image="cola.jpg",
                    platform="OpenFoodFacts",
                    platform_url="https://off/cola",
                    prices=(price("Ignored", "1.00"),),
                )
            },
        )
        pipeline, sources = build_pipeline(food=food)

        result = await pipeline.resolve(BARCODE)

        assert result.name == "Cola"
        assert result.image == "cola.jpg"
        assert result.platform == "OpenFoodFacts"
        assert result.prices == ()
        # Named and pictured but nothing priced it, so web search still runs
        assert sources["web"].calls == [BARCODE]

    @pytest.mark.asyncio
    async def test_food_catalog_name_suppresses_web_search(self):
        food = FakeSource(
            "openfoodfacts",
            {BARCODE: PartialResult(name="Cola", image="cola.jpg", platform="OpenFoodFacts")},
        )
        auction = FakeSource("ebay", {BARCODE: PartialResult(prices=(price("eBay", "3.00"),))})
        web = FakeSource("google", {BARCODE: PartialResult(prices=(price("Noise", "99.00"),))})
        pipeline, _ = build_pipeline(food=food, auction=auction, web=web)

        result = await pipeline.resolve(BARCODE)

        assert web.calls == []
        assert [p.source for p in result.prices] == ["eBay"]

    @pytest.mark.asyncio
    async def test_pictured_but_unpriced_primary_hit_keeps_searching(self):
        primary = FakeSource(
            "upcitemdb", {BARCODE: PartialResult(name="Widget", image="w.jpg", platform="UPCItemDB")}
        )
        auction = FakeSource("ebay", {BARCODE: PartialResult(prices=(price("eBay", "12.00"),))})
        web = FakeSource("google", {BARCODE: PartialResult(prices=(price("Shop", "11.00"),))})
        pipeline, sources = build_pipeline(primary=primary, auction=auction, web=web)

        result = await pipeline.resolve(BARCODE)

        assert sources["food"].calls == [BARCODE]
        assert web.calls == [BARCODE]
        assert [p.source for p in result.prices] == ["eBay", "Shop"]

    @pytest.mark.asyncio
    async def test_empty_food_answer_does_not_settle(self):
        primary = FakeSource("upcitemdb", {BARCODE: PartialResult(name="Widget", image="w.jpg")})
        pipeline, sources = build_pipeline(primary=primary)

        state = await pipeline.run_stage(pipeline.stages[0], BARCODE, PipelineState())
        assert not state.found_in_primary
        state = await pipeline.run_stage(pipeline.stages[1], BARCODE, state)

        assert sources["food"].calls == [BARCODE]
        assert not state.found_in_primary

    @pytest.mark.asyncio
    async def test_auction_never_sets_identity(self):
        auction = FakeSource(
            "ebay",
            {BARCODE: PartialResult(name="Listing", image="listing.jpg", prices=(price("eBay", "5.00"),))},
        )
        pipeline, _ = build_pipeline(auction=auction)
        assert await pipeline.resolve(BARCODE) is None

    @pytest.mark.asyncio
    async def test_all_sources_empty(self):
        pipeline, sources = build_pipeline()
        assert await pipeline.resolve(BARCODE) is None
        assert all(source.calls == [BARCODE] for source in sources.values())

    @pytest.mark.asyncio
    async def test_failing_sources_do_not_abort(self):
        primary = FakeSource("upcitemdb", error=TransientFetchError("boom"))
        web = FakeSource("google", {BARCODE: PartialResult(name="From search", platform="Google")})
        pipeline, _ = build_pipeline(primary=primary, web=web)

        result = await pipeline.resolve(BARCODE)
        assert result.name == "From search"
        assert result.platform == "Google"

    @pytest.mark.asyncio
    async def test_unconfigured_source_is_skipped(self):
        primary = FakeSource("upcitemdb", {BARCODE: PartialResult(name="Widget", image="w.jpg")})
        auction = FakeSource("ebay", {BARCODE: PartialResult(prices=(price("eBay", "5.00"),))}, configured=False)
        pipeline, _ = build_pipeline(primary=primary, auction=auction)

        result = await pipeline.resolve(BARCODE)
        assert auction.calls == []
        assert result.prices == ()

    @pytest.mark.asyncio
    async def test_prices_are_capped(self):
        primary = FakeSource(
            "upcitemdb",
            {BARCODE: PartialResult(name="Widget", prices=tuple(price(f"S{i}", f"{i + 1}.00") for i in range(4)))},
        )
        auction = FakeSource(
            "ebay", {BARCODE: PartialResult(prices=(price("eBay", "20.00"), price("eBay", "21.00")))}
        )
        pipeline, _ = build_pipeline(primary=primary, auction=auction, max_prices=5)

        result = await pipeline.resolve(BARCODE)
        assert [p.source for p in result.prices] == ["S0", "S1", "S2", "S3", "eBay"]


class TestResolveImage:
    @pytest.mark.asyncio
    async def test_stops_at_first_image(self):
        primary = FakeSource("upcitemdb", {BARCODE: PartialResult(name="Widget")})
        food = FakeSource("openfoodfacts", {BARCODE: PartialResult(name="Widget", image="food.jpg")})
        pipeline, sources = build_pipeline(primary=primary, food=food)

        assert await pipeline.resolve_image(BARCODE) == "food.jpg"
        assert sources["web"].image_calls == []
        assert sources["auction"].calls == []

    @pytest.mark.asyncio
    async def test_no_image_anywhere(self):
        pipeline, sources = build_pipeline()
        assert await pipeline.resolve_image(BARCODE) is None
        assert sources["web"].image_calls == [BARCODE]
