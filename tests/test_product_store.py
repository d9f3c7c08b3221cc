"""Tests for ProductStore scan handling, upserts and history."""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from junktrunk.db.models import Product, ScanEvent
from junktrunk.lookup.base import PartialResult, PriceRecord
from junktrunk.store.product_store import InvalidBarcodeError, ProductStore

from fakes import FakePipeline

BARCODE = "012345678905"
SINCE = datetime(2000, 1, 1)


def price(source, amount):
    return PriceRecord(source=source, price=Decimal(amount), url=f"https://{source.lower()}.example.com")


def widget(**overrides):
    fields = dict(
        name="Widget",
        image="api.jpg",
        brand="Acme",
        platform="UPCItemDB",
        platform_url="https://www.upcitemdb.com/upc/012345678905",
        prices=(price("Foo", "10.00"),),
    )
    fields.update(overrides)
    return PartialResult(**fields)


async def count(session, model):
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestScanNewProduct:
    @pytest.mark.asyncio
    async def test_creates_product_and_scan(self, db_session):
        store = ProductStore(db_session, FakePipeline({BARCODE: widget()}))

        result = await store.scan(
            f"  {BARCODE} ", client_price=19.5, latitude=40.7128, longitude=-74.006, user_id=7
        )

        assert result.found and result.is_new
        assert result.previous_scan is None
        product = result.product
        assert product.barcode == BARCODE
        assert product.name == "Widget"
        assert product.image_url == "api.jpg"
        assert product.price == Decimal("19.50")
        assert product.origin_platform == "UPCItemDB"
        assert product.prices == [
            {"source": "Foo", "price": "$10.00", "url": "https://foo.example.com"}
        ]

        scans = (await db_session.execute(select(ScanEvent))).scalars().all()
        assert len(scans) == 1
        assert scans[0].product_id == product.id
        assert scans[0].user_id == 7

    @pytest.mark.asyncio
    async def test_client_image_beats_resolved_image(self, db_session):
        store = ProductStore(db_session, FakePipeline({BARCODE: widget()}))
        result = await store.scan(BARCODE, client_image="client.jpg")
        assert result.product.image_url == "client.jpg"

    @pytest.mark.asyncio
    async def test_not_found_writes_nothing(self, db_session):
        pipeline = FakePipeline()
        store = ProductStore(db_session, pipeline)

        result = await store.scan(BARCODE)

        assert not result.found
        assert result.barcode == BARCODE
        assert pipeline.resolved == [BARCODE]
        assert await count(db_session, Product) == 0
        assert await count(db_session, ScanEvent) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("barcode", [None, "", "   "])
    async def test_blank_barcode_is_rejected(self, db_session, barcode):
        pipeline = FakePipeline()
        with pytest.raises(InvalidBarcodeError):
            await ProductStore(db_session, pipeline).scan(barcode)
        assert pipeline.resolved == []


class TestScanExistingProduct:
    @pytest.mark.asyncio
    async def test_reports_previous_scan_and_refreshes_prices(self, db_session):
        pipeline = FakePipeline({BARCODE: widget()})
        store = ProductStore(db_session, pipeline)
        first = await store.scan(BARCODE, latitude=1.5, longitude=2.5)
        first_scan = (await db_session.execute(select(ScanEvent))).scalar_one()

        pipeline.results[BARCODE] = widget(
            name="Renamed", prices=(price("eBay", "12.00"), price("Bar", "11.00"))
        )
        second = await store.scan(BARCODE)

        assert not second.is_new
        assert second.refreshed
        assert second.product.id == first.product.id
        assert second.previous_scan.id == first_scan.id
        assert second.previous_scan.latitude == Decimal("1.5")
        # Identity fields are never overwritten by a refresh
        assert second.product.name == "Widget"
        assert [p["source"] for p in second.product.prices] == ["eBay", "Bar"]
        assert await count(db_session, ScanEvent) == 2

    @pytest.mark.asyncio
    async def test_not_found_refresh_keeps_stored_data(self, db_session):
        pipeline = FakePipeline({BARCODE: widget()})
        store = ProductStore(db_session, pipeline)
        await store.scan(BARCODE)

        pipeline.results.clear()
        result = await store.scan(BARCODE, client_image="client.jpg")

        assert result.found
        assert not result.refreshed
        assert result.product.image_url == "api.jpg"
        assert result.product.prices[0]["source"] == "Foo"
        assert await count(db_session, ScanEvent) == 2

    @pytest.mark.asyncio
    async def test_empty_prices_keep_stored_prices(self, db_session):
        pipeline = FakePipeline({BARCODE: widget()})
        store = ProductStore(db_session, pipeline)
        await store.scan(BARCODE)

        pipeline.results[BARCODE] = widget(image="new.jpg", prices=())
        result = await store.scan(BARCODE)

        assert result.product.image_url == "new.jpg"
        assert result.product.prices[0]["source"] == "Foo"

    @pytest.mark.asyncio
    async def test_client_image_applied_on_refresh(self, db_session):
        pipeline = FakePipeline({BARCODE: widget()})
        store = ProductStore(db_session, pipeline)
        await store.scan(BARCODE)

        result = await store.scan(BARCODE, client_image="client.jpg")
        assert result.product.image_url == "client.jpg"


class TestConcurrentFirstScan:
    @pytest.mark.asyncio
    async def test_concurrent_scans_create_one_product(self, session_factory):
        async with session_factory() as first, session_factory() as second:
            store_a = ProductStore(first, FakePipeline({BARCODE: widget(image=None)}))
            store_b = ProductStore(second, FakePipeline({BARCODE: widget(image="b.jpg")}))

            results = await asyncio.gather(store_a.scan(BARCODE), store_b.scan(BARCODE))

        assert all(r.found for r in results)
        assert results[0].product.id == results[1].product.id

        async with session_factory() as check:
            products = (await check.execute(select(Product))).scalars().all()
            assert len(products) == 1
            # Whichever scan won, the non-null image survives the merge
            assert products[0].image_url == "b.jpg"
            assert await count(check, ScanEvent) == 2


class TestHistory:
    @pytest.mark.asyncio
    async def test_newest_first_with_user_filter(self, db_session):
        pipeline = FakePipeline({"111": widget(name="One"), "222": widget(name="Two")})
        store = ProductStore(db_session, pipeline)
        await store.scan("111", user_id=1)
        await store.scan("222", user_id=2)
        await store.scan("111", user_id=1)

        entries = await store.get_history(since=SINCE)
        assert [e.name for e in entries] == ["One", "Two", "One"]

        mine = await store.get_history(since=SINCE, user_id=1)
        assert [e.user_id for e in mine] == [1, 1]

        assert await store.get_history(since=datetime(2999, 1, 1)) == []

    @pytest.mark.asyncio
    async def test_missing_images_are_backfilled_and_saved(self, session_factory):
        pipeline = FakePipeline({BARCODE: widget(image=None)}, images={BARCODE: "found.jpg"})
        async with session_factory() as session:
            store = ProductStore(session, pipeline)
            await store.scan(BARCODE)
            await store.scan(BARCODE)

            entries = await store.get_history(since=SINCE)

        assert [e.image for e in entries] == ["found.jpg", "found.jpg"]
        # One lookup per distinct product
        assert pipeline.image_lookups == [BARCODE]

        async with session_factory() as check:
            product = (await check.execute(select(Product))).scalar_one()
            assert product.image_url == "found.jpg"

    @pytest.mark.asyncio
    async def test_failed_backfill_leaves_image_empty(self, db_session):
        pipeline = FakePipeline({BARCODE: widget(image=None)}, image_error=RuntimeError("down"))
        store = ProductStore(db_session, pipeline)
        await store.scan(BARCODE)

        entries = await store.get_history(since=SINCE)

        assert len(entries) == 1
        assert entries[0].image is None
        assert entries[0].prices[0]["price"] == "$10.00"

    @pytest.mark.asyncio
    async def test_stored_images_are_not_looked_up(self, db_session):
        pipeline = FakePipeline({BARCODE: widget()})
        store = ProductStore(db_session, pipeline)
        await store.scan(BARCODE)

        entries = await store.get_history(since=SINCE)
        assert entries[0].image == "api.jpg"
        assert pipeline.image_lookups == []


class TestUpdateProduct:
    @pytest.mark.asyncio
    async def test_partial_update(self, db_session):
        store = ProductStore(db_session, FakePipeline({BARCODE: widget()}))
        created = (await store.scan(BARCODE)).product

        updated = await store.update_product(
            created.id, {"name": "Better Widget", "price": 3.25, "brand": "ignored"}
        )

        assert updated.name == "Better Widget"
        assert updated.price == Decimal("3.25")
        assert updated.brand == "Acme"
        assert updated.image_url == "api.jpg"

    @pytest.mark.asyncio
    async def test_unknown_product(self, db_session):
        store = ProductStore(db_session, FakePipeline())
        assert await store.update_product(999, {"name": "x"}) is None
