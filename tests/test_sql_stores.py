"""
Tests for the SQLAlchemy stores, against SQLite through aiosqlite.
"""
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select

from stock_hub.database import build_engine, build_session_factory, create_all
from stock_hub.db_models import AuditLog, AuditStatus, ProductType
from stock_hub.domain import ComponentSnapshot, PackagingItemData, StockChange
from stock_hub.errors import (
    DuplicateWaybillError, NotFoundError, TransportError, ValidationError,
)
from stock_hub.hub import build_hub
from stock_hub.services.audit import AuditEntry, SqlAuditSink
from stock_hub.stores.sql import SqlCatalogStore, SqlPackagingStore

TODAY = date(2026, 10, 19)


@pytest.fixture
async def engine(tmp_path, settings):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'stock.db'}", settings)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def sql_catalog(session_factory):
    return SqlCatalogStore(session_factory)


@pytest.fixture
def sql_records(session_factory):
    return SqlPackagingStore(session_factory)


def _item(position, barcode, product_id, name, components=None):
    return PackagingItemData(
        position=position,
        product_barcode=barcode,
        product_id=product_id,
        product_name=name,
        is_bundle=components is not None,
        components=components,
        scanned_at=datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc),
    )


class TestSqlCatalogStore:
    async def test_create_and_lookup(self, sql_catalog):
        pen = await sql_catalog.create_product("PEN-001", "Pen", stock_quantity=10, sku="SKU-PEN")

        assert (await sql_catalog.get_product(pen.id)).name == "Pen"
        assert (await sql_catalog.find_by_barcode(" PEN-001 ")).id == pen.id
        assert await sql_catalog.find_by_barcode("NOPE") is None
        assert pen.type == ProductType.single

    async def test_get_missing_product(self, sql_catalog):
        with pytest.raises(NotFoundError) as exc:
            await sql_catalog.get_product(999)

        assert exc.value.code == "PRODUCT_NOT_FOUND"

    async def test_batch_reads(self, sql_catalog):
        a = await sql_catalog.create_product("A", "Alpha", stock_quantity=1)
        b = await sql_catalog.create_product("B", "Beta", stock_quantity=2)

        by_id = await sql_catalog.get_products([a.id, b.id, a.id, 999])
        by_code = await sql_catalog.get_products_by_barcodes(["B", "ZZZ"])

        assert set(by_id) == {a.id, b.id}
        assert list(by_code) == ["B"]
        assert await sql_catalog.get_products([]) == {}

    async def test_duplicate_barcode(self, sql_catalog):
        await sql_catalog.create_product("A", "Alpha")

        with pytest.raises(ValidationError):
            await sql_catalog.create_product("A", "Again")

    async def test_list_products_filters(self, sql_catalog):
        await sql_catalog.create_product("PEN-001", "Blue Pen")
        await sql_catalog.create_product("PEN-002", "Red Pen")
        await sql_catalog.create_product("KIT-001", "Pen Kit", type=ProductType.bundle)

        bundles = await sql_catalog.list_products(type=ProductType.bundle)
        pens = await sql_catalog.list_products(search="PEN-")
        page = await sql_catalog.list_products(limit=1, offset=1)

        assert [p.barcode for p in bundles] == ["KIT-001"]
        assert [p.barcode for p in pens] == ["PEN-001", "PEN-002"]
        assert [p.barcode for p in page] == ["PEN-002"]

    async def test_update_product(self, sql_catalog):
        pen = await sql_catalog.create_product("PEN-001", "Pen")

        updated = await sql_catalog.update_product(pen.id, name="Ballpoint", stock_quantity=-3)

        assert updated.name == "Ballpoint"
        assert updated.stock_quantity == 0

    async def test_update_unknown_field(self, sql_catalog):
        pen = await sql_catalog.create_product("PEN-001", "Pen")

        with pytest.raises(ValidationError):
            await sql_catalog.update_product(pen.id, colour="blue")

    async def test_set_stock_clamps_at_zero(self, sql_catalog):
        pen = await sql_catalog.create_product("PEN-001", "Pen", stock_quantity=3)

        assert (await sql_catalog.set_stock(pen.id, -2)).stock_quantity == 0
        assert (await sql_catalog.set_stock(pen.id, 12)).stock_quantity == 12

    async def test_components(self, sql_catalog):
        kit = await sql_catalog.create_product("KIT", "Kit", type=ProductType.bundle)
        pen = await sql_catalog.create_product("PEN", "Pen")
        pad = await sql_catalog.create_product("PAD", "Pad")

        edge = await sql_catalog.add_component(kit.id, pen.id, 2)
        await sql_catalog.add_component(kit.id, pad.id)
        # duplicates are allowed
        await sql_catalog.add_component(kit.id, pen.id, 1)

        edges = await sql_catalog.list_components(kit.id)
        assert [(e.child_product_id, e.quantity) for e in edges] == [(pen.id, 2), (pad.id, 1), (pen.id, 1)]

        await sql_catalog.remove_component(edge.id)
        assert len(await sql_catalog.list_components(kit.id)) == 2

    async def test_component_rules(self, sql_catalog):
        kit = await sql_catalog.create_product("KIT", "Kit", type=ProductType.bundle)
        other = await sql_catalog.create_product("KIT2", "Kit 2", type=ProductType.bundle)
        pen = await sql_catalog.create_product("PEN", "Pen")

        with pytest.raises(ValidationError):
            await sql_catalog.add_component(pen.id, kit.id)
        with pytest.raises(ValidationError):
            await sql_catalog.add_component(kit.id, other.id)
        with pytest.raises(ValidationError):
            await sql_catalog.add_component(kit.id, pen.id, 0)
        with pytest.raises(NotFoundError):
            await sql_catalog.add_component(kit.id, 999)

    async def test_delete_product_drops_edges(self, sql_catalog):
        kit = await sql_catalog.create_product("KIT", "Kit", type=ProductType.bundle)
        pen = await sql_catalog.create_product("PEN", "Pen")
        await sql_catalog.add_component(kit.id, pen.id, 2)

        await sql_catalog.delete_product(pen.id)

        assert await sql_catalog.list_components(kit.id) == []
        with pytest.raises(NotFoundError):
            await sql_catalog.delete_product(pen.id)

    async def test_database_fault_is_transport_error(self, engine, sql_catalog):
        async with engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE product_components")

        with pytest.raises(TransportError):
            await sql_catalog.list_components(1)


class TestSqlPackagingStore:
    async def test_create_and_get(self, sql_records):
        components = (ComponentSnapshot(2, "WID-001", "Widget", 2), ComponentSnapshot(3, "GAD-001", "Gadget", 1))
        record = await sql_records.create_record(
            packaging_date=TODAY,
            waybill_number="WB-1",
            items=[_item(0, "GIFT-001", 4, "Gift Set", components), _item(1, "PEN-001", 1, "Pen")],
            stock_changes=[StockChange(1, "PEN-001", "Pen", 10, 9)],
            created_by="user-1",
        )

        loaded = await sql_records.get_record(record.id)

        assert loaded.waybill_number == "WB-1"
        assert [i.product_barcode for i in loaded.items] == ["GIFT-001", "PEN-001"]
        assert loaded.items[0].components == components
        assert loaded.items[1].components is None
        assert loaded.stock_changes == (StockChange(1, "PEN-001", "Pen", 10, 9),)
        assert loaded.created_by == "user-1"
        assert loaded.created_at is not None

    async def test_duplicate_waybill_same_day(self, sql_records):
        await sql_records.create_record(TODAY, "WB-1", [_item(0, "PEN-001", 1, "Pen")])

        with pytest.raises(DuplicateWaybillError):
            await sql_records.create_record(TODAY, "WB-1", [_item(0, "PEN-001", 1, "Pen")])

        other_day = await sql_records.create_record(date(2026, 10, 20), "WB-1", [])
        assert other_day.id is not None

    async def test_find_list_delete(self, sql_records):
        first = await sql_records.create_record(TODAY, "WB-1", [_item(0, "PEN-001", 1, "Pen")])
        second = await sql_records.create_record(TODAY, "WB-2", [])

        assert (await sql_records.find_record(TODAY, "WB-2")).id == second.id
        assert await sql_records.find_record(TODAY, "WB-3") is None
        assert [r.id for r in await sql_records.list_records(TODAY)] == [second.id, first.id]

        await sql_records.delete_record(first.id)
        assert [r.id for r in await sql_records.list_records(TODAY)] == [second.id]
        with pytest.raises(NotFoundError):
            await sql_records.get_record(first.id)

    async def test_recorded_items_rebuild_scan_events(self, sql_records):
        record = await sql_records.create_record(
            TODAY, "WB-1",
            [_item(0, "GIFT-001", 4, "Gift Set", (ComponentSnapshot(2, "WID-001", "Widget", 2),))],
        )

        events = (await sql_records.get_record(record.id)).scan_events()

        assert events[0].is_bundle is True
        assert events[0].is_resolved is True
        assert events[0].components[0].quantity == 2


class TestSqlAuditSink:
    async def test_writes_row(self, session_factory):
        sink = SqlAuditSink(session_factory)

        await sink.write(AuditEntry(
            user_id="user-1",
            action_type="product_stock_deduct",
            resource_type="product",
            action_details={"itemCount": 2},
            status=AuditStatus.failure,
            error_message="boom",
        ))

        async with session_factory() as db:
            rows = (await db.execute(select(AuditLog))).scalars().all()
        assert len(rows) == 1
        assert rows[0].action_details == {"itemCount": 2}
        assert rows[0].status == AuditStatus.failure


class TestEngineOverSql:
    """The saga against the SQL catalog, writes serialized for SQLite."""

    async def test_deduct_and_restore(self, settings, sql_catalog, sql_records, session_factory, actor):
        settings.WRITE_CONCURRENCY = 1
        hub = build_hub(sql_catalog, sql_records, SqlAuditSink(session_factory), settings)
        pen = await sql_catalog.create_product("PEN-001", "Pen", stock_quantity=10)
        kit = await sql_catalog.create_product("KIT-001", "Kit", type=ProductType.bundle)
        await sql_catalog.add_component(kit.id, pen.id, 2)

        session = await hub.packaging.start_session("WB-1", TODAY, actor=actor)
        await session.scan("PEN-001")
        await session.scan("KIT-001")
        result = await session.complete()

        assert result.success is True
        assert (await sql_catalog.get_product(pen.id)).stock_quantity == 7

        restored = await hub.packaging.void_record(session.record.id, actor=actor)

        assert restored.success is True
        assert (await sql_catalog.get_product(pen.id)).stock_quantity == 10
        async with session_factory() as db:
            actions = (await db.execute(select(AuditLog.action_type))).scalars().all()
        assert actions.count("product_stock_deduct") == 1
        assert actions.count("product_stock_restore") == 1
