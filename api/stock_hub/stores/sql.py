# stock_hub/stores/sql.py
"""
SQLAlchemy-backed stores.

Every public call runs in its own short session and commits on its own;
a batch of stock writes is N independent commits, never one transaction.
SQLAlchemy errors leave this module as TransportError.
"""
from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from stock_hub.db_models import (
    Product, ProductComponent, ProductType, PackagingRecord, PackagingItem,
)
from stock_hub.domain import (
    BundleEdge, CatalogProduct, ComponentSnapshot, PackagingItemData,
    PackagingRecordData, StockChange,
)
from stock_hub.errors import (
    DuplicateWaybillError, NotFoundError, TransportError, ValidationError,
)
from stock_hub.stores.base import (
    CatalogStore, PackagingStore, check_component, check_product_fields,
)

logger = logging.getLogger(__name__)


class _SqlStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._factory() as db:
                yield db
                await db.commit()
        except SQLAlchemyError as e:
            logger.warning("Store operation %s failed: %s", operation, e)
            raise TransportError(f"{operation} failed: {e}", operation=operation) from e


# ============================================================================
# Catalog
# ============================================================================

def _product(row: Product) -> CatalogProduct:
    return CatalogProduct(
        id=row.id,
        barcode=row.barcode,
        name=row.name,
        type=ProductType(row.type),
        stock_quantity=int(row.stock_quantity or 0),
        sku=row.sku,
        cost=Decimal(row.cost if row.cost is not None else 0),
    )


def _edge(row: ProductComponent) -> BundleEdge:
    return BundleEdge(
        id=row.id,
        parent_product_id=row.parent_product_id,
        child_product_id=row.child_product_id,
        quantity=row.quantity,
    )


class SqlCatalogStore(_SqlStore, CatalogStore):
    """Catalog store over the products / product_components tables."""

    async def get_product(self, product_id: int) -> CatalogProduct:
        async with self._session("get_product") as db:
            row = await db.get(Product, product_id)
            if row is None:
                raise NotFoundError(f"Product not found: {product_id}", code="PRODUCT_NOT_FOUND", product_id=product_id)
            return _product(row)

    async def find_by_barcode(self, barcode: str) -> Optional[CatalogProduct]:
        barcode = (barcode or "").strip()
        if not barcode:
            return None
        async with self._session("find_by_barcode") as db:
            result = await db.execute(select(Product).where(Product.barcode == barcode).limit(1))
            row = result.scalar_one_or_none()
            return _product(row) if row else None

    async def get_products(self, product_ids: Sequence[int]) -> Dict[int, CatalogProduct]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        async with self._session("get_products") as db:
            result = await db.execute(select(Product).where(Product.id.in_(ids)))
            return {row.id: _product(row) for row in result.scalars()}

    async def get_products_by_barcodes(self, barcodes: Sequence[str]) -> Dict[str, CatalogProduct]:
        codes = list(dict.fromkeys(b for b in barcodes if b))
        if not codes:
            return {}
        async with self._session("get_products_by_barcodes") as db:
            result = await db.execute(select(Product).where(Product.barcode.in_(codes)))
            return {row.barcode: _product(row) for row in result.scalars()}

    async def list_products(
        self,
        type: Optional[ProductType] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[CatalogProduct]:
        stmt = select(Product).order_by(Product.id)
        if type is not None:
            stmt = stmt.where(Product.type == ProductType(type))
        if search:
            stmt = stmt.where(or_(
                Product.barcode.contains(search),
                Product.name.contains(search),
                Product.sku.contains(search),
            ))
        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)
        async with self._session("list_products") as db:
            result = await db.execute(stmt)
            return [_product(row) for row in result.scalars()]

    async def create_product(
        self,
        barcode: str,
        name: str,
        type: ProductType = ProductType.single,
        stock_quantity: int = 0,
        sku: Optional[str] = None,
        cost: Decimal = Decimal("0"),
    ) -> CatalogProduct:
        barcode = (barcode or "").strip()
        if not barcode:
            raise ValidationError("Barcode cannot be empty")
        row = Product(
            barcode=barcode,
            sku=sku or None,
            name=name,
            type=ProductType(type),
            cost=Decimal(cost),
            stock_quantity=max(0, int(stock_quantity)),
        )
        async with self._session("create_product") as db:
            db.add(row)
            try:
                await db.flush()
            except IntegrityError as e:
                raise ValidationError(f"Barcode or SKU already in use: {barcode}", barcode=barcode) from e
            return _product(row)

    async def update_product(self, product_id: int, **fields: Any) -> CatalogProduct:
        fields = check_product_fields(dict(fields))
        async with self._session("update_product") as db:
            row = await db.get(Product, product_id)
            if row is None:
                raise NotFoundError(f"Product not found: {product_id}", code="PRODUCT_NOT_FOUND", product_id=product_id)
            for key, value in fields.items():
                setattr(row, key, value)
            try:
                await db.flush()
            except IntegrityError as e:
                raise ValidationError("Barcode or SKU already in use", product_id=product_id) from e
            return _product(row)

    async def delete_product(self, product_id: int) -> None:
        async with self._session("delete_product") as db:
            row = await db.get(Product, product_id)
            if row is None:
                raise NotFoundError(f"Product not found: {product_id}", code="PRODUCT_NOT_FOUND", product_id=product_id)
            await db.execute(delete(ProductComponent).where(or_(
                ProductComponent.parent_product_id == product_id,
                ProductComponent.child_product_id == product_id,
            )))
            await db.delete(row)

    async def list_components(self, parent_product_id: int) -> List[BundleEdge]:
        stmt = (
            select(ProductComponent)
            .where(ProductComponent.parent_product_id == parent_product_id)
            .order_by(ProductComponent.id)
        )
        async with self._session("list_components") as db:
            result = await db.execute(stmt)
            return [_edge(row) for row in result.scalars()]

    async def add_component(self, parent_product_id: int, child_product_id: int, quantity: int = 1) -> BundleEdge:
        async with self._session("add_component") as db:
            parent = await db.get(Product, parent_product_id)
            child = await db.get(Product, child_product_id)
            if parent is None or child is None:
                missing = parent_product_id if parent is None else child_product_id
                raise NotFoundError(f"Product not found: {missing}", code="PRODUCT_NOT_FOUND", product_id=missing)
            check_component(_product(parent), _product(child), quantity)
            row = ProductComponent(
                parent_product_id=parent_product_id,
                child_product_id=child_product_id,
                quantity=quantity,
            )
            db.add(row)
            await db.flush()
            return _edge(row)

    async def remove_component(self, component_id: int) -> None:
        async with self._session("remove_component") as db:
            row = await db.get(ProductComponent, component_id)
            if row is None:
                raise NotFoundError(f"Component not found: {component_id}", component_id=component_id)
            await db.delete(row)

    async def set_stock(self, product_id: int, quantity: int) -> CatalogProduct:
        async with self._session("set_stock") as db:
            row = await db.get(Product, product_id)
            if row is None:
                raise NotFoundError(f"Product not found: {product_id}", code="PRODUCT_NOT_FOUND", product_id=product_id)
            row.stock_quantity = max(0, int(quantity))
            await db.flush()
            return _product(row)


# ============================================================================
# Packaging records
# ============================================================================

def _record(row: PackagingRecord) -> PackagingRecordData:
    items = tuple(
        PackagingItemData(
            position=item.position,
            product_barcode=item.product_barcode,
            product_id=item.product_id,
            product_name=item.product_name,
            is_bundle=bool(item.is_bundle),
            components=(
                tuple(ComponentSnapshot.from_dict(c) for c in item.components)
                if item.components is not None else None
            ),
            scanned_at=item.scanned_at,
        )
        for item in sorted(row.items, key=lambda x: x.position)
    )
    return PackagingRecordData(
        id=row.id,
        packaging_date=row.packaging_date,
        waybill_number=row.waybill_number,
        items=items,
        stock_changes=tuple(StockChange.from_dict(c) for c in (row.stock_changes or [])),
        created_by=row.created_by,
        created_at=row.created_at,
    )


class SqlPackagingStore(_SqlStore, PackagingStore):
    """Packaging records with their items, stored in one insert per record."""

    def _with_items(self):
        return select(PackagingRecord).options(selectinload(PackagingRecord.items))

    async def create_record(
        self,
        packaging_date: date,
        waybill_number: str,
        items: Sequence[PackagingItemData],
        stock_changes: Sequence[StockChange] = (),
        created_by: Optional[str] = None,
    ) -> PackagingRecordData:
        record = PackagingRecord(
            packaging_date=packaging_date,
            waybill_number=waybill_number,
            created_by=created_by,
            stock_changes=[c.to_dict() for c in stock_changes],
        )
        record.items = [
            PackagingItem(
                position=item.position,
                product_barcode=item.product_barcode,
                product_id=item.product_id,
                product_name=item.product_name,
                is_bundle=item.is_bundle,
                components=(
                    [c.to_dict() for c in item.components]
                    if item.components is not None else None
                ),
                scanned_at=item.scanned_at,
            )
            for item in items
        ]
        async with self._session("create_record") as db:
            db.add(record)
            try:
                await db.flush()
            except IntegrityError as e:
                raise DuplicateWaybillError(
                    f"Waybill {waybill_number} already recorded for {packaging_date.isoformat()}",
                    waybill_number=waybill_number,
                    packaging_date=packaging_date.isoformat(),
                ) from e
            record_id = record.id

        return await self.get_record(record_id)

    async def get_record(self, record_id: int) -> PackagingRecordData:
        async with self._session("get_record") as db:
            result = await db.execute(self._with_items().where(PackagingRecord.id == record_id))
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Packaging record not found: {record_id}", code="RECORD_NOT_FOUND", record_id=record_id)
            return _record(row)

    async def find_record(self, packaging_date: date, waybill_number: str) -> Optional[PackagingRecordData]:
        stmt = self._with_items().where(
            PackagingRecord.packaging_date == packaging_date,
            PackagingRecord.waybill_number == waybill_number,
        ).limit(1)
        async with self._session("find_record") as db:
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            return _record(row) if row else None

    async def list_records(self, packaging_date: date) -> List[PackagingRecordData]:
        stmt = (
            self._with_items()
            .where(PackagingRecord.packaging_date == packaging_date)
            .order_by(PackagingRecord.created_at.desc(), PackagingRecord.id.desc())
        )
        async with self._session("list_records") as db:
            result = await db.execute(stmt)
            return [_record(row) for row in result.scalars()]

    async def delete_record(self, record_id: int) -> None:
        async with self._session("delete_record") as db:
            result = await db.execute(self._with_items().where(PackagingRecord.id == record_id))
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Packaging record not found: {record_id}", code="RECORD_NOT_FOUND", record_id=record_id)
            await db.delete(row)
