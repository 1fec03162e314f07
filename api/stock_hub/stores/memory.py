"""In-memory stores: deterministic catalog and records for testing and development.

Configurable failure behavior lets tests force individual stock writes or
batch reads to fail, the way a flaky remote store would.
"""
from __future__ import annotations
import asyncio
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from itertools import count
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from stock_hub.db_models import ProductType
from stock_hub.domain import (
    BundleEdge, CatalogProduct, PackagingItemData, PackagingRecordData, StockChange,
)
from stock_hub.errors import (
    DuplicateWaybillError, NotFoundError, TransportError, ValidationError,
)
from stock_hub.stores.base import (
    CatalogStore, PackagingStore, check_component, check_product_fields,
)


class InMemoryCatalogStore(CatalogStore):
    """Catalog held in dicts; every call yields to the event loop once."""

    def __init__(self):
        self._products: Dict[int, CatalogProduct] = {}
        self._edges: Dict[int, BundleEdge] = {}
        self._ids = count(1)
        self._edge_ids = count(1)
        self.fail_writes: Set[int] = set()
        self.fail_write_values: Set[Tuple[int, int]] = set()
        self.fail_reads = False
        # Observability for tests
        self.writes: List[Tuple[int, int]] = []
        self.batch_reads = 0

    def configure(
        self,
        fail_writes: Iterable[int] = (),
        fail_write_values: Iterable[Tuple[int, int]] = (),
        fail_reads: bool = False,
    ) -> None:
        """Configure failures: every write to `fail_writes` ids, writes of a
        given (product_id, value) pair, or all batch reads."""
        self.fail_writes = set(fail_writes)
        self.fail_write_values = set(fail_write_values)
        self.fail_reads = fail_reads

    def _require(self, product_id: int) -> CatalogProduct:
        product = self._products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {product_id}", code="PRODUCT_NOT_FOUND", product_id=product_id)
        return product

    def _check_reads(self, operation: str) -> None:
        if self.fail_reads:
            raise TransportError(f"{operation} failed: store unavailable", operation=operation)

    async def get_product(self, product_id: int) -> CatalogProduct:
        await asyncio.sleep(0)
        return self._require(product_id)

    async def find_by_barcode(self, barcode: str) -> Optional[CatalogProduct]:
        await asyncio.sleep(0)
        barcode = (barcode or "").strip()
        return next((p for p in self._products.values() if p.barcode == barcode), None)

    async def get_products(self, product_ids: Sequence[int]) -> Dict[int, CatalogProduct]:
        await asyncio.sleep(0)
        self.batch_reads += 1
        self._check_reads("get_products")
        return {pid: self._products[pid] for pid in product_ids if pid in self._products}

    async def get_products_by_barcodes(self, barcodes: Sequence[str]) -> Dict[str, CatalogProduct]:
        await asyncio.sleep(0)
        self.batch_reads += 1
        self._check_reads("get_products_by_barcodes")
        wanted = set(barcodes)
        return {p.barcode: p for p in self._products.values() if p.barcode in wanted}

    async def list_products(
        self,
        type: Optional[ProductType] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[CatalogProduct]:
        await asyncio.sleep(0)
        out = sorted(self._products.values(), key=lambda p: p.id)
        if type is not None:
            out = [p for p in out if p.type == ProductType(type)]
        if search:
            out = [p for p in out if search in p.barcode or search in p.name or search in (p.sku or "")]
        out = out[offset:]
        return out[:limit] if limit else out

    async def create_product(
        self,
        barcode: str,
        name: str,
        type: ProductType = ProductType.single,
        stock_quantity: int = 0,
        sku: Optional[str] = None,
        cost: Decimal = Decimal("0"),
    ) -> CatalogProduct:
        await asyncio.sleep(0)
        barcode = (barcode or "").strip()
        if not barcode:
            raise ValidationError("Barcode cannot be empty")
        for p in self._products.values():
            if p.barcode == barcode or (sku and p.sku == sku):
                raise ValidationError(f"Barcode or SKU already in use: {barcode}", barcode=barcode)
        product = CatalogProduct(
            id=next(self._ids),
            barcode=barcode,
            name=name,
            type=ProductType(type),
            stock_quantity=max(0, int(stock_quantity)),
            sku=sku or None,
            cost=Decimal(cost),
        )
        self._products[product.id] = product
        return product

    async def update_product(self, product_id: int, **fields: Any) -> CatalogProduct:
        await asyncio.sleep(0)
        fields = check_product_fields(dict(fields))
        product = replace(self._require(product_id), **fields)
        self._products[product_id] = product
        return product

    async def delete_product(self, product_id: int) -> None:
        await asyncio.sleep(0)
        self._require(product_id)
        del self._products[product_id]
        self._edges = {
            eid: e for eid, e in self._edges.items()
            if product_id not in (e.parent_product_id, e.child_product_id)
        }

    async def list_components(self, parent_product_id: int) -> List[BundleEdge]:
        await asyncio.sleep(0)
        return [e for e in self._edges.values() if e.parent_product_id == parent_product_id]

    async def add_component(self, parent_product_id: int, child_product_id: int, quantity: int = 1) -> BundleEdge:
        await asyncio.sleep(0)
        check_component(self._require(parent_product_id), self._require(child_product_id), quantity)
        edge = BundleEdge(next(self._edge_ids), parent_product_id, child_product_id, quantity)
        self._edges[edge.id] = edge
        return edge

    async def remove_component(self, component_id: int) -> None:
        await asyncio.sleep(0)
        if self._edges.pop(component_id, None) is None:
            raise NotFoundError(f"Component not found: {component_id}", component_id=component_id)

    async def set_stock(self, product_id: int, quantity: int) -> CatalogProduct:
        await asyncio.sleep(0)
        quantity = max(0, int(quantity))
        if product_id in self.fail_writes or (product_id, quantity) in self.fail_write_values:
            raise TransportError(f"set_stock failed for product {product_id}", operation="set_stock")
        product = replace(self._require(product_id), stock_quantity=quantity)
        self._products[product_id] = product
        self.writes.append((product_id, quantity))
        return product

    def stock_of(self, product_id: int) -> int:
        return self._require(product_id).stock_quantity


class InMemoryPackagingStore(PackagingStore):
    def __init__(self):
        self._records: Dict[int, PackagingRecordData] = {}
        self._ids = count(1)
        self.fail_creates = False

    async def create_record(
        self,
        packaging_date: date,
        waybill_number: str,
        items: Sequence[PackagingItemData],
        stock_changes: Sequence[StockChange] = (),
        created_by: Optional[str] = None,
    ) -> PackagingRecordData:
        await asyncio.sleep(0)
        if self.fail_creates:
            raise TransportError("create_record failed: store unavailable", operation="create_record")
        if await self.find_record(packaging_date, waybill_number) is not None:
            raise DuplicateWaybillError(
                f"Waybill {waybill_number} already recorded for {packaging_date.isoformat()}",
                waybill_number=waybill_number,
                packaging_date=packaging_date.isoformat(),
            )
        record = PackagingRecordData(
            id=next(self._ids),
            packaging_date=packaging_date,
            waybill_number=waybill_number,
            items=tuple(items),
            stock_changes=tuple(stock_changes),
            created_by=created_by,
            created_at=datetime.now(timezone.utc),
        )
        self._records[record.id] = record
        return record

    async def get_record(self, record_id: int) -> PackagingRecordData:
        await asyncio.sleep(0)
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"Packaging record not found: {record_id}", code="RECORD_NOT_FOUND", record_id=record_id)
        return record

    async def find_record(self, packaging_date: date, waybill_number: str) -> Optional[PackagingRecordData]:
        return next(
            (r for r in self._records.values()
             if r.packaging_date == packaging_date and r.waybill_number == waybill_number),
            None,
        )

    async def list_records(self, packaging_date: date) -> List[PackagingRecordData]:
        await asyncio.sleep(0)
        found = [r for r in self._records.values() if r.packaging_date == packaging_date]
        return sorted(found, key=lambda r: r.id, reverse=True)

    async def delete_record(self, record_id: int) -> None:
        await asyncio.sleep(0)
        if self._records.pop(record_id, None) is None:
            raise NotFoundError(f"Packaging record not found: {record_id}", code="RECORD_NOT_FOUND", record_id=record_id)
