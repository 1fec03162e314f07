"""Store ports: abstract interfaces for the catalog and packaging records.

The services program against these ports; adapters (SQL, in-memory) are
swapped via configuration. Neither port offers a multi-record transaction:
each call stands alone and may fail on its own.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from stock_hub.db_models import ProductType
from stock_hub.domain import (
    BundleEdge, CatalogProduct, PackagingItemData, PackagingRecordData, StockChange,
)
from stock_hub.errors import ValidationError

PRODUCT_FIELDS = frozenset({"barcode", "sku", "name", "type", "cost", "stock_quantity"})


class CatalogStore(ABC):
    """Products and bundle edges."""

    @abstractmethod
    async def get_product(self, product_id: int) -> CatalogProduct:
        """Return the product or raise NotFoundError."""
        ...

    @abstractmethod
    async def find_by_barcode(self, barcode: str) -> Optional[CatalogProduct]:
        ...

    @abstractmethod
    async def get_products(self, product_ids: Sequence[int]) -> Dict[int, CatalogProduct]:
        """Batch read by id in one round trip; unknown ids are simply absent."""
        ...

    @abstractmethod
    async def get_products_by_barcodes(self, barcodes: Sequence[str]) -> Dict[str, CatalogProduct]:
        """Batch read by barcode in one round trip, keyed by barcode."""
        ...

    @abstractmethod
    async def list_products(
        self,
        type: Optional[ProductType] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[CatalogProduct]:
        ...

    @abstractmethod
    async def create_product(
        self,
        barcode: str,
        name: str,
        type: ProductType = ProductType.single,
        stock_quantity: int = 0,
        sku: Optional[str] = None,
        cost: Decimal = Decimal("0"),
    ) -> CatalogProduct:
        ...

    @abstractmethod
    async def update_product(self, product_id: int, **fields: Any) -> CatalogProduct:
        """Partial update of PRODUCT_FIELDS."""
        ...

    @abstractmethod
    async def delete_product(self, product_id: int) -> None:
        """Delete the product and every edge it takes part in."""
        ...

    @abstractmethod
    async def list_components(self, parent_product_id: int) -> List[BundleEdge]:
        ...

    @abstractmethod
    async def add_component(self, parent_product_id: int, child_product_id: int, quantity: int = 1) -> BundleEdge:
        ...

    @abstractmethod
    async def remove_component(self, component_id: int) -> None:
        ...

    @abstractmethod
    async def set_stock(self, product_id: int, quantity: int) -> CatalogProduct:
        """Unconditional last-write-wins set; negative values are clamped to 0."""
        ...


class PackagingStore(ABC):
    """Committed packaging records (waybill + scanned items)."""

    @abstractmethod
    async def create_record(
        self,
        packaging_date: date,
        waybill_number: str,
        items: Sequence[PackagingItemData],
        stock_changes: Sequence[StockChange] = (),
        created_by: Optional[str] = None,
    ) -> PackagingRecordData:
        """Persist a record; raise DuplicateWaybillError if the waybill exists for that date."""
        ...

    @abstractmethod
    async def get_record(self, record_id: int) -> PackagingRecordData:
        ...

    @abstractmethod
    async def find_record(self, packaging_date: date, waybill_number: str) -> Optional[PackagingRecordData]:
        ...

    @abstractmethod
    async def list_records(self, packaging_date: date) -> List[PackagingRecordData]:
        """Records of one day, newest first."""
        ...

    @abstractmethod
    async def delete_record(self, record_id: int) -> None:
        ...


def check_product_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - PRODUCT_FIELDS
    if unknown:
        raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")
    if "type" in fields:
        fields["type"] = ProductType(fields["type"])
    if "stock_quantity" in fields:
        fields["stock_quantity"] = max(0, int(fields["stock_quantity"]))
    return fields


def check_component(parent: CatalogProduct, child: CatalogProduct, quantity: int) -> None:
    if not parent.is_bundle:
        raise ValidationError(f"{parent.name} is not a bundle", parent_product_id=parent.id)
    if child.is_bundle:
        raise ValidationError(f"{child.name} is a bundle; bundles hold base products only", child_product_id=child.id)
    if quantity < 1:
        raise ValidationError("Component quantity must be at least 1", quantity=quantity)
