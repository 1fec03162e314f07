# stock_hub/domain.py
"""
Plain value types shared by the stores and the stock services.

Stores hand out these frozen snapshots rather than ORM rows, so nothing
downstream holds a database session open while a packaging session runs.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone, date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from stock_hub.db_models import ProductType


# ============================================================================
# Catalog
# ============================================================================

@dataclass(frozen=True)
class CatalogProduct:
    id: int
    barcode: str
    name: str
    type: ProductType = ProductType.single
    stock_quantity: int = 0
    sku: Optional[str] = None
    cost: Decimal = Decimal("0")

    @property
    def is_bundle(self) -> bool:
        return self.type == ProductType.bundle


@dataclass(frozen=True)
class BundleEdge:
    id: int
    parent_product_id: int
    child_product_id: int
    quantity: int


# ============================================================================
# Resolved items: one level only, a bundle's children are base products
# ============================================================================

@dataclass(frozen=True)
class SingleItem:
    product: CatalogProduct

    def lines(self) -> List[Tuple[CatalogProduct, int]]:
        return [(self.product, 1)]


@dataclass(frozen=True)
class BundleItem:
    product: CatalogProduct
    components: Tuple[Tuple[CatalogProduct, int], ...] = ()

    def lines(self) -> List[Tuple[CatalogProduct, int]]:
        return list(self.components)


ResolvedItem = Union[SingleItem, BundleItem]


# ============================================================================
# Scan events
# ============================================================================

@dataclass(frozen=True)
class ComponentSnapshot:
    """One bundle line as it was when the bundle was scanned."""
    product_id: int
    barcode: str
    name: str
    quantity: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComponentSnapshot":
        return cls(
            product_id=int(data["product_id"]),
            barcode=str(data.get("barcode") or ""),
            name=str(data.get("name") or ""),
            quantity=int(data["quantity"]),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ScanEvent:
    """
    One scanned unit in a packaging batch.

    `product` is None when only the barcode is known (bulk import, stored
    records); `components` is the bundle breakdown captured at scan time and
    stays None for single products and for bundles not yet expanded.
    """
    barcode: str
    product: Optional[CatalogProduct] = None
    components: Optional[Tuple[ComponentSnapshot, ...]] = None
    scanned_at: datetime = field(default_factory=_utcnow)

    @property
    def is_bundle(self) -> bool:
        if self.components is not None:
            return True
        return self.product is not None and self.product.is_bundle

    @property
    def is_resolved(self) -> bool:
        if self.product is None:
            return False
        return not self.product.is_bundle or self.components is not None

    @property
    def name(self) -> str:
        return self.product.name if self.product else self.barcode

    @classmethod
    def of(cls, barcode: str) -> "ScanEvent":
        return cls(barcode=barcode)

    @classmethod
    def from_resolved(cls, item: ResolvedItem, barcode: Optional[str] = None) -> "ScanEvent":
        product = item.product
        components = None
        if isinstance(item, BundleItem):
            components = tuple(
                ComponentSnapshot(child.id, child.barcode, child.name, qty)
                for child, qty in item.components
            )
        return cls(barcode=barcode or product.barcode, product=product, components=components)


# ============================================================================
# Validation / commit results
# ============================================================================

@dataclass(frozen=True)
class Shortfall:
    product_id: int
    barcode: str
    name: str
    required: int
    available: int

    def describe(self) -> str:
        return f"Insufficient stock for {self.name}: required {self.required}, available {self.available}"


@dataclass(frozen=True)
class StockValidation:
    valid: bool
    shortfalls: List[Shortfall] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class StockChange:
    product_id: int
    barcode: str
    name: str
    previous_stock: int
    new_stock: int

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StockChange":
        return cls(
            product_id=int(data["product_id"]),
            barcode=str(data.get("barcode") or ""),
            name=str(data.get("name") or ""),
            previous_stock=int(data["previous_stock"]),
            new_stock=int(data["new_stock"]),
        )


# Failure kinds: the first two are business-rule rejections raised before any
# write, the rest are operational faults.
FAILURE_INSUFFICIENT_STOCK = "insufficient_stock"
FAILURE_NOT_FOUND = "not_found"
FAILURE_STOCK_UPDATE = "stock_update_failed"
FAILURE_TRANSPORT = "transport"
FAILURE_RECORD = "record_failed"


@dataclass
class CommitResult:
    success: bool
    errors: List[str] = field(default_factory=list)
    shortfalls: List[Shortfall] = field(default_factory=list)
    changes: List[StockChange] = field(default_factory=list)
    failure: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "errors": list(self.errors),
            "failure": self.failure,
            "shortfalls": [asdict(s) for s in self.shortfalls],
            "changes": [c.to_dict() for c in self.changes],
        }


# ============================================================================
# Packaging records
# ============================================================================

@dataclass(frozen=True)
class PackagingItemData:
    position: int
    product_barcode: str
    product_id: Optional[int]
    product_name: Optional[str]
    is_bundle: bool
    components: Optional[Tuple[ComponentSnapshot, ...]]
    scanned_at: datetime

    @classmethod
    def from_scan(cls, position: int, event: ScanEvent) -> "PackagingItemData":
        return cls(
            position=position,
            product_barcode=event.barcode,
            product_id=event.product.id if event.product else None,
            product_name=event.product.name if event.product else None,
            is_bundle=event.is_bundle,
            components=event.components,
            scanned_at=event.scanned_at,
        )

    def to_scan_event(self) -> ScanEvent:
        """Rebuild the scan from what was recorded, never from today's catalog."""
        product = None
        if self.product_id is not None:
            product = CatalogProduct(
                id=self.product_id,
                barcode=self.product_barcode,
                name=self.product_name or self.product_barcode,
                type=ProductType.bundle if self.is_bundle else ProductType.single,
            )
        components = self.components
        if self.is_bundle and components is None:
            components = ()
        return ScanEvent(
            barcode=self.product_barcode,
            product=product,
            components=components,
            scanned_at=self.scanned_at,
        )


@dataclass(frozen=True)
class PackagingRecordData:
    id: int
    packaging_date: date
    waybill_number: str
    items: Tuple[PackagingItemData, ...] = ()
    stock_changes: Tuple[StockChange, ...] = ()
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    def scan_events(self) -> List[ScanEvent]:
        return [item.to_scan_event() for item in self.items]
