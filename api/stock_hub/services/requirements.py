# stock_hub/services/requirements.py
"""
Requirement Aggregator - folds a scan list into required quantity per base product.

Requirements are always recomputed from the scan list itself, never taken
from a reservation ledger.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Sequence, Union

from stock_hub.domain import BundleItem, ScanEvent
from stock_hub.services.bundles import BundleResolver
from stock_hub.stores.base import CatalogStore

ScanInput = Union[ScanEvent, str]


def aggregate(events: Iterable[ScanEvent]) -> Dict[int, int]:
    """
    Sum requirements per product id.

    An event with a bundle breakdown adds every component quantity; any
    other resolved event adds 1 to its own product. Events without a
    product contribute nothing.
    """
    totals: Dict[int, int] = {}
    for event in events:
        if event.components is not None:
            for comp in event.components:
                totals[comp.product_id] = totals.get(comp.product_id, 0) + comp.quantity
        elif event.product is not None:
            totals[event.product.id] = totals.get(event.product.id, 0) + 1
    return totals


def as_events(scan_items: Iterable[ScanInput]) -> List[ScanEvent]:
    return [item if isinstance(item, ScanEvent) else ScanEvent.of(str(item).strip()) for item in scan_items]


@dataclass
class ResolvedScan:
    events: List[ScanEvent] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def requirements(self) -> Dict[int, int]:
        return aggregate(self.events)


class RequirementCalculator:
    """Resolves scan items against the catalog and aggregates requirements."""

    def __init__(self, store: CatalogStore, resolver: BundleResolver):
        self.store = store
        self.resolver = resolver

    async def resolve(self, scan_items: Sequence[ScanInput]) -> ResolvedScan:
        events = as_events(scan_items)

        # One batched read for every barcode-only item
        wanted = list(dict.fromkeys(e.barcode for e in events if e.product is None))
        by_barcode = await self.store.get_products_by_barcodes(wanted) if wanted else {}

        resolved: List[ScanEvent] = []
        missing: List[str] = []
        for event in events:
            if event.product is None:
                product = by_barcode.get(event.barcode)
                if product is None:
                    if event.barcode not in missing:
                        missing.append(event.barcode)
                    continue
                event = replace(event, product=product)
            resolved.append(event)

        # Expand each distinct bundle lacking a snapshot once
        bundles = {e.product.id: e.product for e in resolved if not e.is_resolved}
        if bundles:
            items = await asyncio.gather(*(self.resolver.resolve(p) for p in bundles.values()))
            snapshots = {
                item.product.id: ScanEvent.from_resolved(item).components
                for item in items if isinstance(item, BundleItem)
            }
            resolved = [
                e if e.is_resolved else replace(e, components=snapshots.get(e.product.id, ()))
                for e in resolved
            ]

        return ResolvedScan(events=resolved, missing=missing)

    async def calculate_requirements(self, scan_items: Sequence[ScanInput]) -> Dict[int, int]:
        """`{product_id: required}` for the scan list; unknown barcodes are skipped."""
        return (await self.resolve(scan_items)).requirements
