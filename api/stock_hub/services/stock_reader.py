# stock_hub/services/stock_reader.py
"""Batch Stock Reader - authoritative stock for a set of products in one round trip."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from stock_hub.domain import CatalogProduct
from stock_hub.stores.base import CatalogStore


@dataclass
class StockSnapshot:
    products: Dict[int, CatalogProduct] = field(default_factory=dict)
    missing: List[int] = field(default_factory=list)

    def stock(self, product_id: int) -> int:
        return self.products[product_id].stock_quantity


class BatchStockReader:
    def __init__(self, store: CatalogStore):
        self.store = store

    async def read(self, product_ids: Iterable[int]) -> StockSnapshot:
        """Fetch every id in a single store call; store faults propagate as TransportError."""
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return StockSnapshot()
        products = await self.store.get_products(ids)
        return StockSnapshot(
            products=products,
            missing=[pid for pid in ids if pid not in products],
        )
