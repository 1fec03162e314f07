# stock_hub/services/ledger.py
"""
Reservation Ledger - speculative stock for one interactive packaging session.

The ledger shadows catalog stock while an operator scans, so an
over-commitment shows up on the scan that causes it instead of at commit.
Nothing here touches the store. One ledger belongs to exactly one session.
"""
from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Tuple

from stock_hub.domain import CatalogProduct, Shortfall
from stock_hub.errors import InsufficientStockError

logger = logging.getLogger(__name__)

Line = Tuple[CatalogProduct, int]


class ReservationLedger:
    """product id -> tentative available quantity; absent ids fall back to catalog stock."""

    def __init__(self):
        self._entries: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._entries

    def available(self, product_id: int, catalog_stock: int) -> int:
        return self._entries.get(product_id, catalog_stock)

    def check(self, lines: Iterable[Line]) -> List[Shortfall]:
        """Shortfalls for the lines, aggregated per product first."""
        required: Dict[int, int] = {}
        products: Dict[int, CatalogProduct] = {}
        for product, qty in lines:
            products.setdefault(product.id, product)
            required[product.id] = required.get(product.id, 0) + qty

        shortfalls = []
        for pid, need in required.items():
            product = products[pid]
            have = self.available(pid, product.stock_quantity)
            if have < need:
                shortfalls.append(Shortfall(pid, product.barcode, product.name, need, have))
        return shortfalls

    def reserve(self, lines: Iterable[Line]) -> None:
        """
        Subtract the lines from the ledger.

        Raises InsufficientStockError naming every short product and applies
        nothing when any line cannot be covered.
        """
        lines = list(lines)
        shortfalls = self.check(lines)
        if shortfalls:
            raise InsufficientStockError(
                "; ".join(s.describe() for s in shortfalls),
                shortfalls=shortfalls,
            )
        for product, qty in lines:
            self._entries[product.id] = self.available(product.id, product.stock_quantity) - qty

    def release(self, lines: Iterable[Line]) -> None:
        """Add the lines back (an item removed before commit)."""
        for product, qty in lines:
            self._entries[product.id] = self.available(product.id, product.stock_quantity) + qty

    def reset(self) -> None:
        if self._entries:
            logger.debug("Ledger reset (%d entries)", len(self._entries))
        self._entries.clear()

    def snapshot(self) -> Dict[int, int]:
        return dict(self._entries)
