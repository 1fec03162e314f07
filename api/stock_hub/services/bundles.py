# stock_hub/services/bundles.py
"""
Bundle Graph Resolver - expands a product into base-product lines.

Bundles are one level deep: a bundle's components are base products.
Components are always read fresh from the catalog so composition edits
made mid-session apply to the next scan.
"""
from __future__ import annotations
import logging
from typing import List, Tuple

from stock_hub.domain import BundleItem, CatalogProduct, ResolvedItem, SingleItem
from stock_hub.stores.base import CatalogStore

logger = logging.getLogger(__name__)


class BundleResolver:
    """Resolve products into `SingleItem` / `BundleItem` variants."""

    def __init__(self, store: CatalogStore):
        self.store = store

    async def resolve(self, product: CatalogProduct) -> ResolvedItem:
        if not product.is_bundle:
            return SingleItem(product)
        return BundleItem(product, tuple(await self._components(product)))

    async def resolve_bundle(self, product_id: int) -> List[Tuple[CatalogProduct, int]]:
        """
        Return `[(product, quantity)]` for a product id.

        Single products yield `[(product, 1)]`; bundles yield their recorded
        components (possibly empty). Raises NotFoundError for unknown ids.
        """
        product = await self.store.get_product(product_id)
        return (await self.resolve(product)).lines()

    async def _components(self, bundle: CatalogProduct) -> List[Tuple[CatalogProduct, int]]:
        edges = await self.store.list_components(bundle.id)
        if not edges:
            return []

        children = await self.store.get_products([e.child_product_id for e in edges])

        # Duplicate (parent, child) edges stay separate lines; aggregation sums them
        lines: List[Tuple[CatalogProduct, int]] = []
        for edge in edges:
            child = children.get(edge.child_product_id)
            if child is None:
                logger.warning(
                    "Bundle %s (%s) references missing product %s; component skipped",
                    bundle.id, bundle.barcode, edge.child_product_id,
                )
                continue
            lines.append((child, edge.quantity))
        return lines
