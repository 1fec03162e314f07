# stock_hub/stores/__init__.py
"""
Store adapters for Stock Hub.

Usage:
    from stock_hub.stores import build_stores

    catalog, records = build_stores("memory")
"""
from __future__ import annotations
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stock_hub.stores.base import CatalogStore, PackagingStore
from stock_hub.stores.memory import InMemoryCatalogStore, InMemoryPackagingStore
from stock_hub.stores.sql import SqlCatalogStore, SqlPackagingStore


def build_stores(
    backend: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Tuple[CatalogStore, PackagingStore]:
    """Return the (catalog, packaging) store pair for the configured backend."""
    if backend == "memory":
        return InMemoryCatalogStore(), InMemoryPackagingStore()
    if backend == "sql":
        if session_factory is None:
            raise ValueError("sql backend needs a session factory")
        return SqlCatalogStore(session_factory), SqlPackagingStore(session_factory)
    raise ValueError(f"Unknown catalog backend: {backend}")


__all__ = [
    "CatalogStore",
    "PackagingStore",
    "InMemoryCatalogStore",
    "InMemoryPackagingStore",
    "SqlCatalogStore",
    "SqlPackagingStore",
    "build_stores",
]
