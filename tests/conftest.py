"""
Pytest fixtures for Stock Hub tests.

Services run against the in-memory stores; SQL store tests build their own
SQLite database (see test_sql_stores.py).
"""
import asyncio
import logging
from types import SimpleNamespace

import pytest

from stock_hub.db_models import ProductType
from stock_hub.hub import build_hub
from stock_hub.services.audit import AuditActor, InMemoryAuditSink
from stock_hub.settings import Settings
from stock_hub.stores.memory import InMemoryCatalogStore, InMemoryPackagingStore


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the developer's environment."""
    return Settings(
        STOCK_DATA_ROOT=tmp_path,
        CATALOG_BACKEND="memory",
        WRITE_CONCURRENCY=20,
        AUDIT_LOG_ENABLED=True,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def catalog():
    return InMemoryCatalogStore()


@pytest.fixture
def records():
    return InMemoryPackagingStore()


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def hub(catalog, records, audit_sink, settings):
    return build_hub(catalog, records, audit_sink, settings)


@pytest.fixture
def actor():
    return AuditActor(user_id="user-1", user_email="packer@example.com", session_id="sess-1")


async def seed_catalog(catalog):
    """
    Pen(10), Widget(5), Gadget(1) and a Gift Set bundle = 2x Widget + 1x Gadget,
    plus an empty bundle.
    """
    pen = await catalog.create_product("PEN-001", "Pen", stock_quantity=10)
    widget = await catalog.create_product("WID-001", "Widget", stock_quantity=5)
    gadget = await catalog.create_product("GAD-001", "Gadget", stock_quantity=1)
    gift = await catalog.create_product("GIFT-001", "Gift Set", type=ProductType.bundle)
    empty = await catalog.create_product("EMPTY-001", "Empty Box", type=ProductType.bundle)
    await catalog.add_component(gift.id, widget.id, 2)
    await catalog.add_component(gift.id, gadget.id, 1)
    return SimpleNamespace(pen=pen, widget=widget, gadget=gadget, gift=gift, empty=empty)


@pytest.fixture
async def products(catalog):
    return await seed_catalog(catalog)


@pytest.fixture
def restore_logging():
    """Undo handlers and levels installed by setup_logging()."""
    names = ("", "uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")
    saved = {n: (list(logging.getLogger(n).handlers), logging.getLogger(n).level) for n in names}
    yield
    for name, (handlers, level) in saved.items():
        lg = logging.getLogger(name)
        for h in list(lg.handlers):
            if h not in handlers:
                lg.removeHandler(h)
                h.close()
        lg.setLevel(level)


@pytest.fixture
def seeded(catalog):
    """The `products` catalog for synchronous tests (HTTP client)."""
    return asyncio.run(seed_catalog(catalog))
