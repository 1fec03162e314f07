# stock_hub/hub.py
"""
Service wiring: one StockHub per application, built from a pair of stores
and an audit sink.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from stock_hub.settings import Settings, settings as default_settings
from stock_hub.services.audit import AuditLogService, AuditSink
from stock_hub.services.bundles import BundleResolver
from stock_hub.services.packaging import PackagingService
from stock_hub.services.requirements import RequirementCalculator
from stock_hub.services.stock_engine import StockEngine
from stock_hub.services.stock_reader import BatchStockReader
from stock_hub.stores.base import CatalogStore, PackagingStore


@dataclass
class StockHub:
    catalog: CatalogStore
    records: PackagingStore
    audit: AuditLogService
    resolver: BundleResolver
    calculator: RequirementCalculator
    engine: StockEngine
    packaging: PackagingService


def build_hub(
    catalog: CatalogStore,
    records: PackagingStore,
    audit_sink: AuditSink,
    settings: Optional[Settings] = None,
) -> StockHub:
    settings = settings or default_settings
    audit = AuditLogService(audit_sink, enabled=settings.AUDIT_LOG_ENABLED)
    resolver = BundleResolver(catalog)
    calculator = RequirementCalculator(catalog, resolver)
    engine = StockEngine(
        catalog,
        calculator,
        BatchStockReader(catalog),
        audit,
        write_concurrency=settings.WRITE_CONCURRENCY,
    )
    packaging = PackagingService(catalog, records, resolver, engine, audit)
    return StockHub(
        catalog=catalog,
        records=records,
        audit=audit,
        resolver=resolver,
        calculator=calculator,
        engine=engine,
        packaging=packaging,
    )
