# stock_hub/services/__init__.py
"""
Business logic services for Stock Hub.
"""
from stock_hub.services.audit import AuditActor, AuditLogService, InMemoryAuditSink, SqlAuditSink
from stock_hub.services.bundles import BundleResolver
from stock_hub.services.ledger import ReservationLedger
from stock_hub.services.packaging import PackagingService, PackagingSession, SessionRegistry
from stock_hub.services.requirements import RequirementCalculator, aggregate
from stock_hub.services.stock_engine import StockEngine
from stock_hub.services.stock_reader import BatchStockReader

__all__ = [
    "AuditActor",
    "AuditLogService",
    "InMemoryAuditSink",
    "SqlAuditSink",
    "BundleResolver",
    "ReservationLedger",
    "PackagingService",
    "PackagingSession",
    "SessionRegistry",
    "RequirementCalculator",
    "aggregate",
    "StockEngine",
    "BatchStockReader",
]
