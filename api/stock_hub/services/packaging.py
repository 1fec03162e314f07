# stock_hub/services/packaging.py
"""
Packaging workflow - interactive scan sessions and committed packaging records.

A session is opened for one waybill, owns its reservation ledger, and on
completion commits the stock deduction and persists the packaging record.
"""
from __future__ import annotations
import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from stock_hub.db_models import AuditAction, AuditResourceType, AuditStatus
from stock_hub.domain import (
    CommitResult, PackagingItemData, PackagingRecordData, ScanEvent, FAILURE_RECORD,
)
from stock_hub.errors import (
    DuplicateWaybillError, NotFoundError, StockHubError, ValidationError,
)
from stock_hub.services.audit import AuditActor, AuditLogService
from stock_hub.services.bundles import BundleResolver
from stock_hub.services.ledger import Line, ReservationLedger
from stock_hub.services.stock_engine import StockEngine
from stock_hub.stores.base import CatalogStore, PackagingStore

logger = logging.getLogger(__name__)


class PackagingSession:
    """
    One operator scanning items for one waybill.

    The ledger lives and dies with the session: it is reset when the commit
    succeeds, when it fails, and when the session is abandoned.
    """

    def __init__(self, service: "PackagingService", waybill_number: str,
                 packaging_date: date, actor: Optional[AuditActor] = None):
        self.id = uuid.uuid4().hex
        self.service = service
        self.waybill_number = waybill_number
        self.packaging_date = packaging_date
        self.actor = actor
        self.started_at = datetime.now(timezone.utc)
        self.touched_at = self.started_at
        self.ledger = ReservationLedger()
        self.closed = False
        self.record: Optional[PackagingRecordData] = None
        self._items: List[ScanEvent] = []
        self._lines: List[List[Line]] = []
        self._lock = asyncio.Lock()

    @property
    def items(self) -> List[ScanEvent]:
        return list(self._items)

    def _reset_ledger(self) -> None:
        # items stay listed but no longer hold a reservation to release
        self.ledger.reset()
        self._lines = [[] for _ in self._lines]

    def _ensure_open(self) -> None:
        if self.closed:
            raise ValidationError(code="SESSION_CLOSED", session_id=self.id)

    async def scan(self, barcode: str) -> ScanEvent:
        """
        Resolve a scanned barcode and reserve its stock in the ledger.

        Raises NotFoundError for an unknown barcode and InsufficientStockError
        when the ledger cannot cover it; either way the session is unchanged.
        """
        barcode = (barcode or "").strip()
        if not barcode:
            raise ValidationError("Barcode cannot be empty")

        async with self._lock:
            self._ensure_open()
            product = await self.service.catalog.find_by_barcode(barcode)
            if product is None:
                raise NotFoundError(f"Product not found: {barcode}", code="PRODUCT_NOT_FOUND", barcode=barcode)

            item = await self.service.resolver.resolve(product)
            lines = item.lines()
            self.ledger.reserve(lines)

            event = ScanEvent.from_resolved(item, barcode=barcode)
            self._items.append(event)
            self._lines.append(lines)
            self.touched_at = datetime.now(timezone.utc)
            return event

    async def remove(self, index: int) -> ScanEvent:
        """Drop a scanned item and release its reservation."""
        async with self._lock:
            self._ensure_open()
            if not 0 <= index < len(self._items):
                raise NotFoundError(f"No scanned item at position {index}", index=index)
            event = self._items.pop(index)
            self.ledger.release(self._lines.pop(index))
            self.touched_at = datetime.now(timezone.utc)
            return event

    async def complete(self) -> CommitResult:
        """
        Commit the deduction and persist the packaging record.

        The session closes only on success. If the record cannot be stored
        after stock was deducted, the deduction is reversed by restoration.

        Runs shielded: once started, cancelling the caller does not stop the
        deduction, the record or the close from landing, and a second call
        waits on the session lock and finds the session closed.
        """
        return await asyncio.shield(self._complete())

    async def _complete(self) -> CommitResult:
        async with self._lock:
            self.touched_at = datetime.now(timezone.utc)
            self._ensure_open()
            if not self._items:
                raise ValidationError(code="EMPTY_BATCH")

            engine = self.service.engine
            try:
                result = await engine.commit_deduction(self._items, actor=self.actor)
            finally:
                # stale either way: the store is the source of truth now
                self._reset_ledger()

            if not result.success:
                return result

            try:
                self.record = await self.service.records.create_record(
                    packaging_date=self.packaging_date,
                    waybill_number=self.waybill_number,
                    items=[PackagingItemData.from_scan(i, e) for i, e in enumerate(self._items)],
                    stock_changes=result.changes,
                    created_by=self.actor.user_id if self.actor else None,
                )
            except StockHubError as e:
                logger.error("Packaging record for waybill %s not stored, reversing deduction: %s",
                             self.waybill_number, e.message)
                undo = await engine.commit_restoration(self._items, actor=self.actor)
                await self.service.audit_record(
                    AuditAction.packaging_record_create, self, status=AuditStatus.failure,
                    error_message=e.message,
                )
                return CommitResult(False, errors=[e.message] + undo.errors, failure=FAILURE_RECORD)

            self.closed = True
            await self.service.audit_record(AuditAction.packaging_record_create, self, record=self.record)
            logger.info("Packaging record %s stored for waybill %s (%d items)",
                        self.record.id, self.waybill_number, len(self._items))
            return result

    async def abandon(self) -> None:
        async with self._lock:
            if self.closed:
                return
            self._reset_ledger()
            self.closed = True
            await self.service.audit_record(AuditAction.packaging_session_abandon, self)


class PackagingService:
    def __init__(
        self,
        catalog: CatalogStore,
        records: PackagingStore,
        resolver: BundleResolver,
        engine: StockEngine,
        audit: AuditLogService,
    ):
        self.catalog = catalog
        self.records = records
        self.resolver = resolver
        self.engine = engine
        self.audit = audit

    async def start_session(self, waybill_number: str, packaging_date: Optional[date] = None,
                            actor: Optional[AuditActor] = None) -> PackagingSession:
        waybill_number = (waybill_number or "").strip()
        if not waybill_number:
            raise ValidationError("Waybill number cannot be empty")
        packaging_date = packaging_date or date.today()
        if await self.records.find_record(packaging_date, waybill_number) is not None:
            raise DuplicateWaybillError(
                f"Waybill {waybill_number} already recorded for {packaging_date.isoformat()}",
                waybill_number=waybill_number,
                packaging_date=packaging_date.isoformat(),
            )
        return PackagingSession(self, waybill_number, packaging_date, actor=actor)

    async def list_records(self, packaging_date: date) -> List[PackagingRecordData]:
        return await self.records.list_records(packaging_date)

    async def void_record(self, record_id: int, restore_stock: bool = True,
                          actor: Optional[AuditActor] = None) -> CommitResult:
        """
        Delete a packaging record, first adding its stock back.

        Restoration problems do not block the delete; they come back in the
        result and the audit entry for manual follow-up.
        """
        record = await self.records.get_record(record_id)
        result = CommitResult(True)
        if restore_stock:
            result = await self.engine.commit_restoration(record.scan_events(), actor=actor)

        details = {
            "waybill_number": record.waybill_number,
            "packaging_date": record.packaging_date.isoformat(),
            "itemCount": len(record.items),
            "restore_stock": restore_stock,
            "stock_restored": restore_stock and result.success,
        }
        try:
            await self.records.delete_record(record_id)
        except StockHubError as e:
            await self.audit.log(
                AuditAction.packaging_record_delete, AuditResourceType.packaging_record,
                actor=actor, resource_id=record_id, details=details,
                status=AuditStatus.failure, error_message=e.message,
            )
            raise

        await self.audit.log(
            AuditAction.packaging_record_delete, AuditResourceType.packaging_record,
            actor=actor, resource_id=record_id, details=details,
            status=AuditStatus.success if result.success else AuditStatus.failure,
            error_message="; ".join(result.errors) or None,
        )
        return result

    async def audit_record(self, action: AuditAction, session: PackagingSession,
                           record: Optional[PackagingRecordData] = None,
                           status: AuditStatus = AuditStatus.success,
                           error_message: Optional[str] = None) -> None:
        await self.audit.log(
            action, AuditResourceType.packaging_record,
            actor=session.actor,
            resource_id=record.id if record else None,
            details={
                "waybill_number": session.waybill_number,
                "packaging_date": session.packaging_date.isoformat(),
                "itemCount": len(session.items),
                "session": session.id,
            },
            status=status,
            error_message=error_message,
        )


class SessionRegistry:
    """
    Open packaging sessions by id; one registry per application.

    With an `idle_timeout`, `expire()` abandons sessions untouched for longer
    than that and drops closed ones still registered.
    """

    def __init__(self, idle_timeout: Optional[timedelta] = None):
        self.idle_timeout = idle_timeout
        self._sessions: Dict[str, PackagingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: PackagingSession) -> PackagingSession:
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> PackagingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(code="SESSION_NOT_FOUND", session_id=session_id)
        return session

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def expire(self, now: Optional[datetime] = None) -> List[PackagingSession]:
        if self.idle_timeout is None:
            return []
        now = now or datetime.now(timezone.utc)
        stale = [
            s for s in self._sessions.values()
            if s.closed or now - s.touched_at > self.idle_timeout
        ]
        for session in stale:
            if not session.closed:
                logger.info("Abandoning idle packaging session %s (waybill %s)",
                            session.id, session.waybill_number)
                await session.abandon()
            self.discard(session.id)
        return stale
