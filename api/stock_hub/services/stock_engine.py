# stock_hub/services/stock_engine.py
"""
Commit Engine + Restoration Engine.

The catalog store has no multi-record transaction, so a deduction runs as a
saga:

    1. resolve + aggregate the scan list, batch-read authoritative stock
    2. validate; any missing product or shortfall aborts with zero writes
    3. apply one set_stock per product, concurrently; failures are isolated
    4. on any failure, write every applied product back to its previous value

Compensation is best effort. Writes are last-write-wins sets, so a commit
running concurrently in another session can lose a decrement; the saga only
narrows the window, it does not close it.

Steps 3 and 4 (plus the audit entry) run shielded from caller cancellation.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from stock_hub.db_models import AuditAction, AuditResourceType, AuditStatus
from stock_hub.domain import (
    CatalogProduct, CommitResult, Shortfall, StockChange, StockValidation,
    FAILURE_INSUFFICIENT_STOCK, FAILURE_NOT_FOUND, FAILURE_STOCK_UPDATE, FAILURE_TRANSPORT,
)
from stock_hub.errors import (
    InsufficientStockError, NotFoundError, PartialCommitError, TransportError,
)
from stock_hub.services.audit import AuditActor, AuditLogService
from stock_hub.services.requirements import RequirementCalculator, ResolvedScan, ScanInput
from stock_hub.services.stock_reader import BatchStockReader, StockSnapshot
from stock_hub.stores.base import CatalogStore

logger = logging.getLogger(__name__)


def _labels(resolved: ResolvedScan) -> Dict[int, str]:
    """product id -> display name, taken from the scan events themselves."""
    labels: Dict[int, str] = {}
    for event in resolved.events:
        if event.components is not None:
            for comp in event.components:
                labels.setdefault(comp.product_id, comp.name or comp.barcode)
        elif event.product is not None:
            labels.setdefault(event.product.id, event.product.name)
    return labels


def _not_found(resolved: ResolvedScan, snapshot: StockSnapshot) -> List[str]:
    labels = _labels(resolved)
    return list(resolved.missing) + [labels.get(pid, str(pid)) for pid in snapshot.missing]


def _shortfalls(requirements: Dict[int, int], snapshot: StockSnapshot) -> List[Shortfall]:
    out = []
    for pid, required in requirements.items():
        product = snapshot.products.get(pid)
        if product is not None and product.stock_quantity < required:
            out.append(Shortfall(pid, product.barcode, product.name, required, product.stock_quantity))
    return out


def _change(product: CatalogProduct, new_stock: int) -> StockChange:
    return StockChange(product.id, product.barcode, product.name, product.stock_quantity, new_stock)


class StockEngine:
    """Core surface: resolve, require, validate, deduct, restore."""

    def __init__(
        self,
        store: CatalogStore,
        calculator: RequirementCalculator,
        reader: BatchStockReader,
        audit: AuditLogService,
        write_concurrency: int = 20,
    ):
        self.store = store
        self.calculator = calculator
        self.reader = reader
        self.audit = audit
        self.write_concurrency = max(1, int(write_concurrency))

    # =========================================================================
    # Read side
    # =========================================================================

    async def resolve_bundle(self, product_id: int) -> List[Tuple[CatalogProduct, int]]:
        return await self.calculator.resolver.resolve_bundle(product_id)

    async def calculate_requirements(self, scan_items: Sequence[ScanInput]) -> Dict[int, int]:
        return await self.calculator.calculate_requirements(scan_items)

    async def validate_stock(self, scan_items: Sequence[ScanInput]) -> StockValidation:
        """Dry run of the deduction checks; never writes."""
        resolved = await self.calculator.resolve(scan_items)
        requirements = resolved.requirements
        snapshot = await self.reader.read(requirements)
        shortfalls = _shortfalls(requirements, snapshot)
        missing = _not_found(resolved, snapshot)
        return StockValidation(valid=not shortfalls and not missing, shortfalls=shortfalls, missing=missing)

    # =========================================================================
    # Deduction (saga)
    # =========================================================================

    def _plan_deduction(self, resolved: ResolvedScan, snapshot: StockSnapshot) -> List[StockChange]:
        missing = _not_found(resolved, snapshot)
        if missing:
            raise NotFoundError(
                "; ".join(f"Product not found: {m}" for m in missing),
                code="PRODUCT_NOT_FOUND",
                missing=missing,
            )
        requirements = resolved.requirements
        shortfalls = _shortfalls(requirements, snapshot)
        if shortfalls:
            raise InsufficientStockError("; ".join(s.describe() for s in shortfalls), shortfalls=shortfalls)
        return [
            _change(snapshot.products[pid], snapshot.stock(pid) - required)
            for pid, required in requirements.items()
        ]

    async def commit_deduction(self, scan_items: Sequence[ScanInput], actor: Optional[AuditActor] = None) -> CommitResult:
        scan_items = list(scan_items)
        try:
            resolved = await self.calculator.resolve(scan_items)
            snapshot = await self.reader.read(resolved.requirements)
            changes = self._plan_deduction(resolved, snapshot)
        except TransportError as e:
            result = CommitResult(False, errors=[e.message], failure=FAILURE_TRANSPORT)
        except NotFoundError as e:
            result = CommitResult(
                False,
                errors=[f"Product not found: {m}" for m in e.data.get("missing", [])] or [e.message],
                failure=FAILURE_NOT_FOUND,
            )
        except InsufficientStockError as e:
            result = CommitResult(False, errors=e.messages, shortfalls=e.shortfalls, failure=FAILURE_INSUFFICIENT_STOCK)
        else:
            return await asyncio.shield(self._apply_deduction(changes, len(scan_items), actor))

        logger.info("Stock deduction rejected (%s): %s", result.failure, "; ".join(result.errors))
        await self._audit_deduction(actor, len(scan_items), [], 0, result)
        return result

    async def _apply_deduction(self, changes: List[StockChange], item_count: int,
                               actor: Optional[AuditActor]) -> CommitResult:
        try:
            await self._apply(changes)
        except PartialCommitError as e:
            names = {c.product_id: c.name for c in changes}
            errors = [f"Failed to update stock for {names[pid]}: {reason}" for pid, reason in e.failed.items()]
            errors.extend(await self._compensate(e.applied))
            result = CommitResult(False, errors=errors, failure=FAILURE_STOCK_UPDATE)
            logger.warning("Stock deduction failed, %d update(s) compensated: %s", len(e.applied), "; ".join(errors))
            await self._audit_deduction(actor, item_count, changes, len(e.applied), result)
            return result

        result = CommitResult(True, changes=list(changes))
        logger.info("Stock deducted for %d product(s) from %d scanned item(s)", len(changes), item_count)
        await self._audit_deduction(actor, item_count, changes, len(changes), result)
        return result

    async def _apply(self, changes: Sequence[StockChange]) -> None:
        """Write every change; raise PartialCommitError when any write failed."""
        applied, failed = await self._write_all(changes)
        if failed:
            raise PartialCommitError(applied, failed)

    async def _compensate(self, applied: Sequence[StockChange]) -> List[str]:
        """Write applied products back to their previous stock; report, never raise."""
        if not applied:
            return []
        reverts = [replace(c, previous_stock=c.new_stock, new_stock=c.previous_stock) for c in applied]
        _, failed = await self._write_all(reverts)
        errors = []
        names = {c.product_id: c.name for c in applied}
        for pid, reason in failed.items():
            logger.error("Compensation failed for product %s (%s): %s", pid, names[pid], reason)
            errors.append(f"Failed to roll back stock for {names[pid]}: {reason}")
        return errors

    async def _write_all(self, changes: Sequence[StockChange]) -> Tuple[List[StockChange], Dict[int, str]]:
        semaphore = asyncio.Semaphore(self.write_concurrency)

        async def write(change: StockChange) -> None:
            async with semaphore:
                await self.store.set_stock(change.product_id, change.new_stock)

        outcomes = await asyncio.gather(*(write(c) for c in changes), return_exceptions=True)

        applied: List[StockChange] = []
        failed: Dict[int, str] = {}
        for change, outcome in zip(changes, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Stock update failed for product %s: %s", change.product_id, outcome)
                failed[change.product_id] = str(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                applied.append(change)
        return applied, failed

    async def _audit_deduction(self, actor: Optional[AuditActor], item_count: int,
                               changes: Sequence[StockChange], updated: int, result: CommitResult) -> None:
        await self.audit.log(
            AuditAction.product_stock_deduct,
            AuditResourceType.product,
            actor=actor,
            details={
                "itemCount": item_count,
                "productsUpdated": updated,
                "updates": [
                    {"barcode": c.barcode, "name": c.name, "previous": c.previous_stock,
                     "new": c.new_stock, "deducted": c.previous_stock - c.new_stock}
                    for c in changes
                ],
                "success": result.success,
            },
            status=AuditStatus.success if result.success else AuditStatus.failure,
            error_message="; ".join(result.errors) or None,
        )

    # =========================================================================
    # Restoration
    # =========================================================================

    async def commit_restoration(self, scan_items: Sequence[ScanInput], actor: Optional[AuditActor] = None) -> CommitResult:
        """
        Add the batch's requirements back onto current stock.

        There is no insufficiency check and nothing is compensated: missing
        products and failed writes are reported for manual follow-up.
        """
        scan_items = list(scan_items)
        try:
            resolved = await self.calculator.resolve(scan_items)
            snapshot = await self.reader.read(resolved.requirements)
        except TransportError as e:
            result = CommitResult(False, errors=[e.message], failure=FAILURE_TRANSPORT)
            logger.warning("Stock restoration aborted: %s", e.message)
            await self._audit_restoration(actor, len(scan_items), [], 0, result)
            return result

        changes = [
            _change(snapshot.products[pid], snapshot.stock(pid) + required)
            for pid, required in resolved.requirements.items()
            if pid in snapshot.products
        ]
        not_found = [f"Product not found: {m}" for m in _not_found(resolved, snapshot)]
        return await asyncio.shield(self._apply_restoration(changes, not_found, len(scan_items), actor))

    async def _apply_restoration(self, changes: List[StockChange], not_found: List[str],
                                 item_count: int, actor: Optional[AuditActor]) -> CommitResult:
        applied, failed = await self._write_all(changes)
        names = {c.product_id: c.name for c in changes}
        errors = list(not_found)
        errors.extend(f"Failed to restore stock for {names[pid]}: {reason}" for pid, reason in failed.items())

        failure = None
        if not_found:
            failure = FAILURE_NOT_FOUND
        elif failed:
            failure = FAILURE_STOCK_UPDATE
        result = CommitResult(not errors, errors=errors, changes=applied, failure=failure)

        if errors:
            logger.warning("Stock restoration incomplete, manual follow-up needed: %s", "; ".join(errors))
        else:
            logger.info("Stock restored for %d product(s) from %d item(s)", len(applied), item_count)
        await self._audit_restoration(actor, item_count, changes, len(applied), result)
        return result

    async def _audit_restoration(self, actor: Optional[AuditActor], item_count: int,
                                 changes: Sequence[StockChange], restored: int, result: CommitResult) -> None:
        await self.audit.log(
            AuditAction.product_stock_restore,
            AuditResourceType.product,
            actor=actor,
            details={
                "itemCount": item_count,
                "productsRestored": restored,
                "updates": [
                    {"barcode": c.barcode, "name": c.name, "previous": c.previous_stock,
                     "new": c.new_stock, "restored": c.new_stock - c.previous_stock}
                    for c in changes
                ],
                "success": result.success,
            },
            status=AuditStatus.success if result.success else AuditStatus.failure,
            error_message="; ".join(result.errors) or None,
        )
