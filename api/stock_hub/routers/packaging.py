# stock_hub/routers/packaging.py
"""
Packaging Router - scan sessions, packaging records and stock checks.

Sessions are held in a registry on app.state; each owns its own
reservation ledger. Authentication is upstream: the caller identity for the
audit trail comes from X-User-* headers.
"""
from __future__ import annotations
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from stock_hub.domain import (
    CommitResult, PackagingItemData, FAILURE_INSUFFICIENT_STOCK, FAILURE_NOT_FOUND,
)
from stock_hub.errors import (
    DuplicateWaybillError, NotFoundError, StockHubError, TransportError, ValidationError,
)
from stock_hub.hub import StockHub
from stock_hub.models import (
    BarcodesIn, BundleLineOut, CommitResultOut, CompleteOut, PackagingItemOut,
    PackagingRecordOut, RequirementOut, RequirementsOut, ScanIn, SessionOut,
    SessionStartIn, ValidationOut,
)
from stock_hub.services.audit import AuditActor
from stock_hub.services.packaging import PackagingSession, SessionRegistry

router = APIRouter(prefix="/packaging", tags=["Packaging"])


# ============================================================================
# Dependencies / helpers
# ============================================================================

def get_hub(request: Request) -> StockHub:
    return request.app.state.hub


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
) -> Optional[AuditActor]:
    if not x_user_id:
        return None
    return AuditActor(user_id=x_user_id, user_email=x_user_email, session_id=x_session_id)


def _http_error(e: StockHubError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(404, detail=e.as_dict())
    if isinstance(e, DuplicateWaybillError):
        return HTTPException(409, detail=e.as_dict())
    if isinstance(e, ValidationError):
        return HTTPException(400 if e.code == "INVALID_INPUT" else 409, detail=e.as_dict())
    if isinstance(e, TransportError):
        return HTTPException(502, detail=e.as_dict())
    return HTTPException(500, detail=e.as_dict())


def _commit_error(result: CommitResult) -> HTTPException:
    # pre-flight rejections vs operational faults
    status = 409 if result.failure in (FAILURE_INSUFFICIENT_STOCK, FAILURE_NOT_FOUND) else 502
    return HTTPException(status, detail=CommitResultOut.model_validate(result).model_dump(mode="json"))


def _session_out(session: PackagingSession) -> SessionOut:
    return SessionOut(
        id=session.id,
        waybill_number=session.waybill_number,
        packaging_date=session.packaging_date,
        started_at=session.started_at,
        closed=session.closed,
        items=[
            PackagingItemOut.model_validate(PackagingItemData.from_scan(i, e))
            for i, e in enumerate(session.items)
        ],
        ledger=session.ledger.snapshot(),
    )


def _open_session(sessions: SessionRegistry, session_id: str) -> PackagingSession:
    try:
        return sessions.get(session_id)
    except NotFoundError as e:
        raise _http_error(e)


# ============================================================================
# Sessions
# ============================================================================

@router.post("/sessions", response_model=SessionOut, status_code=201)
async def start_session(
    body: SessionStartIn,
    hub: StockHub = Depends(get_hub),
    sessions: SessionRegistry = Depends(get_sessions),
    actor: Optional[AuditActor] = Depends(get_actor),
):
    await sessions.expire()
    try:
        session = await hub.packaging.start_session(body.waybill_number, body.packaging_date, actor=actor)
    except StockHubError as e:
        raise _http_error(e)
    return _session_out(sessions.add(session))


@router.get("/sessions/{session_id}", response_model=SessionOut)
async def get_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    return _session_out(_open_session(sessions, session_id))


@router.post("/sessions/{session_id}/scan", response_model=SessionOut)
async def scan(session_id: str, body: ScanIn, sessions: SessionRegistry = Depends(get_sessions)):
    """Scan one barcode; 409 with every shortfall when the session cannot cover it."""
    session = _open_session(sessions, session_id)
    try:
        await session.scan(body.barcode)
    except StockHubError as e:
        raise _http_error(e)
    return _session_out(session)


@router.delete("/sessions/{session_id}/items/{index}", response_model=SessionOut)
async def remove_item(session_id: str, index: int, sessions: SessionRegistry = Depends(get_sessions)):
    session = _open_session(sessions, session_id)
    try:
        await session.remove(index)
    except StockHubError as e:
        raise _http_error(e)
    return _session_out(session)


@router.post("/sessions/{session_id}/complete", response_model=CompleteOut)
async def complete_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    session = _open_session(sessions, session_id)
    try:
        result = await session.complete()
    except StockHubError as e:
        raise _http_error(e)
    if not result.success:
        raise _commit_error(result)

    sessions.discard(session.id)
    return CompleteOut(
        result=CommitResultOut.model_validate(result),
        record=PackagingRecordOut.model_validate(session.record),
    )


@router.delete("/sessions/{session_id}")
async def abandon_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    session = _open_session(sessions, session_id)
    await session.abandon()
    sessions.discard(session.id)
    return {"ok": True, "session_id": session.id}


# ============================================================================
# Packaging records
# ============================================================================

@router.get("/records", response_model=List[PackagingRecordOut])
async def list_records(
    packaging_date: Optional[date] = Query(default=None, alias="date"),
    hub: StockHub = Depends(get_hub),
):
    try:
        records = await hub.packaging.list_records(packaging_date or date.today())
    except StockHubError as e:
        raise _http_error(e)
    return [PackagingRecordOut.model_validate(r) for r in records]


@router.delete("/records/{record_id}", response_model=CommitResultOut)
async def void_record(
    record_id: int,
    restore_stock: bool = Query(default=True),
    hub: StockHub = Depends(get_hub),
    actor: Optional[AuditActor] = Depends(get_actor),
):
    """Delete a record; restoration problems are reported in the body, not as an error status."""
    try:
        result = await hub.packaging.void_record(record_id, restore_stock=restore_stock, actor=actor)
    except StockHubError as e:
        raise _http_error(e)
    return CommitResultOut.model_validate(result)


# ============================================================================
# Stock checks
# ============================================================================

@router.post("/stock/requirements", response_model=RequirementsOut)
async def stock_requirements(body: BarcodesIn, hub: StockHub = Depends(get_hub)):
    try:
        resolved = await hub.calculator.resolve(body.barcodes)
    except StockHubError as e:
        raise _http_error(e)
    return RequirementsOut(
        requirements=[RequirementOut(product_id=pid, required=qty) for pid, qty in resolved.requirements.items()],
        missing=resolved.missing,
    )


@router.post("/stock/validate", response_model=ValidationOut)
async def stock_validate(body: BarcodesIn, hub: StockHub = Depends(get_hub)):
    try:
        validation = await hub.engine.validate_stock(body.barcodes)
    except StockHubError as e:
        raise _http_error(e)
    return ValidationOut.model_validate(validation)


@router.get("/products/{product_id}/components", response_model=List[BundleLineOut])
async def product_components(product_id: int, hub: StockHub = Depends(get_hub)):
    try:
        lines = await hub.engine.resolve_bundle(product_id)
    except StockHubError as e:
        raise _http_error(e)
    return [
        BundleLineOut(
            product_id=p.id,
            barcode=p.barcode,
            name=p.name,
            quantity=qty,
            stock_quantity=p.stock_quantity,
        )
        for p, qty in lines
    ]
