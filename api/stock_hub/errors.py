"""
Exceptions for Stock Hub.

Every error carries a structured code for programmatic handling, a
human-readable message and a data dict with context.

Usage:
    try:
        session.ledger.reserve(lines)
    except InsufficientStockError as e:
        for s in e.shortfalls:
            print(f"{s.name}: need {s.required}, have {s.available}")
"""
from __future__ import annotations
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from stock_hub.domain import Shortfall, StockChange


class StockHubError(Exception):
    """Base error: code + message + data."""

    default_code = "STOCK_HUB_ERROR"
    _default_messages: Dict[str, str] = {
        "STOCK_HUB_ERROR": "Stock operation failed",
        "INSUFFICIENT_STOCK": "Insufficient stock",
        "EMPTY_BATCH": "Scan at least one product",
        "INVALID_INPUT": "Invalid input",
        "NOT_FOUND": "Not found",
        "PRODUCT_NOT_FOUND": "Product not found",
        "RECORD_NOT_FOUND": "Packaging record not found",
        "SESSION_NOT_FOUND": "Packaging session not found",
        "SESSION_CLOSED": "Packaging session is closed",
        "TRANSPORT": "Stock store unreachable",
        "PARTIAL_COMMIT": "Stock update failed",
        "DUPLICATE_WAYBILL": "Waybill already recorded for this date",
    }

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, **data: Any):
        self.code = code or self.default_code
        self.message = message or self._default_messages.get(self.code, self.code)
        self.data = data
        super().__init__(self.message)

    def as_dict(self) -> Dict[str, Any]:
        """Serialize to dict (useful for APIs)."""
        return {
            "code": self.code,
            "message": self.message,
            "data": {k: _plain(v) for k, v in self.data.items()},
        }


class ValidationError(StockHubError):
    """Business-rule rejection raised before anything is written."""

    default_code = "INVALID_INPUT"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None,
                 shortfalls: Sequence["Shortfall"] = (), **data: Any):
        self.shortfalls: List["Shortfall"] = list(shortfalls)
        super().__init__(message, code, **data)

    @property
    def messages(self) -> List[str]:
        if self.shortfalls:
            return [s.describe() for s in self.shortfalls]
        return [self.message]

    def as_dict(self) -> Dict[str, Any]:
        payload = super().as_dict()
        payload["shortfalls"] = [asdict(s) for s in self.shortfalls]
        return payload


class InsufficientStockError(ValidationError):
    default_code = "INSUFFICIENT_STOCK"


class NotFoundError(StockHubError):
    default_code = "NOT_FOUND"


class TransportError(StockHubError):
    """Read or write fault against the backing store."""

    default_code = "TRANSPORT"


class PartialCommitError(StockHubError):
    """Some stock writes of a batch landed, others did not."""

    default_code = "PARTIAL_COMMIT"

    def __init__(self, applied: Sequence["StockChange"], failed: Dict[int, str],
                 message: Optional[str] = None):
        self.applied: List["StockChange"] = list(applied)
        self.failed: Dict[int, str] = dict(failed)
        super().__init__(
            message or f"{len(self.failed)} stock update(s) failed, {len(self.applied)} applied",
            applied=[c.product_id for c in self.applied],
            failed=self.failed,
        )


class DuplicateWaybillError(StockHubError):
    default_code = "DUPLICATE_WAYBILL"


def _plain(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
