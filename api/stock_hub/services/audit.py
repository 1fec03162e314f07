# stock_hub/services/audit.py
"""
Audit Log - structured entries for stock and packaging actions.

The audit trail is a side channel: `AuditLogService.log` never raises, a
failing sink is logged and the calling operation carries on.

Usage:
    audit = AuditLogService(SqlAuditSink(session_factory))
    await audit.log(
        AuditAction.product_stock_deduct, AuditResourceType.product,
        actor=AuditActor("u-1", "packer@example.com"),
        details={"itemCount": 3},
    )
"""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stock_hub.db_models import AuditAction, AuditLog, AuditResourceType, AuditStatus

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = (
    "password",
    "oldPassword",
    "newPassword",
    "secret",
    "token",
    "apiKey",
    "api_key",
    "accessToken",
    "refreshToken",
    "authorization",
)
REDACTED = "[REDACTED]"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(f.lower() in lowered for f in SENSITIVE_FIELDS)


def sanitize_details(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace values under sensitive keys with [REDACTED], recursing into dicts and lists."""
    if not data:
        return None
    clean: Dict[str, Any] = {}
    for key, value in data.items():
        if _is_sensitive(str(key)):
            clean[key] = REDACTED
        elif isinstance(value, dict):
            clean[key] = sanitize_details(value)
        elif isinstance(value, (list, tuple)):
            clean[key] = [sanitize_details(v) if isinstance(v, dict) else v for v in value]
        else:
            clean[key] = value
    return clean


@dataclass(frozen=True)
class AuditActor:
    user_id: str
    user_email: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class AuditEntry:
    user_id: str
    action_type: str
    resource_type: str
    user_email: Optional[str] = None
    session_id: Optional[str] = None
    resource_id: Optional[str] = None
    action_details: Optional[Dict[str, Any]] = None
    status: AuditStatus = AuditStatus.success
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# Sinks
# ============================================================================

class AuditSink(ABC):
    @abstractmethod
    async def write(self, entry: AuditEntry) -> None:
        ...


class SqlAuditSink(AuditSink):
    """Appends entries to the audit_logs table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._factory = session_factory

    async def write(self, entry: AuditEntry) -> None:
        async with self._factory() as db:
            db.add(AuditLog(
                user_id=entry.user_id,
                user_email=entry.user_email,
                session_id=entry.session_id,
                action_type=entry.action_type,
                resource_type=entry.resource_type,
                resource_id=entry.resource_id,
                action_details=entry.action_details,
                status=entry.status,
                error_message=entry.error_message,
                timestamp=entry.timestamp,
            ))
            await db.commit()


class InMemoryAuditSink(AuditSink):
    def __init__(self):
        self.entries: List[AuditEntry] = []
        self.fail = False

    async def write(self, entry: AuditEntry) -> None:
        if self.fail:
            raise RuntimeError("audit sink unavailable")
        self.entries.append(entry)

    def of(self, action: Union[AuditAction, str]) -> List[AuditEntry]:
        action = action.value if isinstance(action, AuditAction) else action
        return [e for e in self.entries if e.action_type == action]


# ============================================================================
# Service
# ============================================================================

class AuditLogService:
    def __init__(self, sink: AuditSink, enabled: bool = True):
        self.sink = sink
        self.enabled = enabled

    async def log(
        self,
        action: Union[AuditAction, str],
        resource_type: Union[AuditResourceType, str],
        actor: Optional[AuditActor] = None,
        resource_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        status: AuditStatus = AuditStatus.success,
        error_message: Optional[str] = None,
    ) -> Optional[AuditEntry]:
        """Write one entry; returns it, or None when skipped or the sink failed."""
        if not self.enabled or actor is None:
            return None

        action = action.value if isinstance(action, AuditAction) else str(action)
        resource_type = (
            resource_type.value if isinstance(resource_type, AuditResourceType) else str(resource_type)
        )
        entry = AuditEntry(
            user_id=actor.user_id,
            user_email=actor.user_email,
            session_id=actor.session_id,
            action_type=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            action_details={
                "action": action,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **(sanitize_details(details) or {}),
            },
            status=AuditStatus(status),
            error_message=error_message or None,
        )
        try:
            await self.sink.write(entry)
        except Exception as e:
            logger.error("Failed to write audit log %s: %s", action, e)
            return None
        return entry
