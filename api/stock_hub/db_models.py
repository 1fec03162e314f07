# stock_hub/db_models.py
"""
SQLAlchemy ORM Models for Stock Hub.

Catalog (products, bundle edges), packaging records and the audit log.
"""
from __future__ import annotations
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Any
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Text, Date, DateTime,
    Numeric, ForeignKey, Index, CheckConstraint, UniqueConstraint,
    Enum as SQLEnum, JSON, func
)
from sqlalchemy.orm import (
    Mapped, mapped_column, relationship
)

from stock_hub.database import Base

# BIGINT on PostgreSQL, INTEGER on SQLite so rowid autoincrement works
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

# ============================================================================
# ENUMS
# ============================================================================

class ProductType(str, enum.Enum):
    single = "single"
    bundle = "bundle"


class AuditStatus(str, enum.Enum):
    success = "success"
    failure = "failure"


class AuditAction(str, enum.Enum):
    product_stock_deduct = "product_stock_deduct"
    product_stock_restore = "product_stock_restore"
    packaging_record_create = "packaging_record_create"
    packaging_record_delete = "packaging_record_delete"
    packaging_session_abandon = "packaging_session_abandon"


class AuditResourceType(str, enum.Enum):
    product = "product"
    product_component = "product_component"
    packaging_record = "packaging_record"
    packaging_item = "packaging_item"


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================================================
# 1. PRODUCTS
# ============================================================================

class Product(TimestampMixin, Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    barcode: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[ProductType] = mapped_column(
        SQLEnum(ProductType, name="product_type"),
        default=ProductType.single,
        nullable=False,
    )
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        Index("ix_products_type", "type"),
    )


# ============================================================================
# 2. PRODUCT COMPONENTS (bundle edges)
# ============================================================================

class ProductComponent(TimestampMixin, Base):
    __tablename__ = "product_components"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    parent_product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    child_product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # No UniqueConstraint on (parent, child): duplicate edges are summed.
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_product_components_quantity"),
        Index("ix_product_components_parent", "parent_product_id"),
        Index("ix_product_components_child", "child_product_id"),
    )


# ============================================================================
# 3. PACKAGING RECORDS
# ============================================================================

class PackagingRecord(Base):
    __tablename__ = "packaging_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    packaging_date: Mapped[date] = mapped_column(Date, nullable=False)
    waybill_number: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    # [{product_id, barcode, name, previous_stock, new_stock}, ...]
    stock_changes: Mapped[List[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )

    items: Mapped[List["PackagingItem"]] = relationship(
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="PackagingItem.position",
    )

    __table_args__ = (
        UniqueConstraint("packaging_date", "waybill_number", name="uq_packaging_records_date_waybill"),
    )


class PackagingItem(Base):
    __tablename__ = "packaging_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("packaging_records.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_barcode: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    product_name: Mapped[Optional[str]] = mapped_column(String(255))
    is_bundle: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Bundle composition at scan time: [{product_id, barcode, name, quantity}, ...]
    components: Mapped[Optional[List[dict[str, Any]]]] = mapped_column(JSON)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    record: Mapped["PackagingRecord"] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_packaging_items_record", "record_id"),
    )


# ============================================================================
# 4. AUDIT LOG
# ============================================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    user_email: Mapped[Optional[str]] = mapped_column(String(255))
    session_id: Mapped[Optional[str]] = mapped_column(String(100))
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100))
    action_details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    status: Mapped[AuditStatus] = mapped_column(
        SQLEnum(AuditStatus, name="audit_status"), nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index("ix_audit_logs_action_type", "action_type"),
        Index("ix_audit_logs_timestamp", "timestamp"),
    )
