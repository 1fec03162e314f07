from datetime import date, datetime
from typing import Optional, Dict, List
from pydantic import BaseModel, ConfigDict, Field


class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------
# Requests
# ---------------------------------------------------------

class SessionStartIn(BaseModel):
    waybill_number: str = Field(min_length=1, max_length=100)
    packaging_date: Optional[date] = None

class ScanIn(BaseModel):
    barcode: str = Field(min_length=1, max_length=64)

class BarcodesIn(BaseModel):
    barcodes: List[str] = Field(min_length=1)


# ---------------------------------------------------------
# Responses
# ---------------------------------------------------------

class ShortfallOut(_Out):
    product_id: int
    barcode: str
    name: str
    required: int
    available: int

class StockChangeOut(_Out):
    product_id: int
    barcode: str
    name: str
    previous_stock: int
    new_stock: int

class ComponentOut(_Out):
    product_id: int
    barcode: str
    name: str
    quantity: int

class PackagingItemOut(_Out):
    position: int
    product_barcode: str
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    is_bundle: bool = False
    components: Optional[List[ComponentOut]] = None
    scanned_at: datetime

class SessionOut(BaseModel):
    id: str
    waybill_number: str
    packaging_date: date
    started_at: datetime
    closed: bool
    items: List[PackagingItemOut]
    ledger: Dict[int, int] = Field(default_factory=dict)

class CommitResultOut(_Out):
    success: bool
    errors: List[str] = Field(default_factory=list)
    failure: Optional[str] = None
    shortfalls: List[ShortfallOut] = Field(default_factory=list)
    changes: List[StockChangeOut] = Field(default_factory=list)

class PackagingRecordOut(_Out):
    id: int
    packaging_date: date
    waybill_number: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[PackagingItemOut] = Field(default_factory=list)
    stock_changes: List[StockChangeOut] = Field(default_factory=list)

class CompleteOut(BaseModel):
    result: CommitResultOut
    record: PackagingRecordOut

class RequirementOut(BaseModel):
    product_id: int
    required: int

class RequirementsOut(BaseModel):
    requirements: List[RequirementOut]
    missing: List[str] = Field(default_factory=list)

class ValidationOut(_Out):
    valid: bool
    shortfalls: List[ShortfallOut] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)

class BundleLineOut(BaseModel):
    product_id: int
    barcode: str
    name: str
    quantity: int
    stock_quantity: int
