from __future__ import annotations

import re
from typing import Optional, Literal, List, Any
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =========================
# ===== Base (Pydantic v2)
# =========================
class APIBase(BaseModel):
    """
    Base for every response schema:
    - from_attributes=True: build straight from SQLAlchemy rows
    - json_encoders: Decimal -> float so Numeric columns serialize as numbers
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={Decimal: float}
    )


def _blank_to_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class PageMeta(BaseModel):
    current_page: int
    total_pages: int
    total_count: int
    has_next_page: bool
    has_prev_page: bool


# =========================================
# =============== Reference ===============
# =========================================
class PartyIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    contact_name: Optional[str] = Field(None, max_length=100)
    contact_phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class PartyOut(APIBase):
    id: int
    name: str
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    created_at: Optional[datetime] = None


class MillIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    contact_person: Optional[str] = Field(None, max_length=100)
    contact_phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    email: Optional[str] = Field(None, max_length=255)
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class MillOut(APIBase):
    id: int
    name: str
    contact_person: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class QualityIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class QualityOut(APIBase):
    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


PROCESS_NAME_RE = re.compile(r"^[a-zA-Z0-9\s\-_&()]+$")


class ProcessIn(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    priority: int = Field(ge=1, le=100)
    description: Optional[str] = Field(None, max_length=500)
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v and not PROCESS_NAME_RE.match(v):
                raise ValueError(
                    "Process name can only contain letters, numbers, spaces, hyphens, "
                    "underscores, ampersands, and parentheses"
                )
        return v


class ProcessOut(APIBase):
    id: int
    name: str
    priority: int
    description: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class PartyBrief(APIBase):
    id: int
    name: str


class MillBrief(APIBase):
    id: int
    name: str


class QualityBrief(APIBase):
    id: int
    name: str


# =========================================
# ================ Orders =================
# =========================================
class OrderItemIn(BaseModel):
    id: Optional[int] = Field(default=None, description="Existing item id to keep its identity on PUT")
    quality_id: Optional[int] = None
    quantity: float
    description: Optional[str] = Field(None, max_length=200)
    image_urls: List[str] = Field(default_factory=list)

    @field_validator("image_urls")
    @classmethod
    def _check_urls(cls, v):
        for url in v:
            if len(url) > 500:
                raise ValueError("Image URL cannot exceed 500 characters")
        return v


class OrderIn(BaseModel):
    """Create and PUT share one shape: PUT is a full replace."""
    order_type: Literal["Dying", "Printing"]
    arrival_date: date
    party_id: int
    delivery_date: Optional[date] = None
    po_date: Optional[date] = None
    po_number: Optional[str] = Field(None, max_length=50)
    style_no: Optional[str] = Field(None, max_length=50)
    contact_name: Optional[str] = Field(None, max_length=50)
    contact_phone: Optional[str] = Field(None, max_length=20)
    items: List[OrderItemIn]

    @field_validator("po_number", "style_no", "contact_name", "contact_phone", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)


class OrderStatusIn(BaseModel):
    status: Literal["pending", "delivered"]


class OrderItemOut(APIBase):
    id: int
    position: int
    quality_id: Optional[int] = None
    quality: Optional[QualityBrief] = None
    quantity: float
    description: Optional[str] = None
    image_urls: List[str] = []


class OrderOut(APIBase):
    id: int
    order_no: str
    order_type: str
    arrival_date: date
    delivery_date: Optional[date] = None
    po_date: Optional[date] = None
    po_number: Optional[str] = None
    style_no: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    status: str
    party_id: int
    party: Optional[PartyBrief] = None
    items: List[OrderItemOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderPage(BaseModel):
    items: List[OrderOut]
    pagination: PageMeta


# =========================================
# ============= Mill ledgers ==============
# =========================================
class AdditionalMeterIn(BaseModel):
    greigh_mtr: Optional[float] = None
    pcs: Optional[int] = None
    quality_id: Optional[int] = None
    process_name: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


class MillInputFields(BaseModel):
    # numeric checks live in services/mill_inputs.py so errors can name the entry
    mill_id: int
    mill_date: date
    chalan_no: str = Field(min_length=1, max_length=50)
    greigh_mtr: float
    pcs: int
    quality_id: Optional[int] = None
    process_name: Optional[str] = Field(None, max_length=100)
    additional_meters: List[AdditionalMeterIn] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("chalan_no", mode="before")
    @classmethod
    def _strip_chalan(cls, v):
        return v.strip() if isinstance(v, str) else v


class MillInputCreate(MillInputFields):
    order_id: int


class MillInputUpdate(MillInputFields):
    """PUT: every core field must be present again."""


class AdditionalMeterOut(APIBase):
    id: int
    position: int
    greigh_mtr: float
    pcs: int
    quality_id: Optional[int] = None
    quality: Optional[QualityBrief] = None
    process_name: Optional[str] = None
    notes: Optional[str] = None


class MillInputOut(APIBase):
    id: int
    order_id: int
    order_no: str
    mill_id: int
    mill: Optional[MillBrief] = None
    mill_date: date
    chalan_no: str
    greigh_mtr: float
    pcs: int
    quality_id: Optional[int] = None
    quality: Optional[QualityBrief] = None
    process_name: Optional[str] = None
    additional_meters: List[AdditionalMeterOut] = []
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class MillInputPage(BaseModel):
    items: List[MillInputOut]
    pagination: PageMeta


class MillOutputFields(BaseModel):
    recd_date: date
    mill_bill_no: str = Field(min_length=1, max_length=50)
    finished_mtr: float
    mill_rate: Optional[float] = None
    quality_id: Optional[int] = None


class MillOutputCreate(MillOutputFields):
    order_id: int


class MillOutputUpdate(MillOutputFields):
    pass


class MillOutputOut(APIBase):
    id: int
    order_id: int
    order_no: str
    recd_date: date
    mill_bill_no: str
    finished_mtr: float
    mill_rate: Optional[float] = None
    quality_id: Optional[int] = None
    quality: Optional[QualityBrief] = None
    created_at: Optional[datetime] = None


class MillOutputPage(BaseModel):
    items: List[MillOutputOut]
    pagination: PageMeta


class DispatchFields(BaseModel):
    # total_value is never read from the client
    dispatch_date: date
    bill_no: str = Field(min_length=1, max_length=50)
    finish_mtr: float
    sale_rate: Optional[float] = 0
    quality_id: Optional[int] = None


class DispatchCreate(DispatchFields):
    order_id: int


class DispatchUpdate(DispatchFields):
    pass


class DispatchOut(APIBase):
    id: int
    order_id: int
    order_no: str
    dispatch_date: date
    bill_no: str
    finish_mtr: float
    sale_rate: float
    total_value: float
    quality_id: Optional[int] = None
    quality: Optional[QualityBrief] = None
    created_at: Optional[datetime] = None


class DispatchPage(BaseModel):
    items: List[DispatchOut]
    pagination: PageMeta


# =========================================
# ================== Lab ==================
# =========================================
class LabSendData(BaseModel):
    color: Optional[str] = None
    shade: Optional[str] = None
    notes: Optional[str] = None
    sample_number: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    approval_date: Optional[date] = None
    specifications: Optional[str] = None


class LabCreate(BaseModel):
    order_id: int
    order_item_id: int
    lab_send_date: date
    lab_send_number: str = Field("", max_length=100)
    lab_send_data: LabSendData = Field(default_factory=LabSendData)
    remarks: Optional[str] = Field(None, max_length=500)


class LabUpdate(BaseModel):
    order_id: Optional[int] = None
    order_item_id: Optional[int] = None
    lab_send_date: Optional[date] = None
    lab_send_number: Optional[str] = Field(None, max_length=100)
    lab_send_data: Optional[LabSendData] = None
    status: Optional[Literal["sent", "received", "cancelled"]] = None
    received_date: Optional[date] = None
    remarks: Optional[str] = Field(None, max_length=500)


class LabSeedIn(BaseModel):
    lab_send_date: date
    prefix: str = Field("LAB-", max_length=50)
    start_index: int = Field(1, ge=1)
    override_existing: bool = False


class LabOut(APIBase):
    id: int
    order_id: int
    order_item_id: int
    lab_send_date: date
    lab_send_number: str
    lab_send_data: dict[str, Any] = {}
    status: str
    received_date: Optional[date] = None
    remarks: Optional[str] = None
    soft_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LabPage(BaseModel):
    items: List[LabOut]
    pagination: PageMeta


class LabSeedOrder(BaseModel):
    id: int
    order_no: str
    items_count: int


class LabSeedOut(BaseModel):
    message: str
    created_count: int
    skipped_count: int
    labs: List[LabOut]
    order: LabSeedOrder


# =========================================
# =============== Audit log ===============
# =========================================
class AuditLogOut(APIBase):
    id: int
    timestamp: datetime
    user_id: str
    username: str
    user_role: str
    action: str
    resource: str
    resource_id: Optional[str] = None
    details: dict[str, Any] = {}
    success: bool
    severity: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    duration_ms: Optional[int] = None


class AuditPagination(BaseModel):
    has_more: bool
    next_cursor: Optional[str] = None
    total: Optional[int] = None
    limit: int


class AuditLogPage(BaseModel):
    logs: List[AuditLogOut]
    pagination: AuditPagination


class CleanupOut(BaseModel):
    message: str
    deleted_count: int


class CountBucket(BaseModel):
    key: str
    count: int


class RecentLogOut(BaseModel):
    action: str
    resource: str
    username: str
    timestamp: datetime


class LogCountOut(BaseModel):
    total_count: int
    action_counts: List[CountBucket]
    resource_counts: List[CountBucket]
    recent_logs: List[RecentLogOut]


class PageVisitIn(BaseModel):
    pathname: str = Field("/dashboard", max_length=500)


class CounterResetOut(BaseModel):
    message: str
    previous_seq: int
