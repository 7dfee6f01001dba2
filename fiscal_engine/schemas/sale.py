"""
Sale Schemas - ledger records, update variants and offset jobs
"""
from pydantic import BaseModel, Field, field_validator
from typing import Annotated, List, Literal, Optional, Union
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from uuid import uuid4


# Task-root vocabulary (the gateway's task lifecycle)
ROOT_STATUSES = frozenset({
    "new", "draft", "pending_executor", "in_progress", "completed",
    "canceled", "cancelled", "error",
})
# Acquiring vocabulary (the payment itself)
PAYMENT_STATUSES = frozenset({
    "pending", "processing", "paid", "transferred", "transfered",
    "expired", "refunded", "declined",
})
PAID_STATUSES = frozenset({"paid", "transferred", "transfered"})
TRANSFERRED_STATUSES = frozenset({"transferred", "transfered"})
DEAD_ROOT_STATUSES = frozenset({"canceled", "cancelled", "error"})

UNKNOWN_ORGANIZATION = "unknown"
KOPECK = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(KOPECK, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def route_status(value: Optional[str]) -> Optional[str]:
    """Classify a gateway status value: 'root', 'payment' or None if unknown"""
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in ROOT_STATUSES:
        return "root"
    if normalized in PAYMENT_STATUSES:
        return "payment"
    return None


class InvoiceKind(str, Enum):
    PREPAY = "A"
    OFFSET = "B"
    FULL = "C"


class VatRate(str, Enum):
    NONE = "none"
    VAT0 = "0"
    VAT5 = "5"
    VAT7 = "7"
    VAT10 = "10"
    VAT20 = "20"


class EffectIntent(BaseModel):
    """Side effect recorded together with the ledger write that caused it"""
    id: str = Field(default_factory=lambda: uuid4().hex)
    type: str = "receipt_ready"
    receipt: str = ""
    url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class SaleSummary(BaseModel):
    """Row of the organization-scoped order listing"""
    task_id: str
    order_id: int
    organization_id: str
    payment_status: Optional[str] = None
    root_status: Optional[str] = None
    hidden: bool = False
    pending_effects: int = 0
    created_at: datetime
    updated_at: datetime


class SaleOrder(BaseModel):
    order_id: int
    task_id: str
    organization_id: str = UNKNOWN_ORGANIZATION
    organization_name: Optional[str] = None

    # Commercial snapshot
    buyer_email: Optional[str] = None
    description: str = "Payment for services"
    amount_gross: Decimal = Decimal("0")
    vat_rate: VatRate = VatRate.NONE
    is_agent: bool = False
    retained_commission: Decimal = Decimal("0")
    service_date: Optional[date] = None
    partner_inn: Optional[str] = None
    partner_name: Optional[str] = None

    # Gateway-reported state
    payment_status: Optional[str] = None
    root_status: Optional[str] = None
    paid_at: Optional[datetime] = None

    # Invoice identifiers, assigned once at creation
    invoice_prepay: Optional[str] = None
    invoice_offset: Optional[str] = None
    invoice_full: Optional[str] = None

    # Receipt results
    prepay_receipt_id: Optional[str] = None
    prepay_receipt_url: Optional[str] = None
    full_receipt_id: Optional[str] = None
    full_receipt_url: Optional[str] = None
    commission_receipt_url: Optional[str] = None
    acquiring_receipt_url: Optional[str] = None
    npd_receipt_uri: Optional[str] = None
    captured_at: Optional[datetime] = None

    hidden: bool = False
    pending_effects: List[EffectIntent] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("task_id", mode="before")
    @classmethod
    def _task_id_as_str(cls, value):
        return str(value)

    @property
    def is_paid(self) -> bool:
        return (self.payment_status or "") in PAID_STATUSES

    @property
    def is_transferred(self) -> bool:
        return (self.payment_status or "") in TRANSFERRED_STATUSES

    @property
    def net_amount(self) -> Decimal:
        """Amount the receipt is issued for: agent orders exclude the retained commission"""
        if self.is_agent:
            return max(Decimal("0"), money(self.amount_gross) - money(self.retained_commission))
        return money(self.amount_gross)

    def invoice_mode(self) -> Optional[str]:
        """'full' for same-day orders, 'deferred' for prepay+offset, None if inconsistent"""
        if self.invoice_full and not (self.invoice_prepay or self.invoice_offset):
            return "full"
        if self.invoice_prepay and self.invoice_offset and not self.invoice_full:
            return "deferred"
        return None

    def summary(self) -> SaleSummary:
        return SaleSummary(
            task_id=self.task_id,
            order_id=self.order_id,
            organization_id=self.organization_id,
            payment_status=self.payment_status,
            root_status=self.root_status,
            hidden=self.hidden,
            pending_effects=len(self.pending_effects),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


# ========== Update variants ==========

class StatusUpdate(BaseModel):
    """Gateway status observation; values are routed by vocabulary"""
    kind: Literal["status"] = "status"
    status: Optional[str] = None
    root_status: Optional[str] = None
    captured: bool = False


class ReceiptUpdate(BaseModel):
    """Receipt ids/URLs to attach; empty values never clear stored ones"""
    kind: Literal["receipt"] = "receipt"
    prepay_receipt_id: Optional[str] = None
    prepay_receipt_url: Optional[str] = None
    full_receipt_id: Optional[str] = None
    full_receipt_url: Optional[str] = None
    commission_receipt_url: Optional[str] = None
    acquiring_receipt_url: Optional[str] = None
    npd_receipt_uri: Optional[str] = None


class OutboxAck(BaseModel):
    """Delivered side-effect intents to drop from the order"""
    kind: Literal["outbox_ack"] = "outbox_ack"
    intent_ids: List[str] = []


SaleUpdate = Annotated[Union[StatusUpdate, ReceiptUpdate, OutboxAck], Field(discriminator="kind")]


# ========== Order placement ==========

class OrderCreate(BaseModel):
    task_id: str
    organization_id: str = UNKNOWN_ORGANIZATION
    organization_name: Optional[str] = None
    buyer_email: Optional[str] = None
    description: str = "Payment for services"
    amount_gross: Decimal = Field(..., gt=0)
    vat_rate: VatRate = VatRate.NONE
    is_agent: bool = False
    commission_type: Optional[Literal["percent", "fixed"]] = None
    commission_value: Optional[Decimal] = Field(None, ge=0)
    service_date: Optional[date] = None
    partner_inn: Optional[str] = None
    partner_name: Optional[str] = None

    @field_validator("task_id", mode="before")
    @classmethod
    def _task_id_as_str(cls, value):
        return str(value)


# ========== Offset jobs ==========

class OffsetJob(BaseModel):
    id: str
    organization_id: str
    order_id: int
    due_at: datetime
    party: Literal["partner", "org"]
    partner_inn: Optional[str] = None
    partner_name: Optional[str] = None
    description: str = "Payment for services"
    amount: Decimal
    vat_rate: VatRate = VatRate.NONE
    buyer_email: Optional[str] = None

    @staticmethod
    def make_id(organization_id: str, order_id: int) -> str:
        return f"{organization_id}:{order_id}"
