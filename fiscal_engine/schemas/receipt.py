"""
Receipt Schemas - fiscal gateway results
"""
from dataclasses import dataclass
from typing import Optional
from enum import Enum


class DocumentType(str, Enum):
    INCOME = "Income"
    INCOME_PREPAYMENT = "IncomePrepayment"


class ReceiptParty(str, Enum):
    PARTNER = "partner"
    ORG = "org"


# Settlement method codes: 1 = 100% prepayment, 4 = full settlement
PAYMENT_METHOD_PREPAY_FULL = 1
PAYMENT_METHOD_FULL_PAYMENT = 4

# PaymentItems type: 1 = prepayment marker, 2 = offset of a prior advance
PAYMENT_ITEM_PREPAYMENT = 1
PAYMENT_ITEM_ADVANCE_OFFSET = 2


@dataclass
class AuthToken:
    token: str
    expires_at: float  # epoch seconds


@dataclass
class CreatedReceipt:
    id: Optional[str]
    status: Optional[str] = None
    duplicate: bool = False


@dataclass
class ReceiptStatus:
    receipt_id: Optional[str]
    status_code: Optional[int] = None
    status_name: Optional[str] = None
    fn: Optional[str] = None
    fd: Optional[str] = None
    fp: Optional[str] = None
    direct_url: Optional[str] = None

    @property
    def is_signed(self) -> bool:
        return bool(self.direct_url) or bool(self.fn and self.fd and self.fp)


@dataclass
class ReceiptSpec:
    """Everything needed to request one receipt from the gateway"""
    invoice_id: str
    party: ReceiptParty
    party_inn: str
    party_name: Optional[str]
    description: str
    amount: float
    vat_rate: str
    method_code: int
    doc_type: DocumentType
    order_id: int
    buyer_email: Optional[str] = None
    payment_item_type: Optional[int] = None
