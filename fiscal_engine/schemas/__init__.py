# Schemas Package
from .sale import (
    SaleOrder, SaleSummary, SaleUpdate, StatusUpdate, ReceiptUpdate, OutboxAck,
    EffectIntent, OrderCreate, OffsetJob, InvoiceKind, VatRate,
)
from .receipt import (
    AuthToken, CreatedReceipt, ReceiptStatus, ReceiptSpec, DocumentType, ReceiptParty,
)

__all__ = [
    "SaleOrder", "SaleSummary", "SaleUpdate", "StatusUpdate", "ReceiptUpdate", "OutboxAck",
    "EffectIntent", "OrderCreate", "OffsetJob", "InvoiceKind", "VatRate",
    "AuthToken", "CreatedReceipt", "ReceiptStatus", "ReceiptSpec", "DocumentType", "ReceiptParty",
]
