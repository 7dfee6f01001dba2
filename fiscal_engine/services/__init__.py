# Services Package
from .invoice_service import InvoiceAllocator
from .lease_service import LeaderLease, make_instance_id
from .legacy_ledger import LegacyLedger
from .ledger_service import SaleLedger, merge_update
from .offset_job_service import OffsetJobStore
from .order_service import OrderService
from .outbox_service import LogNotifier, Notifier
from .receipt_service import ReceiptService
from .task_sync_service import PartyResolver, apply_task_status

__all__ = [
    "InvoiceAllocator",
    "LeaderLease",
    "make_instance_id",
    "LegacyLedger",
    "SaleLedger",
    "merge_update",
    "OffsetJobStore",
    "OrderService",
    "Notifier",
    "LogNotifier",
    "ReceiptService",
    "PartyResolver",
    "apply_task_status",
]
