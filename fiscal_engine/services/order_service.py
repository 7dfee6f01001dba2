"""
Order Service - order placement and offset job derivation
"""
from decimal import Decimal
from typing import Optional
import logging

from fiscal_engine.core.clock import Clock
from fiscal_engine.core.exceptions import OrderIdConflict
from fiscal_engine.schemas.sale import (
    DEAD_ROOT_STATUSES,
    InvoiceKind,
    OffsetJob,
    OrderCreate,
    SaleOrder,
    money,
)
from .invoice_service import InvoiceAllocator
from .ledger_service import SaleLedger
from .offset_job_service import OffsetJobStore

logger = logging.getLogger(__name__)


def retained_commission(data: OrderCreate) -> Decimal:
    """Commission kept by the platform on agent orders, in rubles"""
    if not data.is_agent or not data.commission_type or data.commission_value is None:
        return Decimal("0")
    if data.commission_type == "percent":
        value = money(Decimal(data.amount_gross) * Decimal(data.commission_value) / Decimal(100))
    else:
        value = money(data.commission_value)
    return max(Decimal("0"), min(value, money(data.amount_gross)))


def offset_pending(order: SaleOrder) -> bool:
    """Deferred order that still needs its offset receipt"""
    return (
        bool(order.invoice_offset)
        and not order.hidden
        and not (order.full_receipt_id or order.full_receipt_url)
        and (order.root_status or "") not in DEAD_ROOT_STATUSES
    )


class OrderService:

    def __init__(
        self,
        ledger: SaleLedger,
        allocator: InvoiceAllocator,
        offset_jobs: OffsetJobStore,
        clock: Clock,
        offset_due_hour: int = 9,
    ):
        self.ledger = ledger
        self.allocator = allocator
        self.offset_jobs = offset_jobs
        self.clock = clock
        self.offset_due_hour = offset_due_hour

    async def place_order(self, data: OrderCreate) -> SaleOrder:
        """
        Allocate an order id and invoice ids, persist, and queue the offset job
        for deferred orders. Repeated calls for one task return the same order.
        """
        existing = await self.ledger.get_by_task_id(data.task_id)
        if existing:
            # A crash between create and enqueue leaves the job missing
            if offset_pending(existing):
                await self.offset_jobs.enqueue(self.build_offset_job(existing))
            return existing

        saved: Optional[SaleOrder] = None
        for attempt in range(2):
            order_id = await self.allocator.next_order_id()
            try:
                saved = await self.ledger.create_order(self.build_order(data, order_id))
                break
            except OrderIdConflict as e:
                if attempt:
                    raise
                logger.warning(f"{e}; allocating again")

        if saved.invoice_offset:
            await self.offset_jobs.enqueue(self.build_offset_job(saved))
        return saved

    def build_order(self, data: OrderCreate, order_id: int) -> SaleOrder:
        today = self.clock.today()
        deferred = data.service_date is not None and data.service_date > today
        invoice_id = self.allocator.invoice_id

        return SaleOrder(
            order_id=order_id,
            task_id=data.task_id,
            organization_id=data.organization_id,
            organization_name=data.organization_name,
            buyer_email=data.buyer_email,
            description=data.description,
            amount_gross=money(data.amount_gross),
            vat_rate=data.vat_rate,
            is_agent=data.is_agent,
            retained_commission=retained_commission(data),
            service_date=data.service_date,
            partner_inn=data.partner_inn,
            partner_name=data.partner_name,
            invoice_prepay=invoice_id(order_id, InvoiceKind.PREPAY) if deferred else None,
            invoice_offset=invoice_id(order_id, InvoiceKind.OFFSET) if deferred else None,
            invoice_full=None if deferred else invoice_id(order_id, InvoiceKind.FULL),
        )

    def build_offset_job(self, order: SaleOrder) -> OffsetJob:
        service_date = order.service_date or self.clock.today()
        return OffsetJob(
            id=OffsetJob.make_id(order.organization_id, order.order_id),
            organization_id=order.organization_id,
            order_id=order.order_id,
            due_at=self.clock.local_datetime(service_date, self.offset_due_hour),
            party="partner" if order.is_agent else "org",
            partner_inn=order.partner_inn,
            partner_name=order.partner_name,
            description=order.description,
            amount=order.net_amount,
            vat_rate=order.vat_rate,
            buyer_email=order.buyer_email,
        )

    async def rebuild_offset_jobs(self) -> dict:
        """Re-derive offset jobs for deferred orders still lacking a settlement receipt"""
        stats = {"checked": 0, "queued": 0}
        for order in await self.ledger.list_all():
            if not offset_pending(order):
                continue
            stats["checked"] += 1
            if await self.offset_jobs.enqueue(self.build_offset_job(order)):
                stats["queued"] += 1
        logger.info(f"Offset jobs rebuilt: {stats}")
        return stats
