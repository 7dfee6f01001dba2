"""
Repair Worker - reconciles fiscal state with commercial state per order

Checks, in order, for every visible order:
1. receipt ids without a viewable URL -> resolve URL
2. same-day order paid, no settlement receipt -> full settlement receipt
3. deferred order paid, no prepayment receipt -> prepayment receipt
4. deferred order paid and service date reached -> offset receipt
5. agent order transferred + completed with both receipts -> capture once (marked
   on the order), then NPD receipt poll

Every creation goes through the invoice-id idempotency check, every write
through the ledger merge, so a rerun after a crash is safe.
"""
from typing import Any, Awaitable, Callable, Dict
import asyncio
import logging

from fiscal_engine.core.clock import Clock
from fiscal_engine.integrations.rocketwork import RocketWorkClient
from fiscal_engine.schemas.sale import (
    DEAD_ROOT_STATUSES,
    InvoiceKind,
    ReceiptUpdate,
    SaleOrder,
    StatusUpdate,
)
from fiscal_engine.services.lease_service import LeaderLease
from fiscal_engine.services.ledger_service import SaleLedger
from fiscal_engine.services.receipt_service import ReceiptService
from fiscal_engine.services.task_sync_service import PartyResolver, apply_task_status
from .base import PeriodicWorker

logger = logging.getLogger(__name__)


class RepairWorker(PeriodicWorker):
    NAME = "ofd_repair"

    def __init__(
        self,
        lease: LeaderLease,
        lease_ttl: float,
        ledger: SaleLedger,
        receipts: ReceiptService,
        parties: PartyResolver,
        rocketwork: RocketWorkClient,
        clock: Clock,
        offset_due_hour: int = 9,
        capture_poll_attempts: int = 5,
        capture_poll_backoff: float = 1.2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(lease, lease_ttl)
        self.ledger = ledger
        self.receipts = receipts
        self.parties = parties
        self.rocketwork = rocketwork
        self.clock = clock
        self.offset_due_hour = offset_due_hour
        self.capture_poll_attempts = capture_poll_attempts
        self.capture_poll_backoff = capture_poll_backoff
        self._sleep = sleep

    async def run_once(self) -> Dict[str, Any]:
        self.parties.reset()
        summary = {"orders": 0, "skipped": 0, "urls": 0, "receipts": 0, "captures": 0, "errors": 0}
        for organization_id in await self.ledger.list_organizations():
            for order in await self.ledger.list_orders(organization_id):
                summary["orders"] += 1
                try:
                    await self.repair_order(order, summary)
                except Exception as e:
                    summary["errors"] += 1
                    logger.error(f"[{self.NAME}] order #{order.order_id} (task {order.task_id}): {e}")
        return summary

    async def repair_order(self, order: SaleOrder, summary: Dict[str, int]) -> None:
        if order.hidden or (order.root_status or "") in DEAD_ROOT_STATUSES:
            summary["skipped"] += 1
            return

        order = await self._resolve_urls(order, summary)

        if order.is_paid:
            if order.invoice_full and not (order.full_receipt_id or order.full_receipt_url):
                order = await self._issue(order, InvoiceKind.FULL, summary)
            if order.invoice_prepay and not (order.prepay_receipt_id or order.prepay_receipt_url):
                order = await self._issue(order, InvoiceKind.PREPAY, summary)
            if (
                order.invoice_offset
                and self.offset_due(order)
                and not (order.full_receipt_id or order.full_receipt_url)
            ):
                order = await self._issue(order, InvoiceKind.OFFSET, summary)

        if self.capture_ready(order):
            await self._capture(order, summary)

    def offset_due(self, order: SaleOrder) -> bool:
        """Service date passed, or today at/after the due hour (business time)"""
        today = self.clock.today()
        if order.service_date is None or order.service_date < today:
            return True
        return order.service_date == today and self.clock.local_now().hour >= self.offset_due_hour

    @staticmethod
    def capture_ready(order: SaleOrder) -> bool:
        return (
            order.is_agent
            and order.is_transferred
            and order.root_status == "completed"
            and bool(order.full_receipt_url)
            and bool(order.commission_receipt_url)
            and not order.npd_receipt_uri
            and order.captured_at is None
        )

    # ========== Steps ==========

    async def _resolve_urls(self, order: SaleOrder, summary: Dict[str, int]) -> SaleOrder:
        update = ReceiptUpdate()
        if order.prepay_receipt_id and not order.prepay_receipt_url:
            update.prepay_receipt_url = await self.receipts.resolve_url(order.prepay_receipt_id)
        if order.full_receipt_id and not order.full_receipt_url:
            update.full_receipt_url = await self.receipts.resolve_url(order.full_receipt_id)
        if not (update.prepay_receipt_url or update.full_receipt_url):
            return order
        summary["urls"] += 1
        return await self.ledger.attach_receipt_urls(order.task_id, update) or order

    async def _issue(self, order: SaleOrder, kind: InvoiceKind, summary: Dict[str, int]) -> SaleOrder:
        party = await self.parties.for_order(order)
        if party is None:
            summary["skipped"] += 1
            return order
        party_kind, party_inn, party_name = party

        spec = self.receipts.build_for_order(order, kind, party_kind, party_inn, party_name)
        receipt_id = await self.receipts.ensure_receipt(spec)
        if kind == InvoiceKind.PREPAY:
            update = ReceiptUpdate(prepay_receipt_id=receipt_id)
        else:
            update = ReceiptUpdate(full_receipt_id=receipt_id)
        order = await self.ledger.attach_receipt_urls(order.task_id, update) or order
        summary["receipts"] += 1

        url = await self.receipts.resolve_url(receipt_id)
        if url:
            if kind == InvoiceKind.PREPAY:
                update = ReceiptUpdate(prepay_receipt_url=url)
            else:
                update = ReceiptUpdate(full_receipt_url=url)
            order = await self.ledger.attach_receipt_urls(order.task_id, update) or order
        return order

    async def _capture(self, order: SaleOrder, summary: Dict[str, int]) -> None:
        await self.rocketwork.trigger_capture(order.task_id)
        await self.ledger.update_status(order.task_id, StatusUpdate(captured=True))
        summary["captures"] += 1

        status = await self.rocketwork.get_task_status(order.task_id)
        await apply_task_status(self.ledger, order.task_id, status)
        if status.executor and status.executor.is_entrepreneur:
            return

        attempts = 0
        while not status.npd_receipt_uri and attempts < self.capture_poll_attempts:
            attempts += 1
            await self._sleep(self.capture_poll_backoff)
            status = await self.rocketwork.get_task_status(order.task_id)
            await apply_task_status(self.ledger, order.task_id, status)
        if status.npd_receipt_uri:
            logger.info(f"[{self.NAME}] order #{order.order_id}: NPD receipt {status.npd_receipt_uri}")
        else:
            logger.info(f"[{self.NAME}] order #{order.order_id}: NPD receipt not ready after capture")
