"""
Schedule Worker - issues deferred offset receipts once they fall due

Per job: queued -> due -> attempting -> issued (removed) | kept for next tick.
Jobs of expired or canceled orders are dropped without a receipt.
Failures are retried every tick without backoff; due jobs are rare.
"""
from typing import Any, Dict
import logging

from fiscal_engine.core.clock import Clock
from fiscal_engine.schemas.sale import DEAD_ROOT_STATUSES, OffsetJob, ReceiptUpdate
from fiscal_engine.services.lease_service import LeaderLease
from fiscal_engine.services.ledger_service import SaleLedger
from fiscal_engine.services.offset_job_service import OffsetJobStore
from fiscal_engine.services.receipt_service import ReceiptService
from fiscal_engine.services.task_sync_service import PartyResolver
from .base import PeriodicWorker

logger = logging.getLogger(__name__)

ISSUED = "issued"
SETTLED = "settled"
DROPPED = "dropped"
KEPT = "kept"


class ScheduleWorker(PeriodicWorker):
    NAME = "ofd_schedule"

    def __init__(
        self,
        lease: LeaderLease,
        lease_ttl: float,
        jobs: OffsetJobStore,
        ledger: SaleLedger,
        receipts: ReceiptService,
        parties: PartyResolver,
        clock: Clock,
    ):
        super().__init__(lease, lease_ttl)
        self.jobs = jobs
        self.ledger = ledger
        self.receipts = receipts
        self.parties = parties
        self.clock = clock

    async def run_once(self) -> Dict[str, Any]:
        self.parties.reset()
        jobs = await self.jobs.load()
        now = self.clock.now()
        due = [job for job in jobs if job.due_at <= now]
        summary = {"jobs": len(jobs), "due": len(due), ISSUED: 0, SETTLED: 0, DROPPED: 0, KEPT: 0}

        done = []
        for job in due:
            try:
                outcome = await self.process_job(job)
            except Exception as e:
                logger.error(f"[{self.NAME}] job {job.id} failed, kept: {e}")
                outcome = KEPT
            summary[outcome] += 1
            if outcome != KEPT:
                done.append(job.id)

        if done:
            await self.jobs.remove(done)
        return summary

    async def process_job(self, job: OffsetJob) -> str:
        order = await self.ledger.get_by_order_id(job.order_id)
        if order is None:
            logger.info(f"[{self.NAME}] job {job.id}: order not found yet, kept")
            return KEPT
        if order.hidden or (order.root_status or "") in DEAD_ROOT_STATUSES:
            logger.info(
                f"[{self.NAME}] job {job.id}: order #{order.order_id} "
                f"({order.payment_status}/{order.root_status}) will not be settled, dropped"
            )
            return DROPPED
        if not order.invoice_offset:
            logger.info(f"[{self.NAME}] job {job.id}: order has no offset invoice, kept")
            return KEPT
        if order.full_receipt_id or order.full_receipt_url:
            logger.info(f"[{self.NAME}] job {job.id}: order #{order.order_id} already settled")
            return SETTLED

        party = await self.parties.for_job(job, order)
        if party is None:
            logger.info(f"[{self.NAME}] job {job.id}: {job.party} INN unresolved, kept")
            return KEPT
        _, party_inn, party_name = party

        spec = self.receipts.build_for_job(job, order.invoice_offset, party_inn, party_name)
        receipt_id = await self.receipts.ensure_receipt(spec)
        await self.ledger.attach_receipt_urls(order.task_id, ReceiptUpdate(full_receipt_id=receipt_id))
        return ISSUED
