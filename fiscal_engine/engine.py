"""
Fiscal Engine - wiring of stores, gateways, services and workers
"""
from dataclasses import dataclass
from typing import Optional
import logging

import httpx

from fiscal_engine.core.cache import LeaseCache, TTLCache
from fiscal_engine.core.clock import Clock
from fiscal_engine.core.config import Settings, get_settings
from fiscal_engine.integrations.ferma import FermaClient
from fiscal_engine.integrations.rocketwork import RocketWorkClient
from fiscal_engine.jobs.outbox_dispatcher import OutboxDispatcher
from fiscal_engine.jobs.refresh_worker import RefreshWorker
from fiscal_engine.jobs.repair_worker import RepairWorker
from fiscal_engine.jobs.schedule_worker import ScheduleWorker
from fiscal_engine.services.invoice_service import InvoiceAllocator
from fiscal_engine.services.lease_service import LeaderLease, make_instance_id
from fiscal_engine.services.ledger_service import SaleLedger
from fiscal_engine.services.legacy_ledger import LegacyLedger
from fiscal_engine.services.offset_job_service import OffsetJobStore
from fiscal_engine.services.order_service import OrderService
from fiscal_engine.services.outbox_service import LogNotifier, Notifier
from fiscal_engine.services.receipt_service import ReceiptService
from fiscal_engine.services.task_sync_service import PartyResolver
from fiscal_engine.storage import BlobStore, build_blob_store

logger = logging.getLogger(__name__)


@dataclass
class FiscalEngine:
    settings: Settings
    clock: Clock
    store: BlobStore
    lease: LeaderLease
    legacy: LegacyLedger
    ledger: SaleLedger
    allocator: InvoiceAllocator
    offset_jobs: OffsetJobStore
    orders: OrderService
    ferma: FermaClient
    rocketwork: RocketWorkClient
    receipts: ReceiptService
    parties: PartyResolver
    schedule_worker: ScheduleWorker
    repair_worker: RepairWorker
    refresh_worker: RefreshWorker
    outbox_dispatcher: OutboxDispatcher

    @property
    def workers(self):
        return [self.schedule_worker, self.repair_worker, self.refresh_worker, self.outbox_dispatcher]

    async def aclose(self) -> None:
        await self.ferma.aclose()
        await self.rocketwork.aclose()


def build_engine(
    settings: Optional[Settings] = None,
    store: Optional[BlobStore] = None,
    clock: Optional[Clock] = None,
    ferma_transport: Optional[httpx.AsyncBaseTransport] = None,
    rocketwork_transport: Optional[httpx.AsyncBaseTransport] = None,
    notifier: Optional[Notifier] = None,
    instance_id: Optional[str] = None,
) -> FiscalEngine:
    settings = settings or get_settings()
    clock = clock or Clock(settings.BUSINESS_TIMEZONE)
    store = store or build_blob_store(settings)
    if not instance_id:
        instance_id = f"{settings.INSTANCE_NAME}:{make_instance_id()}" if settings.INSTANCE_NAME else make_instance_id()

    lease = LeaderLease(store, clock, cache=LeaseCache(), instance_id=instance_id)
    legacy = LegacyLedger(
        store,
        clock,
        shrink_ratio=settings.SHRINK_GUARD_RATIO,
        shrink_min_delta=settings.SHRINK_GUARD_MIN_DELTA,
        backup_keep=settings.LEDGER_BACKUP_KEEP,
        wal_retention_hours=settings.WAL_RETENTION_HOURS,
    )
    ledger = SaleLedger(
        store,
        clock,
        legacy,
        hide_expired=settings.HIDE_EXPIRED_ORDERS,
        mirror_legacy=settings.LEGACY_MIRROR_ENABLED,
    )
    allocator = InvoiceAllocator(
        store,
        ledger,
        clock,
        prefix=settings.INVOICE_PREFIX,
        lock_ttl_seconds=settings.ORDER_LOCK_TTL_SECONDS,
        lock_wait_seconds=settings.ORDER_LOCK_WAIT_SECONDS,
        owner_id=instance_id,
    )
    offset_jobs = OffsetJobStore(store)
    orders = OrderService(ledger, allocator, offset_jobs, clock, offset_due_hour=settings.OFFSET_DUE_HOUR)

    ferma = FermaClient(
        settings.FERMA_BASE_URL,
        settings.FERMA_LOGIN,
        settings.FERMA_PASSWORD,
        token_cache=TTLCache(skew_seconds=settings.FERMA_TOKEN_SKEW_SECONDS),
        timeout=settings.FERMA_TIMEOUT_SECONDS,
        transport=ferma_transport,
    )
    rocketwork = RocketWorkClient(
        settings.ROCKETWORK_API_BASE_URL,
        settings.ROCKETWORK_API_TOKEN,
        timeout=settings.ROCKETWORK_TIMEOUT_SECONDS,
        transport=rocketwork_transport,
    )
    receipts = ReceiptService(
        ferma,
        settings.FERMA_CASHBOX_INN,
        callback_url=settings.FERMA_CALLBACK_URL or None,
        url_poll_attempts=settings.URL_POLL_ATTEMPTS,
        url_poll_backoff=settings.URL_POLL_BACKOFF_SECONDS,
        default_email=settings.DEFAULT_RECEIPT_EMAIL or None,
    )
    parties = PartyResolver(rocketwork)

    schedule_worker = ScheduleWorker(
        lease, settings.SCHEDULE_LEASE_TTL_SECONDS, offset_jobs, ledger, receipts, parties, clock,
    )
    repair_worker = RepairWorker(
        lease,
        settings.REPAIR_LEASE_TTL_SECONDS,
        ledger,
        receipts,
        PartyResolver(rocketwork),
        rocketwork,
        clock,
        offset_due_hour=settings.OFFSET_DUE_HOUR,
        capture_poll_attempts=settings.CAPTURE_POLL_ATTEMPTS,
        capture_poll_backoff=settings.CAPTURE_POLL_BACKOFF_SECONDS,
    )
    refresh_worker = RefreshWorker(
        lease,
        settings.REFRESH_LEASE_TTL_SECONDS,
        ledger,
        rocketwork,
        store,
        clock,
        run_at=settings.STATUS_REFRESH_AT,
    )
    outbox_dispatcher = OutboxDispatcher(
        lease, settings.OUTBOX_LEASE_TTL_SECONDS, ledger, notifier or LogNotifier(),
    )

    logger.info(f"Fiscal engine built ({store.BACKEND_NAME} storage, instance {instance_id})")
    return FiscalEngine(
        settings=settings,
        clock=clock,
        store=store,
        lease=lease,
        legacy=legacy,
        ledger=ledger,
        allocator=allocator,
        offset_jobs=offset_jobs,
        orders=orders,
        ferma=ferma,
        rocketwork=rocketwork,
        receipts=receipts,
        parties=parties,
        schedule_worker=schedule_worker,
        repair_worker=repair_worker,
        refresh_worker=refresh_worker,
        outbox_dispatcher=outbox_dispatcher,
    )
