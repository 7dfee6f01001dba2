"""
Refresh Worker - daily pull of task statuses from the payment gateway

Checked every minute; runs once per business day at/after the configured
wall time. The last run date is persisted so restarts and other instances
do not repeat the pass.
"""
from datetime import time
from typing import Any, Dict
import logging

from fiscal_engine.core.clock import Clock
from fiscal_engine.core.exceptions import GatewayError
from fiscal_engine.integrations.rocketwork import RocketWorkClient
from fiscal_engine.services.lease_service import LeaderLease
from fiscal_engine.services.ledger_service import SaleLedger, fingerprint
from fiscal_engine.services.task_sync_service import apply_task_status
from fiscal_engine.storage import BlobStore
from .base import PeriodicWorker

logger = logging.getLogger(__name__)


class RefreshWorker(PeriodicWorker):
    NAME = "sales_refresh"
    MARKER_KEY = "jobs/sales_refresh_last.json"

    def __init__(
        self,
        lease: LeaderLease,
        lease_ttl: float,
        ledger: SaleLedger,
        rocketwork: RocketWorkClient,
        store: BlobStore,
        clock: Clock,
        run_at: str = "12:05",
    ):
        super().__init__(lease, lease_ttl)
        self.ledger = ledger
        self.rocketwork = rocketwork
        self.store = store
        self.clock = clock
        hour, minute = run_at.split(":")
        self.run_at = time(int(hour), int(minute))

    async def is_due(self) -> bool:
        local_now = self.clock.local_now()
        if local_now.time() < self.run_at:
            return False
        marker = await self.store.get_json(self.MARKER_KEY) or {}
        return marker.get("date") != local_now.date().isoformat()

    async def run_once(self) -> Dict[str, Any]:
        if not await self.is_due():
            return {"due": False}

        summary = {"due": True, "orders": 0, "changed": 0, "errors": 0}
        for organization_id in await self.ledger.list_organizations():
            for order in await self.ledger.list_orders(organization_id):
                if order.hidden:
                    continue
                summary["orders"] += 1
                try:
                    status = await self.rocketwork.get_task_status(order.task_id)
                    updated = await apply_task_status(self.ledger, order.task_id, status)
                except GatewayError as e:
                    summary["errors"] += 1
                    logger.warning(f"[{self.NAME}] task {order.task_id}: {e}")
                    continue
                if updated and fingerprint(updated) != fingerprint(order):
                    summary["changed"] += 1

        await self.store.put_json(self.MARKER_KEY, {
            "date": self.clock.today().isoformat(),
            "finishedAt": self.clock.now().isoformat(),
        })
        return summary
