"""
Outbox Dispatcher - delivers side-effect intents recorded on orders

Intents are acknowledged through the ledger after delivery, so delivery is
at-least-once: a crash between deliver and ack repeats the intent.
"""
from typing import Any, Dict
import logging

from fiscal_engine.services.lease_service import LeaderLease
from fiscal_engine.services.ledger_service import SaleLedger
from fiscal_engine.services.outbox_service import Notifier
from .base import PeriodicWorker

logger = logging.getLogger(__name__)


class OutboxDispatcher(PeriodicWorker):
    NAME = "outbox"

    def __init__(self, lease: LeaderLease, lease_ttl: float, ledger: SaleLedger, notifier: Notifier):
        super().__init__(lease, lease_ttl)
        self.ledger = ledger
        self.notifier = notifier

    async def run_once(self) -> Dict[str, Any]:
        summary = {"orders": 0, "delivered": 0, "failed": 0}
        for organization_id in await self.ledger.list_organizations():
            for row in await self.ledger.list_by_organization(organization_id):
                if not row.pending_effects:
                    continue
                order = await self.ledger.get_by_task_id(row.task_id)
                if order is None or not order.pending_effects:
                    continue
                summary["orders"] += 1

                delivered = []
                for intent in order.pending_effects:
                    try:
                        await self.notifier.deliver(order, intent)
                    except Exception as e:
                        summary["failed"] += 1
                        logger.error(f"[{self.NAME}] intent {intent.id} for task {order.task_id}: {e}")
                        break
                    delivered.append(intent.id)

                if delivered:
                    await self.ledger.ack_effects(order.task_id, delivered)
                    summary["delivered"] += len(delivered)
        return summary
