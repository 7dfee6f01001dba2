"""
Task Sync Service - bridge from payment gateway task state to the ledger
"""
from typing import Dict, Optional, Tuple
import logging

from fiscal_engine.core.exceptions import GatewayError
from fiscal_engine.integrations.rocketwork import RocketWorkClient, TaskStatus
from fiscal_engine.schemas.receipt import ReceiptParty
from fiscal_engine.schemas.sale import (
    OffsetJob,
    ReceiptUpdate,
    SaleOrder,
    StatusUpdate,
    UNKNOWN_ORGANIZATION,
)
from .ledger_service import SaleLedger

logger = logging.getLogger(__name__)

Party = Tuple[ReceiptParty, str, Optional[str]]


async def apply_task_status(ledger: SaleLedger, task_id: str, status: TaskStatus) -> Optional[SaleOrder]:
    """Feed a gateway task snapshot through the status and receipt merges"""
    await ledger.update_status(
        task_id,
        StatusUpdate(status=status.acquiring_status, root_status=status.root_status),
    )
    return await ledger.attach_receipt_urls(
        task_id,
        ReceiptUpdate(
            acquiring_receipt_url=status.receipt_url,
            commission_receipt_url=status.commission_receipt_url,
            npd_receipt_uri=status.npd_receipt_uri,
        ),
    )


class PartyResolver:
    """
    Decides on whose behalf a receipt is issued. Gateway lookups are cached
    until reset(), which workers call at the start of every tick.
    """

    def __init__(self, rocketwork: RocketWorkClient):
        self.rocketwork = rocketwork
        self._tasks: Dict[str, TaskStatus] = {}

    def reset(self) -> None:
        self._tasks.clear()

    async def task_status(self, task_id: str) -> TaskStatus:
        if task_id not in self._tasks:
            self._tasks[task_id] = await self.rocketwork.get_task_status(task_id)
        return self._tasks[task_id]

    async def for_order(self, order: SaleOrder) -> Optional[Party]:
        """None when the party's tax id cannot be resolved yet"""
        if order.is_agent:
            inn, name = await self._partner(order.task_id, order.partner_inn, order.partner_name)
            if not inn:
                logger.info(f"Order #{order.order_id}: partner INN unresolved, skipping")
                return None
            return ReceiptParty.PARTNER, inn, name
        if not order.organization_id or order.organization_id == UNKNOWN_ORGANIZATION:
            logger.info(f"Order #{order.order_id}: organization unknown, skipping")
            return None
        return ReceiptParty.ORG, order.organization_id, order.organization_name

    async def for_job(self, job: OffsetJob, order: SaleOrder) -> Optional[Party]:
        if job.party == "partner":
            inn, name = await self._partner(
                order.task_id,
                job.partner_inn or order.partner_inn,
                job.partner_name or order.partner_name,
            )
            if not inn:
                return None
            return ReceiptParty.PARTNER, inn, name
        organization_id = job.organization_id or order.organization_id
        if not organization_id or organization_id == UNKNOWN_ORGANIZATION:
            return None
        return ReceiptParty.ORG, organization_id, order.organization_name

    async def _partner(self, task_id: str, inn: Optional[str], name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        if inn and name:
            return inn, name
        try:
            status = await self.task_status(task_id)
        except GatewayError as e:
            logger.warning(f"Executor lookup for task {task_id} failed: {e}")
            return inn, name
        executor = status.executor
        if executor:
            inn = inn or executor.inn
            name = name or executor.full_name
        return inn, name
