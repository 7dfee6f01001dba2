"""
Outbox Service - delivery targets for side-effect intents recorded on orders
"""
from abc import ABC, abstractmethod
import logging

from fiscal_engine.schemas.sale import EffectIntent, SaleOrder

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Receives each intent at least once"""

    @abstractmethod
    async def deliver(self, order: SaleOrder, intent: EffectIntent) -> None:
        pass


class LogNotifier(Notifier):

    async def deliver(self, order: SaleOrder, intent: EffectIntent) -> None:
        logger.info(
            f"[outbox] {intent.type} for order #{order.order_id} "
            f"(task {order.task_id}, {intent.receipt} receipt): {intent.url}"
        )
