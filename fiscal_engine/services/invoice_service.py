"""
Invoice Service - order id allocation and invoice number formatting
"""
from typing import Optional, Tuple
from uuid import uuid4
import asyncio
import logging
import random
import time

from fiscal_engine.core.clock import Clock
from fiscal_engine.schemas.sale import InvoiceKind
from fiscal_engine.storage import BlobStore

logger = logging.getLogger(__name__)


class InvoiceAllocator:
    """
    Allocates monotonic order ids from a persisted counter.

    Concurrency is handled by a cooperative lock with TTL. If the lock cannot
    be taken before the wait deadline the allocation proceeds anyway: a
    duplicate candidate is caught by the ledger's order-id claim.
    """
    COUNTER_KEY = "counters/order.json"
    LOCK_KEY = "locks/order_counter.lock"

    def __init__(
        self,
        store: BlobStore,
        ledger,
        clock: Clock,
        prefix: str = "INV",
        lock_ttl_seconds: float = 5.0,
        lock_wait_seconds: float = 3.0,
        owner_id: Optional[str] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.prefix = prefix
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lock_wait_seconds = lock_wait_seconds
        self.owner_id = owner_id or uuid4().hex[:8]

    def invoice_id(self, order_id: int, kind: InvoiceKind) -> str:
        """Deterministic invoice number: PREFIX-KIND-ORDERID"""
        return f"{self.prefix}-{InvoiceKind(kind).value}-{int(order_id)}"

    async def next_order_id(self) -> int:
        token = await self._acquire_lock()
        try:
            counter = await self.store.get_json(self.COUNTER_KEY, default={}) or {}
            candidate = int(counter.get("lastOrderId", 0)) + 1
            # A crash may have used an id without bumping the counter
            while await self.ledger.has_order_id(candidate):
                logger.warning(f"Order id {candidate} already in use, skipping forward")
                candidate += 1
            await self.store.put_json(self.COUNTER_KEY, {
                "lastOrderId": candidate,
                "updatedAt": self.clock.now().isoformat(),
            })
            return candidate
        finally:
            if token:
                await self._release_lock(token)

    # ========== Cooperative lock ==========

    async def _acquire_lock(self) -> Optional[str]:
        token = f"{self.owner_id}:{uuid4().hex[:8]}"
        deadline = time.monotonic() + self.lock_wait_seconds
        while True:
            now_ms = self.clock.timestamp_ms()
            current = await self.store.get_json(self.LOCK_KEY)
            if not current or int(current.get("expiresAt", 0)) <= now_ms:
                await self.store.put_json(self.LOCK_KEY, {
                    "owner": token,
                    "expiresAt": now_ms + int(self.lock_ttl_seconds * 1000),
                })
                await asyncio.sleep(random.uniform(0.005, 0.02))
                observed = await self.store.get_json(self.LOCK_KEY)
                if observed and observed.get("owner") == token:
                    return token
            if time.monotonic() >= deadline:
                logger.warning(
                    f"Order counter lock not acquired within {self.lock_wait_seconds}s, proceeding without it"
                )
                return None
            await asyncio.sleep(random.uniform(0.01, 0.05))

    async def _release_lock(self, token: str) -> None:
        current = await self.store.get_json(self.LOCK_KEY)
        if current and current.get("owner") == token:
            await self.store.delete(self.LOCK_KEY)


def parse_invoice_id(invoice_id: str) -> Optional[Tuple[InvoiceKind, int]]:
    """Inverse of InvoiceAllocator.invoice_id; None for foreign formats"""
    parts = str(invoice_id or "").rsplit("-", 2)
    if len(parts) != 3 or not parts[2].isdigit():
        return None
    try:
        return InvoiceKind(parts[1]), int(parts[2])
    except ValueError:
        return None
