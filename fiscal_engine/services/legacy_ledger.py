"""
Legacy Ledger Service - the monolithic sales file kept for backward compatibility

Every overwrite of the legacy file goes through a safety net:
1. previous version copied to sales/backups/ (last N kept)
2. new content written to sales/wal/ before the authoritative write (pruned by age)
3. shrink guard: a write that drops too many records is refused and a
   diagnostic marker is left under sales/diagnostics/
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4
import json
import logging

from pydantic import ValidationError

from fiscal_engine.core.clock import Clock
from fiscal_engine.core.exceptions import LedgerShrinkBlocked
from fiscal_engine.schemas.sale import SaleOrder
from fiscal_engine.storage import BlobStore, dump_json

logger = logging.getLogger(__name__)

STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


class LegacyLedger:
    LEDGER_KEY = "sales/tasks.json"
    BACKUP_PREFIX = "sales/backups/"
    WAL_PREFIX = "sales/wal/"
    DIAGNOSTICS_PREFIX = "sales/diagnostics/"

    def __init__(
        self,
        store: BlobStore,
        clock: Clock,
        shrink_ratio: float = 0.75,
        shrink_min_delta: int = 3,
        backup_keep: int = 20,
        wal_retention_hours: int = 72,
    ):
        self.store = store
        self.clock = clock
        self.shrink_ratio = shrink_ratio
        self.shrink_min_delta = shrink_min_delta
        self.backup_keep = backup_keep
        self.wal_retention_hours = wal_retention_hours

    # ========== Read ==========

    async def read_all(self) -> List[SaleOrder]:
        data = await self.store.get_json(self.LEDGER_KEY, default={})
        orders = []
        for raw in _records(data):
            try:
                orders.append(SaleOrder.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable legacy record {raw.get('task_id')}: {e.error_count()} errors")
        return orders

    async def find_by_task_id(self, task_id: str) -> Optional[SaleOrder]:
        for order in await self.read_all():
            if order.task_id == str(task_id):
                return order
        return None

    async def find_by_order_id(self, order_id: int) -> Optional[SaleOrder]:
        for order in await self.read_all():
            if order.order_id == order_id:
                return order
        return None

    # ========== Write ==========

    def is_blocked_shrink(self, previous_count: int, next_count: int) -> bool:
        """True when the new count is below ratio*previous AND lost more than min_delta records"""
        if previous_count <= 0:
            return False
        dropped = previous_count - next_count
        return next_count < previous_count * self.shrink_ratio and dropped > self.shrink_min_delta

    async def write_all(self, orders: List[SaleOrder], allow_shrink: bool = False) -> None:
        previous_raw = await self.store.get(self.LEDGER_KEY)
        previous_count = _count_records(previous_raw)
        next_count = len(orders)

        if not allow_shrink and self.is_blocked_shrink(previous_count, next_count):
            marker_key = await self._write_diagnostic(previous_count, next_count)
            logger.error(
                f"Legacy ledger write blocked: {previous_count} -> {next_count} records "
                f"(diagnostic at {marker_key})"
            )
            raise LedgerShrinkBlocked(previous_count, next_count, marker_key)

        body = dump_json({"sales": [o.model_dump(mode="json") for o in orders]})
        stamp = self._stamp()
        if previous_raw:
            await self.store.put(f"{self.BACKUP_PREFIX}tasks_{stamp}.json", previous_raw)
        await self.store.put(f"{self.WAL_PREFIX}tasks_{stamp}.json", body)
        await self.store.put(self.LEDGER_KEY, body)

        if allow_shrink and next_count < previous_count:
            logger.warning(f"Legacy ledger shrink forced: {previous_count} -> {next_count} records")
        await self._prune_backups()
        await self._prune_wal()

    async def upsert(self, order: SaleOrder) -> None:
        """Replace the record with the same task id, or append it"""
        orders = await self.read_all()
        replaced = False
        for i, existing in enumerate(orders):
            if existing.task_id == order.task_id:
                if _same(existing, order):
                    return
                orders[i] = order
                replaced = True
                break
        if not replaced:
            orders.append(order)
        await self.write_all(orders)

    # ========== Housekeeping ==========

    def _stamp(self) -> str:
        return f"{self.clock.now().strftime(STAMP_FORMAT)}_{uuid4().hex[:6]}"

    async def _write_diagnostic(self, previous_count: int, next_count: int) -> str:
        key = f"{self.DIAGNOSTICS_PREFIX}shrink_blocked_{self._stamp()}.json"
        await self.store.put_json(key, {
            "condition": "ledger_shrink",
            "detectedAt": self.clock.now().isoformat(),
            "ledgerKey": self.LEDGER_KEY,
            "previousCount": previous_count,
            "nextCount": next_count,
            "ratio": self.shrink_ratio,
            "minDelta": self.shrink_min_delta,
        })
        return key

    async def list_diagnostics(self) -> List[str]:
        return await self.store.list(self.DIAGNOSTICS_PREFIX)

    async def list_backups(self) -> List[str]:
        return await self.store.list(self.BACKUP_PREFIX)

    async def _prune_backups(self) -> None:
        backups = await self.store.list(self.BACKUP_PREFIX)
        for key in backups[:-self.backup_keep] if self.backup_keep > 0 else backups:
            await self.store.delete(key)

    async def _prune_wal(self) -> None:
        cutoff = self.clock.now() - timedelta(hours=self.wal_retention_hours)
        for key in await self.store.list(self.WAL_PREFIX):
            written_at = _stamp_time(key)
            if written_at and written_at < cutoff:
                await self.store.delete(key)


def _records(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("sales")
    if not isinstance(data, list):
        return []
    return [r for r in data if isinstance(r, dict)]


def _count_records(raw: Optional[bytes]) -> int:
    if not raw:
        return 0
    try:
        return len(_records(json.loads(raw.decode("utf-8"))))
    except (ValueError, UnicodeDecodeError):
        return 0


def _stamp_time(key: str) -> Optional[datetime]:
    name = key.rsplit("/", 1)[-1]
    try:
        stamp = name.split("_")[1]
        return datetime.strptime(stamp, STAMP_FORMAT).replace(tzinfo=timezone.utc)
    except (IndexError, ValueError):
        return None


def _same(a: SaleOrder, b: SaleOrder) -> bool:
    return a.model_dump(mode="json") == b.model_dump(mode="json")
