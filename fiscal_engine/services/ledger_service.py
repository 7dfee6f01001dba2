"""
Sale Ledger Service - sharded per-organization order store

Layout:
    sales/orgs/{org}/{task}.json        order record (primary)
    sales/index/by_org/{org}.json       order summaries, newest first
    sales/index/by_task/{task}.json     task -> organization
    sales/index/by_order/{orderId}.json order id -> organization + task

Updates are read-merge-write. When the merged record equals the stored one
nothing is written, indices included.
"""
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import json
import logging

from pydantic import ValidationError

from fiscal_engine.core.clock import Clock
from fiscal_engine.core.exceptions import FiscalEngineError, InvariantViolation, OrderIdConflict
from fiscal_engine.schemas.sale import (
    EffectIntent,
    OutboxAck,
    ReceiptUpdate,
    SaleOrder,
    SaleSummary,
    SaleUpdate,
    StatusUpdate,
    PAID_STATUSES,
    route_status,
)
from fiscal_engine.storage import BlobStore, safe_segment
from .legacy_ledger import LegacyLedger

logger = logging.getLogger(__name__)

RECEIPT_FIELDS = (
    "prepay_receipt_id",
    "prepay_receipt_url",
    "full_receipt_id",
    "full_receipt_url",
    "commission_receipt_url",
    "acquiring_receipt_url",
    "npd_receipt_uri",
)

# URL fields whose first appearance produces a receipt_ready intent
READY_URL_FIELDS = {
    "prepay_receipt_url": "prepay",
    "full_receipt_url": "full",
}


def order_key(organization_id: str, task_id: str) -> str:
    return f"sales/orgs/{safe_segment(organization_id)}/{safe_segment(task_id)}.json"


def org_index_key(organization_id: str) -> str:
    return f"sales/index/by_org/{safe_segment(organization_id)}.json"


def task_index_key(task_id: str) -> str:
    return f"sales/index/by_task/{safe_segment(task_id)}.json"


def order_index_key(order_id: int) -> str:
    return f"sales/index/by_order/{int(order_id)}.json"


def fingerprint(order: SaleOrder) -> str:
    return json.dumps(order.model_dump(mode="json", exclude={"updated_at"}), sort_keys=True)


# ========== Merge ==========

def merge_update(order: SaleOrder, update: SaleUpdate, now, hide_expired: bool = True) -> SaleOrder:
    """Pure merge of one update variant into a copy of `order`"""
    merged = order.model_copy(deep=True)

    if isinstance(update, StatusUpdate):
        _merge_status(merged, update, now, hide_expired)
    elif isinstance(update, ReceiptUpdate):
        _merge_receipts(merged, update, now)
    elif isinstance(update, OutboxAck):
        acked = set(update.intent_ids)
        merged.pending_effects = [e for e in merged.pending_effects if e.id not in acked]
    else:
        raise TypeError(f"Unsupported ledger update: {type(update).__name__}")
    return merged


def _merge_status(order: SaleOrder, update: StatusUpdate, now, hide_expired: bool) -> None:
    for value, slot in ((update.status, "status"), (update.root_status, "root_status")):
        if not value:
            continue
        normalized = value.strip().lower()
        route = route_status(normalized)
        if route == "root":
            order.root_status = normalized
        elif route == "payment" and slot == "status":
            order.payment_status = normalized
            if normalized in PAID_STATUSES and order.paid_at is None:
                order.paid_at = now
            if normalized == "expired" and hide_expired:
                order.hidden = True
        else:
            logger.info(f"Ignoring status '{value}' ({slot}) for task {order.task_id}")
    if update.captured and order.captured_at is None:
        order.captured_at = now


def _merge_receipts(order: SaleOrder, update: ReceiptUpdate, now) -> None:
    for field in RECEIPT_FIELDS:
        value = getattr(update, field)
        if not value or getattr(order, field) == value:
            continue
        first_time = getattr(order, field) is None
        setattr(order, field, value)
        if first_time and field in READY_URL_FIELDS:
            order.pending_effects.append(
                EffectIntent(receipt=READY_URL_FIELDS[field], url=value, created_at=now)
            )


class SaleLedger:
    """
    Primary order store. Every mutation is its own atomic unit per order;
    concurrent writers interleave safely because merges are idempotent.
    """

    def __init__(
        self,
        store: BlobStore,
        clock: Clock,
        legacy: LegacyLedger,
        hide_expired: bool = True,
        mirror_legacy: bool = False,
    ):
        self.store = store
        self.clock = clock
        self.legacy = legacy
        self.hide_expired = hide_expired
        self.mirror_legacy = mirror_legacy

    # ========== Create ==========

    async def create_order(self, order: SaleOrder) -> SaleOrder:
        """
        Persist a new order. Idempotent per task id: an existing order for the
        same task is returned unchanged.
        """
        if order.invoice_mode() is None:
            raise InvariantViolation(
                f"order {order.order_id}: exactly one of invoice_full or "
                f"invoice_prepay+invoice_offset must be set"
            )

        existing = await self.get_by_task_id(order.task_id)
        if existing:
            logger.info(f"Order for task {order.task_id} already exists as #{existing.order_id}")
            return existing

        claim = await self.store.get_json(order_index_key(order.order_id))
        if claim and str(claim.get("taskId")) != order.task_id:
            raise OrderIdConflict(order.order_id, str(claim.get("taskId")))

        now = self.clock.now()
        order = order.model_copy(update={"created_at": now, "updated_at": now})

        # The order id claim goes first so a crash cannot leave an order that
        # the allocator does not see
        await self.store.put_json(order_index_key(order.order_id), {
            "organizationId": order.organization_id,
            "taskId": order.task_id,
        })
        await self._write_order(order)
        await self._write_task_index(order)
        await self._upsert_summary(order)
        await self._mirror(order)
        logger.info(
            f"Order #{order.order_id} created for task {order.task_id} "
            f"(org {order.organization_id}, mode {order.invoice_mode()})"
        )
        return order

    # ========== Update ==========

    async def apply_update(self, task_id: str, update: SaleUpdate) -> Optional[SaleOrder]:
        """Read, merge, and write only when something changed"""
        current, sharded = await self._load(str(task_id))
        if current is None:
            logger.warning(f"Update for unknown task {task_id} ignored")
            return None

        merged = merge_update(current, update, self.clock.now(), self.hide_expired)
        if sharded and fingerprint(merged) == fingerprint(current):
            return current

        merged.updated_at = self.clock.now()
        await self._write_order(merged)
        if not sharded:
            await self.store.put_json(order_index_key(merged.order_id), {
                "organizationId": merged.organization_id,
                "taskId": merged.task_id,
            })
            await self._write_task_index(merged)
        await self._upsert_summary(merged)
        await self._mirror(merged)
        return merged

    async def update_status(self, task_id: str, update: StatusUpdate) -> Optional[SaleOrder]:
        return await self.apply_update(task_id, update)

    async def attach_receipt_urls(self, task_id: str, update: ReceiptUpdate) -> Optional[SaleOrder]:
        return await self.apply_update(task_id, update)

    async def ack_effects(self, task_id: str, intent_ids: Iterable[str]) -> Optional[SaleOrder]:
        return await self.apply_update(task_id, OutboxAck(intent_ids=list(intent_ids)))

    # ========== Read ==========

    async def get_by_task_id(self, task_id: str) -> Optional[SaleOrder]:
        order, _ = await self._load(str(task_id))
        return order

    async def get_by_order_id(self, order_id: int) -> Optional[SaleOrder]:
        claim = await self.store.get_json(order_index_key(order_id))
        if claim:
            order = await self._read_order(claim.get("organizationId"), str(claim.get("taskId")))
            if order:
                return order
        return await self.legacy.find_by_order_id(order_id)

    async def has_order_id(self, order_id: int) -> bool:
        if await self.store.get(order_index_key(order_id)) is not None:
            return True
        return await self.legacy.find_by_order_id(order_id) is not None

    async def list_organizations(self) -> List[str]:
        keys = await self.store.list("sales/orgs/")
        orgs: Set[str] = set()
        for key in keys:
            parts = key.split("/")
            if len(parts) == 4 and parts[3].endswith(".json"):
                orgs.add(parts[2])
        return sorted(orgs)

    async def list_by_organization(self, organization_id: str) -> List[SaleSummary]:
        data = await self.store.get_json(org_index_key(organization_id))
        if data is None:
            orders = await self.list_orders(organization_id)
            if not orders:
                return []
            logger.info(f"Rebuilding order index for org {organization_id}")
            rows = [o.summary() for o in orders]
            await self._write_summaries(organization_id, rows)
            return _sorted(rows)
        rows = []
        for raw in data.get("orders", []):
            try:
                rows.append(SaleSummary.model_validate(raw))
            except ValidationError:
                logger.warning(f"Skipping unreadable summary in org index {organization_id}")
        return _sorted(rows)

    async def list_orders(self, organization_id: str) -> List[SaleOrder]:
        prefix = f"sales/orgs/{safe_segment(organization_id)}/"
        orders = []
        for key in await self.store.list(prefix):
            order = await self._read_key(key)
            if order:
                orders.append(order)
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def list_all(self) -> List[SaleOrder]:
        orders: List[SaleOrder] = []
        for organization_id in await self.list_organizations():
            orders.extend(await self.list_orders(organization_id))
        return orders

    # ========== Migration ==========

    MIGRATION_MARKER_KEY = "sales/migration/legacy_to_sharded.json"

    async def migrate_legacy(self, force: bool = False) -> Dict[str, Any]:
        """
        Copy every legacy record into the sharded layout. Already migrated
        orders are never overwritten; re-runs are no-ops unless forced.
        """
        marker = await self.store.get_json(self.MIGRATION_MARKER_KEY)
        if marker and not force:
            return {"skipped": True, "completedAt": marker.get("completedAt")}

        stats = {"migrated": 0, "existing": 0, "conflicts": 0, "total": 0}
        for order in await self.legacy.read_all():
            stats["total"] += 1
            if await self.store.get(task_index_key(order.task_id)) is not None:
                stats["existing"] += 1
                continue
            claim = await self.store.get_json(order_index_key(order.order_id))
            if claim and str(claim.get("taskId")) != order.task_id:
                logger.warning(
                    f"Legacy order #{order.order_id} (task {order.task_id}) conflicts with "
                    f"task {claim.get('taskId')}; left in legacy file"
                )
                stats["conflicts"] += 1
                continue
            await self.store.put_json(order_index_key(order.order_id), {
                "organizationId": order.organization_id,
                "taskId": order.task_id,
            })
            await self._write_order(order)
            await self._write_task_index(order)
            await self._upsert_summary(order)
            stats["migrated"] += 1

        await self.store.put_json(self.MIGRATION_MARKER_KEY, {
            "completedAt": self.clock.now().isoformat(),
            **stats,
        })
        logger.info(f"Legacy migration finished: {stats}")
        return stats

    # ========== Internals ==========

    async def _load(self, task_id: str) -> Tuple[Optional[SaleOrder], bool]:
        index = await self.store.get_json(task_index_key(task_id))
        if index:
            order = await self._read_order(index.get("organizationId"), task_id)
            if order:
                return order, True
        legacy = await self.legacy.find_by_task_id(task_id)
        return legacy, False

    async def _read_order(self, organization_id: Optional[str], task_id: str) -> Optional[SaleOrder]:
        if not organization_id:
            return None
        return await self._read_key(order_key(organization_id, task_id))

    async def _read_key(self, key: str) -> Optional[SaleOrder]:
        raw = await self.store.get_json(key)
        if not raw:
            return None
        try:
            return SaleOrder.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Unreadable order record {key}: {e.error_count()} errors")
            return None

    async def _write_order(self, order: SaleOrder) -> None:
        await self.store.put_json(order_key(order.organization_id, order.task_id), order.model_dump(mode="json"))

    async def _write_task_index(self, order: SaleOrder) -> None:
        key = task_index_key(order.task_id)
        value = {"organizationId": order.organization_id, "orderId": order.order_id}
        if await self.store.get_json(key) != value:
            await self.store.put_json(key, value)

    async def _upsert_summary(self, order: SaleOrder) -> None:
        data = await self.store.get_json(org_index_key(order.organization_id)) or {}
        rows = [r for r in data.get("orders", []) if r.get("task_id") != order.task_id]
        rows.append(order.summary().model_dump(mode="json"))
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        next_data = {"organizationId": order.organization_id, "orders": rows}
        if next_data != data:
            await self.store.put_json(org_index_key(order.organization_id), next_data)

    async def _write_summaries(self, organization_id: str, rows: List[SaleSummary]) -> None:
        await self.store.put_json(org_index_key(organization_id), {
            "organizationId": organization_id,
            "orders": [r.model_dump(mode="json") for r in _sorted(rows)],
        })

    async def _mirror(self, order: SaleOrder) -> None:
        if not self.mirror_legacy:
            return
        try:
            await self.legacy.upsert(order)
        except FiscalEngineError as e:
            logger.warning(f"Legacy mirror of task {order.task_id} failed: {e}")


def _sorted(rows: List[SaleSummary]) -> List[SaleSummary]:
    return sorted(rows, key=lambda r: r.created_at, reverse=True)
