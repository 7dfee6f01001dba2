from datetime import date

import pytest

from fiscal_engine.core.exceptions import InvariantViolation, OrderIdConflict
from fiscal_engine.schemas.sale import ReceiptUpdate, SaleOrder, StatusUpdate
from fiscal_engine.services.ledger_service import (
    SaleLedger,
    org_index_key,
    task_index_key,
)
from fiscal_engine.services.legacy_ledger import LegacyLedger

ORG = "7701000001"


@pytest.fixture
def legacy(store, clock):
    return LegacyLedger(store, clock)


@pytest.fixture
def ledger(store, clock, legacy):
    return SaleLedger(store, clock, legacy)


def same_day_order(order_id=1, task_id="task-1", organization_id=ORG) -> SaleOrder:
    return SaleOrder(
        order_id=order_id,
        task_id=task_id,
        organization_id=organization_id,
        amount_gross="2500",
        service_date=date(2026, 3, 10),
        invoice_full=f"INV-C-{order_id}",
    )


def deferred_order(order_id=2, task_id="task-2") -> SaleOrder:
    return SaleOrder(
        order_id=order_id,
        task_id=task_id,
        organization_id=ORG,
        amount_gross="2500",
        service_date=date(2026, 3, 13),
        invoice_prepay=f"INV-A-{order_id}",
        invoice_offset=f"INV-B-{order_id}",
    )


# ========== Status routing ==========

async def test_root_values_never_touch_payment_status(ledger):
    await ledger.create_order(same_day_order())
    await ledger.update_status("task-1", StatusUpdate(status="paid"))

    for root in ("completed", "draft", "canceled"):
        order = await ledger.update_status("task-1", StatusUpdate(status=root))
        assert order.payment_status == "paid"
        assert order.root_status == root


async def test_payment_values_never_touch_root_status(ledger):
    await ledger.create_order(same_day_order())
    await ledger.update_status("task-1", StatusUpdate(root_status="completed"))

    for payment in ("paid", "transferred", "expired"):
        order = await ledger.update_status("task-1", StatusUpdate(status=payment))
        assert order.root_status == "completed"
        assert order.payment_status == payment


async def test_payment_value_in_root_slot_is_ignored(ledger, store):
    await ledger.create_order(same_day_order())
    writes = len(store.puts)

    order = await ledger.update_status("task-1", StatusUpdate(root_status="paid"))
    assert order.root_status is None
    assert order.payment_status is None
    assert len(store.puts) == writes


async def test_paid_at_is_stamped_once(ledger, clock):
    await ledger.create_order(same_day_order())
    order = await ledger.update_status("task-1", StatusUpdate(status="Paid"))
    first = order.paid_at
    assert first == clock.now()

    clock.advance(hours=2)
    order = await ledger.update_status("task-1", StatusUpdate(status="transfered"))
    assert order.payment_status == "transfered"
    assert order.paid_at == first


async def test_capture_mark_is_stamped_once(ledger, clock):
    await ledger.create_order(same_day_order())
    order = await ledger.update_status("task-1", StatusUpdate(captured=True))
    first = order.captured_at
    assert first == clock.now()

    clock.advance(minutes=5)
    order = await ledger.update_status("task-1", StatusUpdate(status="transferred", captured=True))
    assert order.captured_at == first
    order = await ledger.update_status("task-1", StatusUpdate(root_status="completed"))
    assert order.captured_at == first


async def test_expired_payment_hides_order(ledger):
    await ledger.create_order(same_day_order())
    order = await ledger.update_status("task-1", StatusUpdate(status="expired"))
    assert order.hidden is True


# ========== No-op suppression ==========

async def test_identical_updates_write_nothing(ledger, store):
    await ledger.create_order(same_day_order())
    await ledger.update_status("task-1", StatusUpdate(status="paid", root_status="completed"))
    await ledger.attach_receipt_urls("task-1", ReceiptUpdate(full_receipt_id="rcpt-1"))
    writes = len(store.puts)

    await ledger.update_status("task-1", StatusUpdate(status="paid", root_status="completed"))
    await ledger.attach_receipt_urls("task-1", ReceiptUpdate(full_receipt_id="rcpt-1"))
    await ledger.attach_receipt_urls("task-1", ReceiptUpdate())
    await ledger.update_status("task-1", StatusUpdate(status="something-new"))

    assert len(store.puts) == writes
    assert store.deletes == []


async def test_empty_receipt_values_never_clear(ledger):
    await ledger.create_order(same_day_order())
    await ledger.attach_receipt_urls("task-1", ReceiptUpdate(full_receipt_id="rcpt-1", full_receipt_url="https://check.ofd.ru/rec/1/2/3"))

    order = await ledger.attach_receipt_urls("task-1", ReceiptUpdate(full_receipt_id=None, full_receipt_url=""))
    assert order.full_receipt_id == "rcpt-1"
    assert order.full_receipt_url == "https://check.ofd.ru/rec/1/2/3"


async def test_first_receipt_url_records_an_effect_intent(ledger):
    await ledger.create_order(same_day_order())
    url = "https://check.ofd.ru/rec/1/2/3"

    order = await ledger.attach_receipt_urls("task-1", ReceiptUpdate(full_receipt_url=url))
    assert len(order.pending_effects) == 1
    intent = order.pending_effects[0]
    assert (intent.type, intent.receipt, intent.url) == ("receipt_ready", "full", url)

    order = await ledger.attach_receipt_urls("task-1", ReceiptUpdate(full_receipt_url=url))
    assert len(order.pending_effects) == 1

    order = await ledger.ack_effects("task-1", [intent.id])
    assert order.pending_effects == []
    summaries = await ledger.list_by_organization(ORG)
    assert summaries[0].pending_effects == 0


# ========== Invoice exclusivity ==========

async def test_order_must_have_exactly_one_invoice_mode(ledger):
    both = same_day_order()
    both.invoice_prepay = "INV-A-1"
    with pytest.raises(InvariantViolation):
        await ledger.create_order(both)

    neither = same_day_order()
    neither.invoice_full = None
    with pytest.raises(InvariantViolation):
        await ledger.create_order(neither)


async def test_invoice_ids_are_stable_under_updates(ledger):
    await ledger.create_order(deferred_order())
    await ledger.update_status("task-2", StatusUpdate(status="paid", root_status="completed"))
    order = await ledger.attach_receipt_urls("task-2", ReceiptUpdate(prepay_receipt_id="rcpt-9", full_receipt_id="rcpt-10"))

    assert order.invoice_mode() == "deferred"
    assert (order.invoice_prepay, order.invoice_offset, order.invoice_full) == ("INV-A-2", "INV-B-2", None)


# ========== Creation ==========

async def test_create_is_idempotent_per_task(ledger, store):
    first = await ledger.create_order(same_day_order())
    writes = len(store.puts)
    again = await ledger.create_order(same_day_order(order_id=5))
    assert again.order_id == first.order_id
    assert len(store.puts) == writes


async def test_order_id_owned_by_another_task_conflicts(ledger):
    await ledger.create_order(same_day_order(order_id=1, task_id="task-1"))
    with pytest.raises(OrderIdConflict):
        await ledger.create_order(same_day_order(order_id=1, task_id="task-other"))


# ========== Reads ==========

async def test_lookups_use_indices(ledger, store):
    await ledger.create_order(same_day_order())
    assert await store.get_json(task_index_key("task-1")) == {"organizationId": ORG, "orderId": 1}
    assert (await ledger.get_by_order_id(1)).task_id == "task-1"
    assert await ledger.has_order_id(1)
    assert not await ledger.has_order_id(2)
    assert await ledger.get_by_task_id("missing") is None


async def test_listing_is_newest_first_and_rebuilds_missing_index(ledger, store, clock):
    await ledger.create_order(same_day_order(order_id=1, task_id="task-1"))
    clock.advance(minutes=5)
    await ledger.create_order(same_day_order(order_id=2, task_id="task-2"))
    await ledger.create_order(same_day_order(order_id=3, task_id="task-3", organization_id="unknown"))

    rows = await ledger.list_by_organization(ORG)
    assert [r.task_id for r in rows] == ["task-2", "task-1"]

    await store.delete(org_index_key(ORG))
    rows = await ledger.list_by_organization(ORG)
    assert [r.task_id for r in rows] == ["task-2", "task-1"]
    assert await store.get(org_index_key(ORG)) is not None

    assert await ledger.list_organizations() == [ORG, "unknown"]
    assert len(await ledger.list_all()) == 3


async def test_get_by_task_falls_back_to_legacy(ledger, legacy, store):
    await legacy.write_all([same_day_order(order_id=7, task_id="old-task")])

    order = await ledger.get_by_task_id("old-task")
    assert order.order_id == 7

    # The first update moves the record into the sharded layout
    await ledger.update_status("old-task", StatusUpdate(status="paid"))
    assert await store.get(task_index_key("old-task")) is not None
    assert (await ledger.get_by_order_id(7)).payment_status == "paid"


# ========== Migration ==========

async def test_migration_never_overwrites_and_runs_once(ledger, legacy):
    await ledger.create_order(same_day_order(order_id=1, task_id="task-1"))
    await ledger.update_status("task-1", StatusUpdate(status="paid"))
    await legacy.write_all([
        same_day_order(order_id=1, task_id="task-1"),
        same_day_order(order_id=2, task_id="task-2"),
        deferred_order(order_id=3, task_id="task-3"),
    ])

    stats = await ledger.migrate_legacy()
    assert (stats["migrated"], stats["existing"], stats["total"]) == (2, 1, 3)
    assert (await ledger.get_by_task_id("task-1")).payment_status == "paid"
    assert (await ledger.get_by_task_id("task-3")).invoice_offset == "INV-B-3"

    assert (await ledger.migrate_legacy())["skipped"] is True

    forced = await ledger.migrate_legacy(force=True)
    assert (forced["migrated"], forced["existing"]) == (0, 3)


async def test_mirror_keeps_legacy_file_in_step(store, clock, legacy):
    ledger = SaleLedger(store, clock, legacy, mirror_legacy=True)
    await ledger.create_order(same_day_order())
    await ledger.update_status("task-1", StatusUpdate(status="paid"))

    records = await legacy.read_all()
    assert [(r.task_id, r.payment_status) for r in records] == [("task-1", "paid")]
