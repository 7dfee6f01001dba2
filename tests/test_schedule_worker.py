from datetime import date, datetime, timezone

from fiscal_engine.schemas.sale import OffsetJob, OrderCreate, ReceiptUpdate, StatusUpdate

ORG = "7701000001"
DUE = datetime(2026, 3, 13, 6, 0, tzinfo=timezone.utc)


def deferred_request(**overrides) -> OrderCreate:
    values = dict(
        task_id="task-1",
        organization_id=ORG,
        organization_name="ООО Ромашка",
        amount_gross="1200",
        service_date=date(2026, 3, 13),
    )
    values.update(overrides)
    return OrderCreate(**values)


async def test_job_waits_until_due(engine, ferma, clock):
    await engine.orders.place_order(deferred_request())

    summary = await engine.schedule_worker.tick()
    assert (summary["jobs"], summary["due"]) == (1, 0)
    assert ferma.create_calls == 0

    clock.set(DUE)
    summary = await engine.schedule_worker.tick()
    assert summary["issued"] == 1
    assert await engine.offset_jobs.load() == []

    request = ferma.payload_for("INV-B-1")["Request"]
    assert request["Type"] == "Income"
    assert request["SupplierInn"] == ORG
    assert request["PaymentItems"] == [{"PaymentType": 2, "Sum": 1200.0}]
    order = await engine.ledger.get_by_task_id("task-1")
    assert order.full_receipt_id == ferma.by_invoice("INV-B-1")["id"]


async def test_issued_job_is_not_repeated(engine, ferma, clock):
    await engine.orders.place_order(deferred_request())
    clock.set(DUE)
    await engine.schedule_worker.tick()
    clock.advance(minutes=1)
    summary = await engine.schedule_worker.tick()

    assert summary["jobs"] == 0
    assert ferma.create_calls == 1


async def test_failed_job_is_kept_and_retried(engine, ferma, clock):
    await engine.orders.place_order(deferred_request())
    clock.set(DUE)

    ferma.fail_create = True
    summary = await engine.schedule_worker.tick()
    assert (summary["kept"], summary["issued"]) == (1, 0)
    assert len(await engine.offset_jobs.load()) == 1

    ferma.fail_create = False
    clock.advance(minutes=1)
    summary = await engine.schedule_worker.tick()
    assert summary["issued"] == 1
    assert await engine.offset_jobs.load() == []
    assert len(ferma.receipts) == 1


async def test_job_for_missing_order_is_kept(engine, clock):
    await engine.offset_jobs.enqueue(OffsetJob(
        id=f"{ORG}:99", organization_id=ORG, order_id=99, due_at=DUE, party="org", amount="100",
    ))
    clock.set(DUE)
    summary = await engine.schedule_worker.tick()
    assert summary["kept"] == 1
    assert len(await engine.offset_jobs.load()) == 1


async def test_settled_order_drops_job_without_new_receipt(engine, ferma, clock):
    await engine.orders.place_order(deferred_request())
    await engine.ledger.attach_receipt_urls("task-1", ReceiptUpdate(full_receipt_id="rcpt-external"))
    clock.set(DUE)

    summary = await engine.schedule_worker.tick()
    assert summary["settled"] == 1
    assert ferma.create_calls == 0
    assert await engine.offset_jobs.load() == []


async def test_expired_order_drops_job_without_receipt(engine, ferma, clock):
    await engine.orders.place_order(deferred_request())
    await engine.ledger.update_status("task-1", StatusUpdate(status="expired"))
    clock.set(DUE)

    summary = await engine.schedule_worker.tick()
    assert (summary["dropped"], summary["issued"]) == (1, 0)
    assert ferma.create_calls == 0
    assert await engine.offset_jobs.load() == []
    order = await engine.ledger.get_by_task_id("task-1")
    assert order.hidden and order.full_receipt_id is None


async def test_canceled_order_drops_job(engine, ferma, clock):
    await engine.orders.place_order(deferred_request())
    await engine.ledger.update_status("task-1", StatusUpdate(root_status="canceled"))
    clock.set(DUE)

    summary = await engine.schedule_worker.tick()
    assert summary["dropped"] == 1
    assert ferma.create_calls == 0
    assert await engine.offset_jobs.load() == []


async def test_partner_inn_resolved_from_executor(engine, ferma, rocketwork, clock):
    rocketwork.add_task("task-1", status="in_progress", executor={
        "inn": "500100732259", "last_name": "Петров", "first_name": "Пётр",
    })
    await engine.orders.place_order(deferred_request(
        is_agent=True, commission_type="fixed", commission_value="200",
    ))
    clock.set(DUE)

    summary = await engine.schedule_worker.tick()
    assert summary["issued"] == 1
    request = ferma.payload_for("INV-B-1")["Request"]
    assert request["SupplierInn"] == "500100732259"
    item = request["CustomerReceipt"]["Items"][0]
    assert item["PaymentAgentInfo"]["SupplierName"] == "Петров Пётр"
    assert item["Amount"] == 1000.0


async def test_unresolved_partner_keeps_job(engine, ferma, clock):
    await engine.orders.place_order(deferred_request(is_agent=True))
    clock.set(DUE)

    summary = await engine.schedule_worker.tick()
    assert summary["kept"] == 1
    assert ferma.create_calls == 0


async def test_jobs_enqueued_during_a_pass_survive(engine, clock, monkeypatch):
    await engine.orders.place_order(deferred_request())
    clock.set(DUE)
    original = engine.receipts.ensure_receipt

    async def ensure_and_enqueue(spec):
        await engine.orders.place_order(deferred_request(task_id="task-late", service_date=date(2026, 3, 20)))
        return await original(spec)

    monkeypatch.setattr(engine.receipts, "ensure_receipt", ensure_and_enqueue)
    summary = await engine.schedule_worker.tick()

    assert summary["issued"] == 1
    assert [j.order_id for j in await engine.offset_jobs.load()] == [2]


async def test_non_leader_does_not_process(engine, ferma, clock):
    await engine.orders.place_order(deferred_request())
    clock.set(DUE)
    await engine.store.put_json("locks/lease_ofd_schedule.json", {
        "id": "other-instance",
        "expiresAt": clock.timestamp_ms() + 60_000,
    })

    assert await engine.schedule_worker.tick() == {"skipped": "not_leader"}
    assert ferma.create_calls == 0
