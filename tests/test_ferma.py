from datetime import date

import httpx
import pytest

from fiscal_engine.core.cache import TTLCache
from fiscal_engine.core.exceptions import GatewayError
from fiscal_engine.integrations.ferma import FermaClient, build_receipt_payload, build_receipt_view_url
from fiscal_engine.schemas.receipt import ReceiptParty
from fiscal_engine.schemas.sale import InvoiceKind, OffsetJob, SaleOrder
from fiscal_engine.services.receipt_service import ReceiptService


def make_client(handler) -> FermaClient:
    return FermaClient(
        "https://ferma.example/",
        "login",
        "secret",
        token_cache=TTLCache(skew_seconds=60),
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
async def client(ferma):
    c = make_client(ferma.handler)
    yield c
    await c.aclose()


@pytest.fixture
def receipts(client):
    return ReceiptService(client, "7720496561", url_poll_attempts=2, url_poll_backoff=0)


def deferred_order() -> SaleOrder:
    return SaleOrder(
        order_id=42,
        task_id="task-42",
        organization_id="7701000001",
        organization_name="ООО Ромашка",
        buyer_email=" buyer@example.com ",
        description="Экскурсия",
        amount_gross="1500",
        is_agent=True,
        retained_commission="150",
        service_date=date(2026, 3, 13),
        partner_inn="500100732259",
        partner_name="Иванов И.И.",
        invoice_prepay="INV-A-42",
        invoice_offset="INV-B-42",
    )


# ========== Auth ==========

async def test_token_is_cached(client, ferma):
    assert await client.get_auth_token() == "token-1"
    assert await client.get_auth_token() == "token-1"
    assert ferma.auth_calls == 1


async def test_unauthorized_create_drops_cached_token(ferma):
    rejected = {"count": 0}

    def handler(request):
        if request.url.path == "/api/kkt/cloud/receipt" and rejected["count"] == 0:
            rejected["count"] += 1
            return httpx.Response(401, json={"Status": "Failed"})
        return ferma.handler(request)

    client = make_client(handler)
    payload = {"Request": {"InvoiceId": "INV-C-1"}}
    with pytest.raises(GatewayError) as exc:
        await client.create_receipt(payload)
    assert exc.value.status_code == 401

    created = await client.create_receipt(payload)
    assert created.id == "rcpt-1"
    assert ferma.auth_calls == 2
    await client.aclose()


# ========== Receipt creation ==========

async def test_duplicate_invoice_resolves_to_existing_receipt(client):
    payload = {"Request": {"InvoiceId": "INV-C-7"}}
    first = await client.create_receipt(payload)
    second = await client.create_receipt(payload)
    assert second.id == first.id
    assert second.duplicate is True


async def test_ensure_receipt_creates_once(receipts, ferma):
    order = deferred_order()
    spec = receipts.build_for_order(order, InvoiceKind.PREPAY, ReceiptParty.PARTNER, order.partner_inn)

    first = await receipts.ensure_receipt(spec)
    second = await receipts.ensure_receipt(spec)

    assert first == second
    assert ferma.create_calls == 1
    assert len(ferma.receipts) == 1


async def test_server_error_is_raised(receipts, ferma):
    ferma.fail_create = True
    order = deferred_order()
    spec = receipts.build_for_order(order, InvoiceKind.PREPAY, ReceiptParty.PARTNER, order.partner_inn)
    with pytest.raises(GatewayError) as exc:
        await receipts.ensure_receipt(spec)
    assert exc.value.status_code == 503
    assert ferma.receipts == {}


async def test_transport_failure_becomes_gateway_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(GatewayError):
        await client.get_auth_token()
    await client.aclose()


# ========== Receipt URLs ==========

async def test_resolve_url_for_signed_receipt(receipts, client):
    created = await client.create_receipt({"Request": {"InvoiceId": "INV-C-3"}})
    url = await receipts.resolve_url(created.id)
    assert url == "https://check.ofd.ru/rec/9960440300000001/101/3548012345"


async def test_resolve_url_waits_for_signature(receipts, client, ferma):
    ferma.sign_receipts = False
    created = await client.create_receipt({"Request": {"InvoiceId": "INV-C-3"}})
    assert await receipts.resolve_url(created.id) is None
    assert await receipts.resolve_url("unknown") is None


def test_view_url_uses_demo_viewer_for_test_gateway():
    assert build_receipt_view_url("1", "2", "3", "https://ferma-test.ofd.ru/") == "https://check-demo.ofd.ru/rec/1/2/3"
    assert build_receipt_view_url("1", "2", "3", "https://ferma.ofd.ru/") == "https://check.ofd.ru/rec/1/2/3"


# ========== Payloads ==========

def test_prepayment_payload_for_partner(receipts):
    order = deferred_order()
    spec = receipts.build_for_order(order, InvoiceKind.PREPAY, ReceiptParty.PARTNER, order.partner_inn)
    request = build_receipt_payload(spec, "7720496561", "https://engine.example/fiscal/callback")["Request"]

    assert request["Type"] == "IncomePrepayment"
    assert request["InvoiceId"] == "INV-A-42"
    assert request["Inn"] == "7720496561"
    assert request["SupplierInn"] == "500100732259"
    assert request["CallbackUrl"] == "https://engine.example/fiscal/callback"
    assert "PaymentItems" not in request

    receipt = request["CustomerReceipt"]
    item = receipt["Items"][0]
    assert item["PaymentMethod"] == 1
    assert item["Amount"] == 1350.0
    assert item["Vat"] == "VatNo"
    assert item["PaymentAgentInfo"]["SupplierName"] == "Иванов И.И."
    assert receipt["Email"] == "buyer@example.com"


def test_offset_payload_for_organization(receipts):
    order = deferred_order()
    spec = receipts.build_for_order(order, InvoiceKind.OFFSET, ReceiptParty.ORG, order.organization_id)
    request = build_receipt_payload(spec, "7720496561")["Request"]

    assert request["Type"] == "Income"
    assert request["InvoiceId"] == "INV-B-42"
    assert request["PaymentItems"] == [{"PaymentType": 2, "Sum": 1350.0}]
    assert request["CustomerReceipt"]["Items"][0]["PaymentMethod"] == 4
    assert "PaymentAgentInfo" not in request["CustomerReceipt"]
    assert "CallbackUrl" not in request


def test_full_payload_marks_prepayment_item(receipts):
    order = SaleOrder(order_id=5, task_id="t5", amount_gross="990.005", vat_rate="20", invoice_full="INV-C-5")
    spec = receipts.build_for_order(order, InvoiceKind.FULL, ReceiptParty.ORG, "7701000001")
    request = build_receipt_payload(spec, "7720496561")["Request"]

    assert request["PaymentItems"] == [{"PaymentType": 1, "Sum": 990.01}]
    assert request["CustomerReceipt"]["Items"][0]["Vat"] == "Vat20"


def test_missing_invoice_kind_is_rejected(receipts):
    order = deferred_order()
    with pytest.raises(ValueError):
        receipts.build_for_order(order, InvoiceKind.FULL, ReceiptParty.ORG, "7701000001")


def test_job_spec_uses_offset_settlement(receipts):
    job = OffsetJob(
        id="org:42",
        organization_id="org",
        order_id=42,
        due_at="2026-03-13T06:00:00Z",
        party="partner",
        partner_inn="500100732259",
        amount="1350",
    )
    spec = receipts.build_for_job(job, "INV-B-42", "500100732259")
    assert (spec.method_code, spec.payment_item_type, spec.party) == (4, 2, ReceiptParty.PARTNER)


# ========== Token cache ==========

async def test_ttl_cache_refreshes_before_expiry():
    now = {"t": 1000.0}
    cache = TTLCache(skew_seconds=30, clock=lambda: now["t"])
    calls = []

    async def refresh():
        calls.append(now["t"])
        return f"v{len(calls)}", now["t"] + 100

    assert await cache.get_or_refresh("k", refresh) == "v1"
    now["t"] += 60
    assert await cache.get_or_refresh("k", refresh) == "v1"
    now["t"] += 15
    assert await cache.get_or_refresh("k", refresh) == "v2"
