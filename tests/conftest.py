"""
Shared fixtures: frozen clock, counting store, fake gateways, wired engine
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List
import json

import httpx
import pytest

from fiscal_engine.core.clock import Clock
from fiscal_engine.core.config import Settings
from fiscal_engine.engine import build_engine
from fiscal_engine.storage import MemoryBlobStore

# 10:00 in Moscow
START = datetime(2026, 3, 10, 7, 0, tzinfo=timezone.utc)


class FrozenClock(Clock):
    def __init__(self, now: datetime = START, business_tz: str = "Europe/Moscow"):
        super().__init__(business_tz)
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.current = now


class CountingBlobStore(MemoryBlobStore):
    """Memory store that records every mutation"""

    def __init__(self):
        super().__init__()
        self.puts: List[str] = []
        self.deletes: List[str] = []

    async def _put(self, key: str, data: bytes) -> None:
        self.puts.append(key)
        await super()._put(key, data)

    async def _delete(self, key: str) -> None:
        self.deletes.append(key)
        await super()._delete(key)


class FakeFerma:
    """Ferma cloud API stand-in: one receipt per InvoiceId"""

    def __init__(self):
        self.receipts: Dict[str, dict] = {}  # receipt id -> record
        self.auth_calls = 0
        self.create_calls = 0
        self.fail_create = False
        self.sign_receipts = True

    def by_invoice(self, invoice_id: str):
        for record in self.receipts.values():
            if record["invoice_id"] == invoice_id:
                return record
        return None

    def payload_for(self, invoice_id: str) -> dict:
        return self.by_invoice(invoice_id)["payload"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/Authorization/CreateAuthToken":
            self.auth_calls += 1
            return httpx.Response(200, json={
                "Status": "Success",
                "Data": {"AuthToken": f"token-{self.auth_calls}", "ExpirationDateUtc": "2099-01-01T00:00:00"},
            })

        if path == "/api/kkt/cloud/receipt" and request.method == "POST":
            self.create_calls += 1
            if self.fail_create:
                return httpx.Response(503, json={"Status": "Failed"})
            payload = json.loads(request.content)
            invoice_id = payload["Request"]["InvoiceId"]
            existing = self.by_invoice(invoice_id)
            if existing:
                return httpx.Response(400, json={
                    "Status": "Failed",
                    "Error": {"Code": 1019, "Message": "Invoice already fiscalized"},
                    "Data": {"ExistingReceiptId": existing["id"]},
                })
            receipt_id = f"rcpt-{len(self.receipts) + 1}"
            self.receipts[receipt_id] = {"id": receipt_id, "invoice_id": invoice_id, "payload": payload}
            return httpx.Response(200, json={"Status": "Success", "Data": {"ReceiptId": receipt_id}})

        if path.startswith("/api/kkt/cloud/receipt/") and request.method == "GET":
            lookup = path.rsplit("/", 1)[-1]
            record = self.receipts.get(lookup) or self.by_invoice(lookup)
            if not record:
                return httpx.Response(404, json={"Status": "Failed"})
            data = {"ReceiptId": record["id"], "StatusCode": 1, "StatusName": "NEW"}
            if self.sign_receipts:
                data.update({"StatusCode": 2, "StatusName": "CONFIRMED", "Fn": "9960440300000001",
                             "Fd": str(100 + int(record["id"].split("-")[1])), "Fp": "3548012345"})
            return httpx.Response(200, json={"Status": "Success", "Data": data})

        return httpx.Response(404, json={"Status": "Failed"})


class FakeRocketWork:
    """RocketWork tasks API stand-in"""

    def __init__(self):
        self.tasks: Dict[str, dict] = {}
        self.captures: List[str] = []
        self.npd_after_capture = "https://lknpd.nalog.ru/api/v1/receipt/500100732259/200abc/print"
        self.fail_status = False

    def add_task(self, task_id: str, **fields) -> dict:
        task = {"id": task_id, **fields}
        self.tasks[str(task_id)] = task
        return task

    def handler(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")
        # api/tasks/{id}[/pay]
        if len(parts) >= 3 and parts[1] == "tasks":
            task = self.tasks.get(parts[2])
            if self.fail_status:
                return httpx.Response(500, json={"error": "internal"})
            if task is None:
                return httpx.Response(404, json={"error": "not found"})
            if len(parts) == 4 and parts[3] == "pay" and request.method == "PATCH":
                self.captures.append(parts[2])
                if self.npd_after_capture:
                    task["receipt_uri"] = self.npd_after_capture
                return httpx.Response(200, json={"task": task})
            if request.method == "GET":
                return httpx.Response(200, json={"task": task})
        return httpx.Response(404, json={"error": "not found"})


def make_settings(**overrides) -> Settings:
    values = dict(
        STORAGE_BACKEND="memory",
        FERMA_BASE_URL="https://ferma.example/",
        FERMA_LOGIN="login",
        FERMA_PASSWORD="secret",
        FERMA_CASHBOX_INN="7720496561",
        ROCKETWORK_API_BASE_URL="https://rw.example/api/",
        ROCKETWORK_API_TOKEN="rw-token",
        URL_POLL_ATTEMPTS=1,
        URL_POLL_BACKOFF_SECONDS=0,
        CAPTURE_POLL_ATTEMPTS=2,
        CAPTURE_POLL_BACKOFF_SECONDS=0,
        ORDER_LOCK_WAIT_SECONDS=5,
        ADMIN_TOKEN="",
        FERMA_CALLBACK_SECRET="",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store():
    return CountingBlobStore()


@pytest.fixture
def ferma():
    return FakeFerma()


@pytest.fixture
def rocketwork():
    return FakeRocketWork()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def engine(settings, store, clock, ferma, rocketwork):
    eng = build_engine(
        settings,
        store=store,
        clock=clock,
        ferma_transport=httpx.MockTransport(ferma.handler),
        rocketwork_transport=httpx.MockTransport(rocketwork.handler),
        instance_id="test-instance",
    )
    yield eng
    await eng.aclose()
