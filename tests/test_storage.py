import asyncio

import pytest

from fiscal_engine.core.exceptions import StorageTimeout
from fiscal_engine.storage import MemoryBlobStore, build_blob_store, safe_segment
from conftest import make_settings


@pytest.fixture(params=["local", "database", "memory"])
def backend(request, tmp_path):
    return build_blob_store(make_settings(
        STORAGE_BACKEND=request.param,
        DATA_PATH=str(tmp_path / "data"),
        DATABASE_URL=f"sqlite:///{tmp_path}/db/fiscal.db",
    ))


async def test_put_get_list_delete(backend):
    assert await backend.get("sales/orgs/1/a.json") is None

    await backend.put_json("sales/orgs/1/a.json", {"n": 1})
    await backend.put_json("sales/orgs/1/b.json", {"n": 2})
    await backend.put_json("sales/orgs_x/c.json", {"n": 3})
    await backend.put_json("/sales/orgs/1/a.json", {"n": 4})

    assert await backend.get_json("sales/orgs/1/a.json") == {"n": 4}
    assert await backend.list("sales/orgs/") == ["sales/orgs/1/a.json", "sales/orgs/1/b.json"]

    await backend.delete("sales/orgs/1/a.json")
    await backend.delete("sales/orgs/1/missing.json")
    assert await backend.list("sales/orgs/") == ["sales/orgs/1/b.json"]


async def test_unreadable_json_falls_back_to_default(backend):
    await backend.put("counters/order.json", b"{not json")
    assert await backend.get_json("counters/order.json", default={}) == {}


class StuckStore(MemoryBlobStore):
    async def _get(self, key):
        await asyncio.sleep(5)


async def test_slow_backend_times_out():
    store = StuckStore(timeout=0.05)
    with pytest.raises(StorageTimeout) as exc:
        await store.get("locks/lease_ofd_repair.json")
    assert exc.value.operation == "get"


def test_safe_segment():
    assert safe_segment("7701000001") == "7701000001"
    assert safe_segment("a/b c") == "a_b_c"
    assert safe_segment("") == "_"


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError):
        make_settings(STORAGE_BACKEND="s3")
