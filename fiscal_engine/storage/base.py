"""
Durable Blob Store - Abstract base class for storage backends

Keys are hierarchical, slash-separated strings ("sales/orgs/123/42.json").
Every public call is bounded by a timeout so a stuck backend cannot stall a
worker tick.
"""
from abc import ABC, abstractmethod
from typing import Any, List, Optional
import asyncio
import json
import logging

from fiscal_engine.core.exceptions import StorageTimeout

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """
    get/put/list/delete over bytes with read-after-write consistency
    """
    BACKEND_NAME: str = "base"

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    # ========== Backend primitives ==========

    @abstractmethod
    async def _get(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def _put(self, key: str, data: bytes) -> None:
        pass

    @abstractmethod
    async def _list(self, prefix: str) -> List[str]:
        pass

    @abstractmethod
    async def _delete(self, key: str) -> None:
        pass

    # ========== Public API ==========

    async def _bounded(self, operation: str, key: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"[{self.BACKEND_NAME}] {operation} {key} timed out after {self.timeout}s")
            raise StorageTimeout(operation, key, self.timeout)

    async def get(self, key: str) -> Optional[bytes]:
        return await self._bounded("get", key, self._get(normalize_key(key)))

    async def put(self, key: str, data: bytes) -> None:
        await self._bounded("put", key, self._put(normalize_key(key), data))

    async def list(self, prefix: str) -> List[str]:
        keys = await self._bounded("list", prefix, self._list(normalize_key(prefix)))
        return sorted(keys)

    async def delete(self, key: str) -> None:
        await self._bounded("delete", key, self._delete(normalize_key(key)))

    # ========== JSON helpers ==========

    async def get_json(self, key: str, default: Any = None) -> Any:
        raw = await self.get(key)
        if not raw:
            return default
        try:
            return json.loads(raw.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"[{self.BACKEND_NAME}] unreadable JSON at {key}: {e}")
            return default

    async def put_json(self, key: str, value: Any) -> None:
        await self.put(key, dump_json(value))


def dump_json(value: Any) -> bytes:
    return json.dumps(value, ensure_ascii=False, indent=2, sort_keys=True).encode("utf-8")


def normalize_key(key: str) -> str:
    return str(key).replace("\\", "/").lstrip("/")


def safe_segment(value: Any) -> str:
    """Make an arbitrary id usable as a single key segment"""
    text = "".join(c if (c.isalnum() or c in "_.-") else "_" for c in str(value))
    return text or "_"
