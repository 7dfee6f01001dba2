"""
Process-local backend for tests and single-process development
"""
from typing import Dict, List, Optional

from .base import BlobStore


class MemoryBlobStore(BlobStore):
    BACKEND_NAME = "memory"

    def __init__(self, timeout: float = 10.0):
        super().__init__(timeout)
        self.objects: Dict[str, bytes] = {}

    async def _get(self, key: str) -> Optional[bytes]:
        return self.objects.get(key)

    async def _put(self, key: str, data: bytes) -> None:
        self.objects[key] = bytes(data)

    async def _list(self, prefix: str) -> List[str]:
        return [k for k in self.objects if k.startswith(prefix)]

    async def _delete(self, key: str) -> None:
        self.objects.pop(key, None)
