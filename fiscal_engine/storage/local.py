"""
Local filesystem backend
"""
from pathlib import Path
from typing import List, Optional
import os
import uuid

from starlette.concurrency import run_in_threadpool

from .base import BlobStore


class LocalBlobStore(BlobStore):
    BACKEND_NAME = "local"

    def __init__(self, root: str, timeout: float = 10.0):
        super().__init__(timeout)
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / key

    async def _get(self, key: str) -> Optional[bytes]:
        return await run_in_threadpool(self._read_file, self._path(key))

    async def _put(self, key: str, data: bytes) -> None:
        await run_in_threadpool(self._write_file, self._path(key), data)

    async def _list(self, prefix: str) -> List[str]:
        return await run_in_threadpool(self._walk, prefix)

    async def _delete(self, key: str) -> None:
        await run_in_threadpool(self._remove_file, self._path(key))

    @staticmethod
    def _read_file(path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    @staticmethod
    def _write_file(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    @staticmethod
    def _remove_file(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def _walk(self, prefix: str) -> List[str]:
        if not self.root.exists():
            return []
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return keys
