"""
SQL backend - one row per blob, driven through the threadpool
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from fiscal_engine.models.blob import BlobObject
from .base import BlobStore


class DatabaseBlobStore(BlobStore):
    BACKEND_NAME = "database"

    def __init__(self, session_factory, timeout: float = 10.0):
        super().__init__(timeout)
        self.session_factory = session_factory

    async def _get(self, key: str) -> Optional[bytes]:
        return await run_in_threadpool(self._get_sync, key)

    async def _put(self, key: str, data: bytes) -> None:
        await run_in_threadpool(self._put_sync, key, data)

    async def _list(self, prefix: str) -> List[str]:
        return await run_in_threadpool(self._list_sync, prefix)

    async def _delete(self, key: str) -> None:
        await run_in_threadpool(self._delete_sync, key)

    def _get_sync(self, key: str) -> Optional[bytes]:
        db: Session = self.session_factory()
        try:
            row = db.get(BlobObject, key)
            return bytes(row.data) if row else None
        finally:
            db.close()

    def _put_sync(self, key: str, data: bytes) -> None:
        db: Session = self.session_factory()
        try:
            db.merge(BlobObject(key=key, data=data, updated_at=datetime.now(timezone.utc)))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _list_sync(self, prefix: str) -> List[str]:
        db: Session = self.session_factory()
        try:
            escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            rows = db.query(BlobObject.key).filter(
                BlobObject.key.like(f"{escaped}%", escape="\\")
            ).all()
            return [r[0] for r in rows]
        finally:
            db.close()

    def _delete_sync(self, key: str) -> None:
        db: Session = self.session_factory()
        try:
            db.query(BlobObject).filter(BlobObject.key == key).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
