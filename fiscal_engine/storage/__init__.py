# Storage Package - Durable blob store backends
from pathlib import Path

from .base import BlobStore, dump_json, safe_segment
from .local import LocalBlobStore
from .memory import MemoryBlobStore
from .database import DatabaseBlobStore

__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "MemoryBlobStore",
    "DatabaseBlobStore",
    "dump_json",
    "safe_segment",
    "build_blob_store",
]


def build_blob_store(settings) -> BlobStore:
    """Create the configured backend"""
    backend = settings.STORAGE_BACKEND
    if backend == "memory":
        return MemoryBlobStore(timeout=settings.STORAGE_TIMEOUT_SECONDS)
    if backend == "database":
        from fiscal_engine.core.database import Base, make_engine, make_session_factory
        if settings.DATABASE_URL.startswith("sqlite:///"):
            Path(settings.DATABASE_URL[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        engine = make_engine(settings.DATABASE_URL)
        Base.metadata.create_all(bind=engine)
        return DatabaseBlobStore(make_session_factory(engine), timeout=settings.STORAGE_TIMEOUT_SECONDS)
    return LocalBlobStore(settings.DATA_PATH, timeout=settings.STORAGE_TIMEOUT_SECONDS)
