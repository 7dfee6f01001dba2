"""
Blob Object Model - Storage rows for the database blob backend
"""
from sqlalchemy import Column, String, LargeBinary, DateTime, func

from fiscal_engine.core.database import Base


class BlobObject(Base):
    """One stored blob keyed by its hierarchical path"""
    __tablename__ = "blob_object"

    key = Column(String(512), primary_key=True)
    data = Column(LargeBinary, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
