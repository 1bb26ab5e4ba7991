"""SQLAlchemy database models for local persistence."""
from datetime import datetime, UTC

from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now():
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class StoredDocument(Base):
    """Key -> serialized JSON document (one row per storage key)."""
    __tablename__ = "documents"

    key = Column(String(100), primary_key=True, index=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self):
        return f"<StoredDocument(key={self.key}, bytes={len(self.payload or '')})>"
