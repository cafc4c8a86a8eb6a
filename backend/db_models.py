"""
SQLAlchemy ORM models for the fulfillment backend.

Tables:
    documents — schemaless JSON records keyed by (collection, id)

Collections stored as documents:
    orders        — customer orders with embedded customer snapshot and items
    counters      — sequence counters ({"<year>": last_issued})
    credit_notes  — issued credit notes
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index

from database import Base


class Document(Base):
    """One JSON document in a named collection."""
    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    # Bumped on every write; conditional writes compare against it
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        # For collection listings ordered by creation time
        Index("ix_documents_collection_created", "collection", "created_at"),
    )
