"""
Document Store — generic JSON records over SQLAlchemy.

Every record lives in the `documents` table keyed by (collection, id) and
carries a `version` that is bumped on each write. Two write styles:

  - update(): shallow field merge. With expected_version the write is
    conditional and a stale version raises ConflictError. Without it the
    merge is retried on contention (last writer wins per field).
  - increment_counter(): read → +1 → conditional write, retried until the
    compare-and-swap wins. This is the only safe way to bump a counter.

Each call opens its own short session so concurrent callers never share a
transaction.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db_models import Document
from domain.errors import ConflictError, NotFoundError, PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class StoredDocument:
    id: str
    data: dict
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _to_stored(row: Document) -> StoredDocument:
    return StoredDocument(
        id=row.id,
        data=dict(row.data or {}),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class DocumentStore:
    """Async get/list/create/update over the documents table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], max_cas_retries: int = 50):
        self._session_factory = session_factory
        self.max_cas_retries = max_cas_retries

    # ── Reads ───────────────────────────────────────────────────────

    async def ping(self) -> None:
        """Round-trip to the database; raises PersistenceError when unreachable."""
        try:
            async with self._session_factory() as session:
                await session.execute(select(1))
        except SQLAlchemyError as e:
            raise PersistenceError("Database unreachable") from e

    async def get(self, collection: str, doc_id: str) -> StoredDocument | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(Document, (collection, doc_id))
                return _to_stored(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Store get failed for {collection}/{doc_id}: {e}")
            raise PersistenceError(f"Failed to read {collection}/{doc_id}") from e

    async def get_required(self, collection: str, doc_id: str, resource_type: str) -> StoredDocument:
        doc = await self.get(collection, doc_id)
        if doc is None:
            raise NotFoundError(resource_type, doc_id)
        return doc

    async def list(self, collection: str, *, limit: int | None = None, offset: int = 0) -> list[StoredDocument]:
        """List a collection, newest first."""
        stmt = (
            select(Document)
            .where(Document.collection == collection)
            .order_by(Document.created_at.desc(), Document.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self._session_factory() as session:
                res = await session.execute(stmt)
                return [_to_stored(row) for row in res.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Store list failed for {collection}: {e}")
            raise PersistenceError(f"Failed to list {collection}") from e

    # ── Writes ──────────────────────────────────────────────────────

    async def create(self, collection: str, data: dict, doc_id: str | None = None) -> StoredDocument:
        doc_id = doc_id or uuid.uuid4().hex
        now = datetime.utcnow()
        row = Document(
            collection=collection,
            id=doc_id,
            data=data,
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory.begin() as session:
                session.add(row)
        except IntegrityError as e:
            raise ConflictError(f"{collection}/{doc_id} already exists") from e
        except SQLAlchemyError as e:
            logger.error(f"Store create failed for {collection}/{doc_id}: {e}")
            raise PersistenceError(f"Failed to create {collection}/{doc_id}") from e
        return StoredDocument(id=doc_id, data=dict(data), version=1, created_at=now, updated_at=now)

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> StoredDocument:
        """
        Merge `fields` into the stored document.

        Raises:
            NotFoundError: document absent
            ConflictError: expected_version given and the stored version differs
            PersistenceError: database failure
        """
        for _ in range(self.max_cas_retries):
            current = await self.get(collection, doc_id)
            if current is None:
                raise NotFoundError(collection, doc_id)
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(
                    f"{collection}/{doc_id} was modified concurrently",
                    details={"expected_version": expected_version, "actual_version": current.version},
                )

            merged = {**current.data, **fields}
            if await self._swap(collection, doc_id, current.version, merged):
                return StoredDocument(
                    id=doc_id,
                    data=merged,
                    version=current.version + 1,
                    created_at=current.created_at,
                    updated_at=datetime.utcnow(),
                )
            if expected_version is not None:
                raise ConflictError(f"{collection}/{doc_id} was modified concurrently")

        raise ConflictError(f"Too much contention updating {collection}/{doc_id}")

    async def _swap(self, collection: str, doc_id: str, seen_version: int, data: dict) -> bool:
        """Conditional write: succeeds only if the version is still `seen_version`."""
        stmt = (
            update(Document)
            .where(
                Document.collection == collection,
                Document.id == doc_id,
                Document.version == seen_version,
            )
            .values(data=data, version=seen_version + 1, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory.begin() as session:
                res = await session.execute(stmt)
                return res.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Store write failed for {collection}/{doc_id}: {e}")
            raise PersistenceError(f"Failed to write {collection}/{doc_id}") from e

    # ── Counters ────────────────────────────────────────────────────

    async def increment_counter(self, collection: str, doc_id: str, key: str) -> int:
        """
        Atomically bump `data[key]` by one and return the new value.

        A missing counter document is created with the value 1; losing the
        insert race just means another caller created it, so we retry.
        """
        for attempt in range(self.max_cas_retries):
            current = await self.get(collection, doc_id)
            if current is None:
                try:
                    await self.create(collection, {key: 1}, doc_id=doc_id)
                    return 1
                except ConflictError:
                    continue

            next_value = int(current.data.get(key) or 0) + 1
            if await self._swap(collection, doc_id, current.version, {**current.data, key: next_value}):
                if attempt:
                    logger.debug(f"Counter {doc_id}[{key}] won after {attempt + 1} attempts")
                return next_value

        raise ConflictError(f"Too much contention on counter {collection}/{doc_id}")

    async def compare_and_set_counter(
        self, collection: str, doc_id: str, key: str, expected: int, new_value: int
    ) -> bool:
        """Set `data[key]` to `new_value` only while it still equals `expected`."""
        for _ in range(self.max_cas_retries):
            current = await self.get(collection, doc_id)
            if current is None or int(current.data.get(key) or 0) != expected:
                return False
            if await self._swap(collection, doc_id, current.version, {**current.data, key: new_value}):
                return True
        return False
