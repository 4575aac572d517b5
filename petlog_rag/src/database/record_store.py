"""
Petlog RAG - Memory Record Store
=================================
Relational-style lookup of ``MemoryRecord`` by id, used by re-ranking
(``content``) and context assembly (``created_at``).

``RecordStore`` is the structural type the pipeline depends on;
``MongoRecordStore`` is the production implementation backed by
MongoDB through ``motor``.

Collection schema (``memory_records``)::

    {
        "_id": int,               # MemoryRecord.id
        "owner_id": int,
        "sub_owner_id": int,
        "content": str,
        "embedding": [float, ...],
        "created_at": datetime,
        "vectorized_at": datetime | None
    }
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import motor.motor_asyncio

from petlog_rag.config.settings import settings
from petlog_rag.src.core.models import MemoryRecord, utc_now
from petlog_rag.src.utils.logger import get_logger

logger = get_logger(__name__)

RecordDocument = dict[str, int | str | list[float] | datetime | None]


@runtime_checkable
class RecordStore(Protocol):
    """Lookup and persistence of memory records."""

    async def find_by_id(self, record_id: int) -> MemoryRecord | None: ...

    async def find_many(self, record_ids: Iterable[int]) -> dict[int, MemoryRecord]: ...

    async def save(self, record: MemoryRecord) -> None: ...

    async def delete(self, record_id: int) -> bool: ...

    async def mark_vectorized(self, record_id: int) -> MemoryRecord | None: ...


# ══════════════════════════════════════════════════════════════════════
#  MONGODB SINGLETON CLIENT
# ══════════════════════════════════════════════════════════════════════

_mongo_client: motor.motor_asyncio.AsyncIOMotorClient | None = None


def _get_mongo_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return (or create) the module-level async MongoDB client."""
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI.get_secret_value(), tz_aware=True)
        logger.info("MongoDB async client created (singleton).")
    return _mongo_client


def to_document(record: MemoryRecord) -> RecordDocument:
    return {
        "_id": record.id,
        "owner_id": record.owner_id,
        "sub_owner_id": record.sub_owner_id,
        "content": record.content,
        "embedding": list(record.embedding),
        "created_at": record.created_at,
        "vectorized_at": record.vectorized_at,
    }


def from_document(doc: RecordDocument) -> MemoryRecord:
    created_at = doc["created_at"]
    if isinstance(created_at, datetime) and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return MemoryRecord(
        id=int(doc["_id"]),  # type: ignore[arg-type]
        owner_id=int(doc["owner_id"]),  # type: ignore[arg-type]
        sub_owner_id=int(doc["sub_owner_id"]),  # type: ignore[arg-type]
        content=str(doc["content"]),
        embedding=tuple(doc.get("embedding") or ()),  # type: ignore[arg-type]
        created_at=created_at,  # type: ignore[arg-type]
        vectorized_at=doc.get("vectorized_at"),  # type: ignore[arg-type]
    )


class MongoRecordStore:
    """
    Async memory-record store backed by MongoDB via ``motor``.

    Parameters
    ----------
    collection
        Inject a motor collection directly (tests).  When omitted, the
        singleton client is used with ``settings.MONGO_DB_NAME`` /
        ``settings.MONGO_COLLECTION``.
    """

    __slots__ = ("_collection",)

    def __init__(self, collection: motor.motor_asyncio.AsyncIOMotorCollection | None = None) -> None:
        if collection is None:
            client = _get_mongo_client()
            collection = client[settings.MONGO_DB_NAME][settings.MONGO_COLLECTION]
        self._collection = collection


    async def find_by_id(self, record_id: int) -> MemoryRecord | None:
        doc = await self._collection.find_one({"_id": record_id})
        return from_document(doc) if doc is not None else None


    async def find_many(self, record_ids: Iterable[int]) -> dict[int, MemoryRecord]:
        """Fetch several records in one round trip; missing ids are absent."""
        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return {}
        cursor = self._collection.find({"_id": {"$in": ids}})
        docs = await cursor.to_list(length=len(ids))
        return {int(doc["_id"]): from_document(doc) for doc in docs}


    async def save(self, record: MemoryRecord) -> None:
        """Insert or replace the record document."""
        await self._collection.replace_one({"_id": record.id}, to_document(record), upsert=True)
        logger.debug("[STORE] Saved record %d.", record.id)


    async def delete(self, record_id: int) -> bool:
        result = await self._collection.delete_one({"_id": record_id})
        return result.deleted_count > 0


    async def mark_vectorized(self, record_id: int) -> MemoryRecord | None:
        """Set ``vectorized_at`` and return the updated record."""
        now = utc_now()
        result = await self._collection.update_one({"_id": record_id}, {"$set": {"vectorized_at": now}})
        if result.matched_count == 0:
            logger.warning("[STORE] mark_vectorized: record %d not found.", record_id)
            return None
        return await self.find_by_id(record_id)
