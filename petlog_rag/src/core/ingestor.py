"""
Petlog RAG - MemoryIngestor
============================
Write path for memory records: embed → index → store → mark vectorized.

Key design decisions:
    • **Dependency Injection** – receives the embedder, vector index and
      record store.
    • **Delete-then-reinsert updates** – the index has no in-place vector
      update, so ``update`` deletes and re-ingests inside one call.  The
      two steps are not atomic: between them a concurrent reader can see
      zero vectors for that id (or, if two updates of the same id race,
      a duplicate, which ``select_top_k`` collapses on read).  This window
      is accepted; ``update`` is the only place it can open.  ``ingest``
      itself replaces any existing vector, so redelivered events are safe.
    • **Health notes share the index** – stored with a negative,
      timestamp-derived id and a ``[HEALTH]`` content prefix so they never
      collide with diary ids.
    • **Event dispatch** – ``handle_event`` maps diary lifecycle events to
      ingest / update / delete and reports whether the event may be
      acknowledged.

Usage:
    from petlog_rag.src.core.ingestor import MemoryIngestor
    ingestor = MemoryIngestor(embedder, index, store)
    await ingestor.handle_event(DiaryEvent.model_validate(payload))
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime

from petlog_rag.config.prompt_templates import HEALTH_NOTE_PREFIX
from petlog_rag.src.core.embedder import Embedder
from petlog_rag.src.core.errors import check_dimension
from petlog_rag.src.core.filters import Equals
from petlog_rag.src.core.models import DiaryEvent, DiaryEventType, MemoryRecord, utc_now
from petlog_rag.src.database.record_store import RecordStore
from petlog_rag.src.database.vector_store import VectorIndex
from petlog_rag.src.utils.logger import get_logger
from petlog_rag.src.utils.text_utils import clean_text

logger = get_logger(__name__)


class MemoryIngestor:
    """
    Persist, replace and remove memory records in both the vector index
    and the record store.

    Parameters
    ----------
    embedder
        ``Embedder`` used for document embedding.
    index
        ``VectorIndex``; its ``dimension`` is enforced on every insert.
    store
        ``RecordStore`` holding the canonical record.
    embed_timeout
        Seconds allowed for one embedding call.
    """

    __slots__ = ("_embedder", "_index", "_store", "_embed_timeout")

    def __init__(self, embedder: Embedder, index: VectorIndex, store: RecordStore, embed_timeout: float = 30.0) -> None:
        self._embedder = embedder
        self._index = index
        self._store = store
        self._embed_timeout = embed_timeout

    # ══════════════════════════════════════════════════════════════════
    #  INSERT / DELETE / UPDATE
    # ══════════════════════════════════════════════════════════════════

    async def ingest(self, record_id: int, owner_id: int, sub_owner_id: int, content: str | None, created_at: datetime | None = None) -> MemoryRecord | None:
        """
        Embed *content* and store it under *record_id*.

        Idempotent: an existing vector for *record_id* is replaced, so a
        redelivered event leaves exactly one vector per record.

        Returns
        -------
        MemoryRecord | None
            The stored (vectorized) record, or ``None`` when the content is
            blank.

        Raises
        ------
        DimensionMismatchError
            The embedder returned a vector of the wrong length.
        """
        cleaned = clean_text(content)
        if not cleaned:
            logger.warning("[INGEST] Skipping record %d — blank content.", record_id)
            return None

        t_start = time.perf_counter()
        vector = await asyncio.wait_for(asyncio.to_thread(self._embedder.embed_documents, [cleaned]), timeout=self._embed_timeout)
        embedding = [float(v) for v in vector[0]]
        check_dimension(embedding, self._index.dimension)
        embed_ms = (time.perf_counter() - t_start) * 1000

        record = MemoryRecord(id=record_id, owner_id=owner_id, sub_owner_id=sub_owner_id, content=cleaned, embedding=tuple(embedding), created_at=created_at or utc_now())

        # Replace any vector left by an earlier delivery of the same record.
        await asyncio.to_thread(self._index.delete, Equals("record_id", record.id))
        await asyncio.to_thread(self._index.insert, record.id, embedding, {"owner_id": owner_id, "sub_owner_id": sub_owner_id, "content": cleaned})
        await self._store.save(record)
        stored = await self._store.mark_vectorized(record.id) or record.mark_vectorized()

        logger.info("[INGEST] Record %d vectorized (owner=%d, sub_owner=%d, %d chars, embed=%.1fms).", record_id, owner_id, sub_owner_id, len(cleaned), embed_ms)
        return stored


    async def delete(self, record_id: int) -> None:
        """Remove *record_id* from the vector index and the record store."""
        await asyncio.to_thread(self._index.delete, Equals("record_id", record_id))
        removed = await self._store.delete(record_id)
        logger.info("[INGEST] Record %d deleted (store hit=%s).", record_id, removed)


    async def update(self, record_id: int, owner_id: int, sub_owner_id: int, content: str | None, created_at: datetime | None = None) -> MemoryRecord | None:
        """
        Replace a record: delete, then re-ingest.

        Not atomic; see the module docstring for the inconsistency window.
        """
        await self.delete(record_id)
        return await self.ingest(record_id, owner_id, sub_owner_id, content, created_at)


    async def store_health_note(self, owner_id: int, sub_owner_id: int, content: str | None) -> MemoryRecord | None:
        """Index a health note under a negative millisecond-timestamp id; blank notes are skipped."""
        cleaned = clean_text(content)
        if not cleaned:
            logger.warning("[INGEST] Skipping blank health note (owner=%d, sub_owner=%d).", owner_id, sub_owner_id)
            return None
        record_id = -time.time_ns() // 1_000_000
        return await self.ingest(record_id, owner_id, sub_owner_id, HEALTH_NOTE_PREFIX + cleaned)

    # ══════════════════════════════════════════════════════════════════
    #  EVENT DISPATCH
    # ══════════════════════════════════════════════════════════════════

    async def handle_event(self, event: DiaryEvent) -> bool:
        """
        Apply one diary lifecycle event.

        Returns
        -------
        bool
            ``True`` if the event was applied or deliberately ignored
            (safe to acknowledge), ``False`` if processing failed and the
            event should be redelivered.
        """
        logger.info("[INGEST] Event %s for diary %d (user=%s, pet=%s)", event.event_type, event.diary_id, event.user_id, event.pet_id)

        try:
            event_type = DiaryEventType(event.event_type)
        except ValueError:
            logger.warning("[INGEST] Unknown event type '%s' — ignored.", event.event_type)
            return True

        try:
            if event_type is DiaryEventType.DELETED:
                await self.delete(event.diary_id)
                return True

            if event.user_id is None or event.pet_id is None:
                logger.error("[INGEST] %s for diary %d lacks user/pet id — ignored.", event_type.value, event.diary_id)
                return True

            if event_type is DiaryEventType.CREATED:
                await self.ingest(event.diary_id, event.user_id, event.pet_id, event.content, event.created_at)
            else:
                await self.update(event.diary_id, event.user_id, event.pet_id, event.content, event.created_at)
        except Exception:
            logger.exception("[INGEST] Failed to process %s for diary %d.", event_type.value, event.diary_id)
            return False

        return True
