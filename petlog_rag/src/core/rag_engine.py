"""
Petlog RAG - Retrieval Engine
==============================
Composes the retrieval stages end-to-end and exposes the single upward
call used by the chat layer.

Architecture (OOP)
------------------
``MemoryRetriever``
    Pipeline orchestrator.  Flow:
        1. Embed the query (timeout-bounded)      → failure: empty result
        2. Similarity search, over-fetch × N      → failure: empty result
        3. Load source records from the store     → failure: empty result
        4. Re-rank (vector + keyword blend)
        5. Threshold filter + top-K truncation
        6. Assemble numbered context text
        7. Return ``RetrievalResult(context, record_ids)``
    Each stage hands back a ``StageResult``; every failure maps to
    ``RetrievalResult.empty(NO_MEMORY_PLACEHOLDER)``.  The whole call is
    bounded by ``retrieval_deadline_seconds`` and stays cancellable.

``PersonaChat``
    Thin consumer: retrieve → persona prompt → injected LLM callable
    (``build_text_generator`` wires Gemini through LangChain).  An empty
    retrieval still produces a (generic) answer.

Concurrency
-----------
No per-call state is stored on the instances, so concurrent ``retrieve``
calls on one ``MemoryRetriever`` are safe.

Usage:
    from petlog_rag.src.core.rag_engine import MemoryRetriever
    retriever = MemoryRetriever(embedder, index, store, RetrievalConfig.from_settings(settings))
    result = await retriever.retrieve("기침", owner_id=1, sub_owner_id=5)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from petlog_rag.config.prompt_templates import GENERATION_FAILED_RESPONSE, NO_MEMORY_PLACEHOLDER, PERSONA_PROMPT_TEMPLATE, PERSONA_SYSTEM_PROMPT
from petlog_rag.config.settings import RetrievalConfig, Settings
from petlog_rag.src.core.embedder import Embedder, embed_query_safely
from petlog_rag.src.core.errors import RecordStoreError, StageResult
from petlog_rag.src.core.models import MemoryRecord, RetrievalResult, SearchCandidate
from petlog_rag.src.core.retrieval import build_stages, select_top_k
from petlog_rag.src.database.record_store import RecordStore
from petlog_rag.src.database.vector_store import VectorIndex
from petlog_rag.src.utils.logger import get_logger

logger = get_logger(__name__)

# Async "generate text from prompt" capability (the LLM adapter).
TextGenerator = Callable[[str], Awaitable[str]]


def _preview(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


# ══════════════════════════════════════════════════════════════════════
#  MEMORY RETRIEVER
# ══════════════════════════════════════════════════════════════════════


class MemoryRetriever:
    """
    End-to-end retrieval orchestrator.

    Parameters
    ----------
    embedder
        ``Embedder``-compatible object for query embedding.
    index
        ``VectorIndex`` used by the similarity search stage.
    store
        ``RecordStore`` for content / creation-date lookups.
    config
        Explicit ``RetrievalConfig``; defaults to ``RetrievalConfig()``.
    """

    __slots__ = ("_embedder", "_store", "_config", "_search", "_reranker", "_assembler")

    def __init__(self, embedder: Embedder, index: VectorIndex, store: RecordStore, config: RetrievalConfig | None = None) -> None:
        self._embedder = embedder
        self._store = store
        self._config = config or RetrievalConfig()
        self._search, self._reranker, self._assembler = build_stages(index, self._config)


    @property
    def config(self) -> RetrievalConfig:
        return self._config


    async def retrieve(self, query_text: str, owner_id: int | None = None, sub_owner_id: int | None = None, top_k: int | None = None, min_score: float | None = None) -> RetrievalResult:
        """
        Retrieve ranked memories for *query_text*.

        Never raises for pipeline failures: embedding, index, store and
        deadline errors all yield ``RetrievalResult.empty(...)``.
        ``asyncio.CancelledError`` from the caller propagates.

        Parameters
        ----------
        owner_id, sub_owner_id
            Partition filter; ``None`` leaves that field unrestricted.
        top_k
            Results wanted (defaults to ``config.top_k``).
        min_score
            Blended-score threshold (defaults to ``config.min_score``).
        """
        empty = RetrievalResult.empty(NO_MEMORY_PLACEHOLDER)
        top_k = self._config.top_k if top_k is None else top_k
        min_score = self._config.min_score if min_score is None else min_score

        if not query_text or not query_text.strip():
            logger.info("[RAG] Blank query — skipping retrieval.")
            return empty
        if top_k < 1:
            logger.warning("[RAG] top_k=%d is not ≥ 1 — returning empty result.", top_k)
            return empty

        logger.info("[RAG] Retrieve '%s' (owner=%s, sub_owner=%s, top_k=%d, min_score=%.2f)", _preview(query_text), owner_id, sub_owner_id, top_k, min_score)
        t_start = time.perf_counter()

        try:
            result = await asyncio.wait_for(self._run(query_text, owner_id, sub_owner_id, top_k, min_score), timeout=self._config.retrieval_deadline_seconds)
        except asyncio.TimeoutError:
            logger.error("[RAG] Retrieval exceeded deadline of %.1fs.", self._config.retrieval_deadline_seconds)
            return empty
        except Exception:
            logger.exception("[RAG] Retrieval failed unexpectedly.")
            return empty

        logger.info("[RAG] Retrieved %d record(s) in %.1fms: %s", len(result.record_ids), (time.perf_counter() - t_start) * 1000, result.record_ids)
        return result


    async def _run(self, query_text: str, owner_id: int | None, sub_owner_id: int | None, top_k: int, min_score: float) -> RetrievalResult:
        empty = RetrievalResult.empty(NO_MEMORY_PLACEHOLDER)

        # ── 1. Embed ──────────────────────────────────────────────────
        embedded = await embed_query_safely(self._embedder, query_text, self._config.dimension, self._config.embed_timeout_seconds)
        if not embedded.ok:
            logger.warning("[RAG] Embedding unavailable (%s) — no memory context.", embedded.error)
            return empty

        # ── 2. Search (over-fetch) ────────────────────────────────────
        searched = await self._search.search(embedded.unwrap(), owner_id, sub_owner_id, top_k * self._config.overfetch_multiplier)
        if not searched.ok:
            logger.warning("[RAG] Search unavailable (%s) — no memory context.", searched.error)
            return empty
        candidates = searched.unwrap()
        if not candidates:
            logger.info("[RAG] No candidates for this partition.")
            return empty

        # ── 3. Load source records ────────────────────────────────────
        loaded = await self._load_records(candidates)
        if not loaded.ok:
            logger.warning("[RAG] Record store unavailable (%s) — no memory context.", loaded.error)
            return empty
        records = loaded.unwrap()

        # ── 4. Re-rank ────────────────────────────────────────────────
        ranked = self._reranker.rerank(candidates, query_text, records)

        # ── 5. Threshold + top-K ──────────────────────────────────────
        selected = select_top_k(ranked, min_score, top_k)
        logger.info("[RAG] %d ranked → %d selected (min_score=%.2f, top_k=%d)", len(ranked), len(selected), min_score, top_k)

        # ── 6. Assemble ───────────────────────────────────────────────
        final_records: list[MemoryRecord] = []
        for candidate in selected:
            record = records.get(candidate.record_id)
            if record is None:
                logger.debug("[RAG] Dropping record %d (no longer in store).", candidate.record_id)
                continue
            final_records.append(record)

        if not final_records:
            return empty

        context = self._assembler.assemble(final_records)
        return RetrievalResult(context=context, record_ids=[r.id for r in final_records])


    async def _load_records(self, candidates: list[SearchCandidate]) -> StageResult[dict[int, MemoryRecord]]:
        try:
            records = await self._store.find_many(c.record_id for c in candidates)
        except Exception as exc:
            logger.exception("[RAG] Record lookup failed.")
            return StageResult.failure(RecordStoreError(str(exc)))
        return StageResult.success(records)


# ══════════════════════════════════════════════════════════════════════
#  PERSONA CHAT
# ══════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ChatReply:
    answer: str
    related_record_ids: list[int] = field(default_factory=list)


class PersonaChat:
    """
    Memory-grounded chat: retrieve → prompt → generate.

    Parameters
    ----------
    retriever
        A ``MemoryRetriever``.
    generate
        Async callable turning a full prompt into the model's answer.
    """

    __slots__ = ("_retriever", "_generate")

    def __init__(self, retriever: MemoryRetriever, generate: TextGenerator) -> None:
        self._retriever = retriever
        self._generate = generate


    async def reply(self, owner_id: int, sub_owner_id: int, message: str) -> ChatReply:
        retrieved = await self._retriever.retrieve(message, owner_id=owner_id, sub_owner_id=sub_owner_id)
        prompt = build_persona_prompt(retrieved.context, message)
        logger.debug("[CHAT] Prompt length: %d chars (memories=%d)", len(prompt), len(retrieved.record_ids))

        t_llm = time.perf_counter()
        try:
            answer = await self._generate(prompt)
        except Exception:
            logger.exception("[CHAT] Text generation failed.")
            return ChatReply(answer=GENERATION_FAILED_RESPONSE, related_record_ids=retrieved.record_ids)

        logger.info("[CHAT] Answer in %.1fms (%d chars, %d related record(s)).", (time.perf_counter() - t_llm) * 1000, len(answer), len(retrieved.record_ids))
        return ChatReply(answer=answer, related_record_ids=retrieved.record_ids)


def build_persona_prompt(context: str, question: str) -> str:
    """Fill ``PERSONA_PROMPT_TEMPLATE`` with the memory context and question."""
    return PERSONA_PROMPT_TEMPLATE.format(context=context, question=question.strip())


def build_text_generator(source: Settings) -> TextGenerator:
    """
    Wrap the Gemini chat model (via LangChain) as a ``TextGenerator``.

    The persona system prompt is sent as a ``SystemMessage``; the filled
    ``PERSONA_PROMPT_TEMPLATE`` is the ``HumanMessage``.

    Raises
    ------
    ValueError
        ``GOOGLE_API_KEY`` is not configured.
    """
    if source.GOOGLE_API_KEY is None:
        raise ValueError("Persona chat requires GOOGLE_API_KEY.")

    from langchain_core.messages import HumanMessage, SystemMessage
    from langchain_google_genai import ChatGoogleGenerativeAI

    llm = ChatGoogleGenerativeAI(model=source.LLM_MODEL, temperature=source.LLM_TEMPERATURE, google_api_key=source.GOOGLE_API_KEY.get_secret_value())
    logger.info("LLM initialised: %s (temperature=%.1f)", source.LLM_MODEL, source.LLM_TEMPERATURE)

    async def generate(prompt: str) -> str:
        response = await llm.ainvoke([SystemMessage(content=PERSONA_SYSTEM_PROMPT), HumanMessage(content=prompt)])
        return response.content if isinstance(response.content, str) else str(response.content)

    return generate
