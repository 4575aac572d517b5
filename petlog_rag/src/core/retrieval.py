"""
Petlog RAG - Retrieval Stages
==============================
The four stages composed by ``MemoryRetriever``:

``SimilaritySearch``
    Builds the owner / sub-owner filter and issues one cosine
    nearest-neighbour query against the vector index, bounded by a
    timeout.  Returns candidates in the index's order.
``Reranker``
    Blends the raw similarity with a lexical-overlap bonus
    (``raw × vector_weight + bonus × keyword_weight``) and re-sorts,
    keeping the original relative order on ties.
``select_top_k``
    Drops candidates below the score threshold and duplicate record ids,
    then truncates.
``ContextAssembler``
    Renders the selected records as a numbered, bounded text block that
    can be spliced into a larger prompt.

Stages hold no per-call state, so one instance can serve concurrent
``retrieve`` calls.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence

from petlog_rag.config.prompt_templates import CONTEXT_ENTRY_TEMPLATE, CONTEXT_LABEL_TEMPLATE, NO_MEMORY_PLACEHOLDER, UNKNOWN_DATE
from petlog_rag.config.settings import RetrievalConfig
from petlog_rag.src.core.errors import IndexQueryError, StageResult
from petlog_rag.src.core.filters import describe, partition_filter
from petlog_rag.src.core.models import MemoryRecord, SearchCandidate
from petlog_rag.src.database.vector_store import VectorIndex
from petlog_rag.src.utils.logger import get_logger
from petlog_rag.src.utils.text_utils import clean_text, extract_keywords, keyword_bonus, neutralise_delimiters, truncate

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  SIMILARITY SEARCH
# ══════════════════════════════════════════════════════════════════════


class SimilaritySearch:
    """
    Filtered nearest-neighbour query against a ``VectorIndex``.

    The index client is blocking, so the query runs in a worker thread
    and is abandoned after ``timeout`` seconds.
    """

    __slots__ = ("_index", "_timeout")

    def __init__(self, index: VectorIndex, timeout: float) -> None:
        self._index = index
        self._timeout = timeout


    async def search(self, query_vector: Sequence[float], owner_id: int | None, sub_owner_id: int | None, top_k: int) -> StageResult[list[SearchCandidate]]:
        """
        Return up to *top_k* candidates matching the partition filter.

        ``None`` identifiers leave that field unrestricted.  Any failure
        (timeout, index error, bad dimension) is logged and returned as a
        failed result; callers treat it as "no relevant memory".
        """
        if top_k < 1:
            return StageResult.failure(IndexQueryError(f"top_k must be ≥ 1, got {top_k}"))

        flt = partition_filter(owner_id, sub_owner_id)
        t_start = time.perf_counter()
        try:
            candidates = await asyncio.wait_for(asyncio.to_thread(self._index.search, query_vector, flt, top_k), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error("[SEARCH] Index query timed out after %.1fs (filter=%s).", self._timeout, describe(flt))
            return StageResult.failure(IndexQueryError(f"index query timed out after {self._timeout}s"))
        except Exception as exc:
            logger.exception("[SEARCH] Index query failed (filter=%s).", describe(flt))
            return StageResult.failure(IndexQueryError(str(exc)))

        logger.info("[SEARCH] %d candidate(s) for filter=%s, top_k=%d in %.1fms", len(candidates), describe(flt), top_k, (time.perf_counter() - t_start) * 1000)
        return StageResult.success(list(candidates))


# ══════════════════════════════════════════════════════════════════════
#  RE-RANKING
# ══════════════════════════════════════════════════════════════════════


class Reranker:
    """
    Lexical-overlap re-ranker.

    Algorithm
    ---------
    1. Split the query on whitespace into lower-cased keywords.
    2. For each candidate with a known source record,
       ``bonus = matched_keywords / total_keywords`` where a keyword
       matches if it is a substring of the record content
       (case-insensitive).
    3. ``blended = raw × vector_weight + bonus × keyword_weight``.
       Candidates whose record is missing keep ``blended = raw``.
    4. Stable sort, descending by ``blended``.

    The blend is always recomputed from ``raw_score``, so re-ranking the
    same list twice yields the same order.
    """

    __slots__ = ("_vector_weight", "_keyword_weight")

    def __init__(self, vector_weight: float = 0.7, keyword_weight: float = 0.3) -> None:
        self._vector_weight = vector_weight
        self._keyword_weight = keyword_weight


    def rerank(self, candidates: list[SearchCandidate], query_text: str, records: Mapping[int, MemoryRecord]) -> list[SearchCandidate]:
        keywords = extract_keywords(query_text)

        for candidate in candidates:
            record = records.get(candidate.record_id)
            if record is None:
                logger.debug("[RERANK] record %d missing — keeping raw score %.3f", candidate.record_id, candidate.raw_score)
                candidate.blended_score = candidate.raw_score
                continue

            bonus = keyword_bonus(record.content, keywords)
            candidate.blended_score = candidate.raw_score * self._vector_weight + bonus * self._keyword_weight

        ranked = sorted(candidates, key=lambda c: c.blended_score, reverse=True)
        logger.debug("[RERANK] %d candidate(s), %d keyword(s): %s", len(ranked), len(keywords), [(c.record_id, round(c.blended_score, 3)) for c in ranked])
        return ranked


def select_top_k(candidates: Sequence[SearchCandidate], min_score: float, top_k: int) -> list[SearchCandidate]:
    """
    Drop candidates with ``blended_score < min_score`` and repeated
    ``record_id``s (the first, highest-ranked one wins), then keep the
    first *top_k*.  Fewer than *top_k* results is a normal outcome.
    """
    seen: set[int] = set()
    passed: list[SearchCandidate] = []
    for candidate in candidates:
        if candidate.blended_score < min_score or candidate.record_id in seen:
            continue
        seen.add(candidate.record_id)
        passed.append(candidate)
    return passed[:top_k]


# ══════════════════════════════════════════════════════════════════════
#  CONTEXT ASSEMBLY
# ══════════════════════════════════════════════════════════════════════


class ContextAssembler:
    """
    Format ranked memory records into a plain-text prompt fragment.

    Each entry is ``[rank] (YYYY-MM-DD) content`` with content flattened to
    one line, section-marker runs defused, and cut to ``char_budget``
    characters.  An empty selection yields ``NO_MEMORY_PLACEHOLDER``.
    """

    __slots__ = ("_char_budget",)

    def __init__(self, char_budget: int | None = 400) -> None:
        self._char_budget = char_budget


    def assemble(self, records: Sequence[MemoryRecord], label: str | None = None) -> str:
        if not records:
            return NO_MEMORY_PLACEHOLDER

        blocks: list[str] = []
        if label and label.strip():
            blocks.append(CONTEXT_LABEL_TEMPLATE.format(label=self._sanitise(label, 80)))

        for rank, record in enumerate(records, 1):
            blocks.append(CONTEXT_ENTRY_TEMPLATE.format(rank=rank, date=self._format_date(record), content=self._sanitise(record.content, self._char_budget)))

        return "\n\n".join(blocks)


    @staticmethod
    def _sanitise(text: str, budget: int | None) -> str:
        return truncate(neutralise_delimiters(clean_text(text)), budget)


    @staticmethod
    def _format_date(record: MemoryRecord) -> str:
        created = record.created_at
        if created is None:
            return UNKNOWN_DATE
        return created.date().isoformat()


# ── Factory ────────────────────────────────────────────────────────────

def build_stages(index: VectorIndex, config: RetrievalConfig) -> tuple[SimilaritySearch, Reranker, ContextAssembler]:
    """Construct the three stateful stages from one ``RetrievalConfig``."""
    return (
        SimilaritySearch(index, timeout=config.search_timeout_seconds),
        Reranker(vector_weight=config.vector_weight, keyword_weight=config.keyword_weight),
        ContextAssembler(char_budget=config.context_char_budget),
    )
