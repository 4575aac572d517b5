"""
Pytest configuration and shared fakes.

The pipeline depends only on structural types (``Embedder``,
``VectorIndex``, ``RecordStore``), so the fakes below stand in for
Bedrock, LanceDB and MongoDB in unit tests.  ``test_vector_store.py``
exercises the real LanceDB adapter under ``tmp_path``.
"""

import asyncio
import math
import time
from datetime import datetime, timezone

import pytest

from petlog_rag.config.settings import RetrievalConfig
from petlog_rag.src.core.models import MemoryRecord, SearchCandidate

pytest_plugins = ["pytest_asyncio"]

DIM = 4


def unit(*values: float) -> list[float]:
    """Pad to ``DIM`` with zeros."""
    return list(values) + [0.0] * (DIM - len(values))


class FakeEmbedder:
    """Deterministic embedder: looks vectors up by text, with failure knobs."""

    def __init__(self, vectors=None, default=None, dimension=DIM, error=None, delay=0.0):
        self.vectors = dict(vectors or {})
        self.default = default or unit(1.0)
        self.dimension = dimension
        self.error = error
        self.delay = delay
        self.query_calls: list[str] = []
        self.document_calls: list[list[str]] = []

    def _vector(self, text):
        vec = self.vectors.get(text, self.default)
        return list(vec)[: self.dimension] + [0.0] * max(0, self.dimension - len(vec))

    def embed_query(self, text):
        self.query_calls.append(text)
        if self.error is not None:
            raise self.error
        return self._vector(text)

    def embed_documents(self, texts):
        self.document_calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [self._vector(t) for t in texts]

    async def aembed_query(self, text):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.embed_query(text)


def _cosine(a, b):
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


class FakeVectorIndex:
    """
    In-memory, append-only index honouring ``Filter.matches``.  Like
    LanceDB's ``table.add``, inserting an existing id adds a second vector;
    ``rows`` shows the latest row per id and ``entries`` every stored row.

    ``scores`` pins the raw score of given record ids so ranking tests can
    use exact values.
    """

    def __init__(self, dimension=DIM, scores=None, error=None, delay=0.0):
        self.dimension = dimension
        self.entries: list[dict] = []
        self.scores = dict(scores or {})
        self.error = error
        self.delay = delay
        self.search_calls: list[tuple] = []
        self.deleted: list = []

    def insert(self, record_id, vector, metadata):
        assert len(vector) == self.dimension
        self.entries.append({"record_id": record_id, "vector": list(vector), **metadata})

    @property
    def rows(self):
        return {row["record_id"]: row for row in self.entries}

    def vector_count(self, record_id):
        return sum(1 for row in self.entries if row["record_id"] == record_id)

    def search(self, vector, flt, top_k):
        self.search_calls.append((flt, top_k))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        hits = []
        for row in self.entries:
            if flt is not None and not flt.matches(row):
                continue
            score = self.scores.get(row["record_id"], max(0.0, _cosine(vector, row["vector"])))
            hits.append(SearchCandidate(record_id=row["record_id"], raw_score=score, owner_id=row["owner_id"], sub_owner_id=row["sub_owner_id"], content=row.get("content")))
        hits.sort(key=lambda c: c.raw_score, reverse=True)
        return hits[:top_k]

    def delete(self, flt):
        self.deleted.append(flt)
        self.entries = [row for row in self.entries if not flt.matches(row)]


class InMemoryRecordStore:
    def __init__(self, error=None):
        self.records: dict[int, MemoryRecord] = {}
        self.error = error

    async def find_by_id(self, record_id):
        return self.records.get(record_id)

    async def find_many(self, record_ids):
        if self.error is not None:
            raise self.error
        return {rid: self.records[rid] for rid in record_ids if rid in self.records}

    async def save(self, record):
        self.records[record.id] = record

    async def delete(self, record_id):
        return self.records.pop(record_id, None) is not None

    async def mark_vectorized(self, record_id):
        record = self.records.get(record_id)
        if record is None:
            return None
        self.records[record_id] = record.mark_vectorized()
        return self.records[record_id]


def make_record(record_id, content, owner_id=1, sub_owner_id=5, created_at=None, embedding=None):
    return MemoryRecord(
        id=record_id,
        owner_id=owner_id,
        sub_owner_id=sub_owner_id,
        content=content,
        embedding=tuple(embedding or unit(1.0)),
        created_at=created_at or datetime(2025, 1, 2, 9, 30, tzinfo=timezone.utc),
    )


def seed(index, store, record):
    """Put *record* in both the fake index and the fake store."""
    index.insert(record.id, list(record.embedding), {"owner_id": record.owner_id, "sub_owner_id": record.sub_owner_id, "content": record.content})
    store.records[record.id] = record


@pytest.fixture
def config():
    return RetrievalConfig(dimension=DIM, top_k=3, embed_timeout_seconds=1.0, search_timeout_seconds=1.0, retrieval_deadline_seconds=2.0)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def index():
    return FakeVectorIndex()


@pytest.fixture
def store():
    return InMemoryRecordStore()
