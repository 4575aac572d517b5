"""
Petlog RAG - MemoryVectorIndex
===============================
OOP wrapper around LanceDB providing the vector-index operations the
retrieval pipeline consumes:
  • Table creation with a strict PyArrow schema (fixed-size vector column)
  • ``insert`` of one memory vector with its scalar metadata
  • Filtered cosine nearest-neighbour ``search``
  • ``delete`` by metadata filter

Design decisions:
  • **Singleton DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock issues.
  • **Dimensionality invariant** — every inserted or queried vector is
    checked against the dimension fixed at construction time.
  • **No in-place update** — LanceDB rows are deleted and re-added;
    callers go through ``MemoryIngestor.update`` for that.
  • **Scores** — LanceDB reports cosine *distance* (``1 - cos``); it is
    converted back to a similarity clamped to ``[0, 1]``.

Usage:
    from petlog_rag.src.database.vector_store import MemoryVectorIndex
    index = MemoryVectorIndex(dimension=1024)
    index.insert(42, vector, {"owner_id": 1, "sub_owner_id": 5, "content": "..."})
    hits = index.search(query_vector, partition_filter(1, 5), top_k=6)
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import lancedb
import pyarrow as pa

from petlog_rag.config.settings import settings
from petlog_rag.src.core.errors import check_dimension
from petlog_rag.src.core.filters import Filter, describe
from petlog_rag.src.core.models import SearchCandidate
from petlog_rag.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
IndexMetadata = dict[str, int | str]
IndexRow = dict[str, int | str | float | list[float]]

_OUT_FIELDS = ["record_id", "owner_id", "sub_owner_id", "content"]
_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


@runtime_checkable
class VectorIndex(Protocol):
    """Operations the pipeline needs from a vector index."""

    dimension: int

    def insert(self, record_id: int, vector: Sequence[float], metadata: IndexMetadata) -> None: ...

    def search(self, vector: Sequence[float], flt: Filter | None, top_k: int) -> list[SearchCandidate]: ...

    def delete(self, flt: Filter) -> None: ...


def build_schema(dimension: int) -> pa.Schema:
    """PyArrow schema for the memory table with a *dimension*-wide vector."""
    return pa.schema([
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("record_id", pa.int64()),
        pa.field("owner_id", pa.int64()),
        pa.field("sub_owner_id", pa.int64()),
        pa.field("content", pa.utf8()),
    ])


def distance_to_score(distance: float) -> float:
    """Convert LanceDB cosine distance to a similarity in ``[0, 1]``."""
    return max(0.0, min(1.0, 1.0 - float(distance)))


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """Return a thread-safe **singleton** ``lancedb.DBConnection`` for *db_path*."""
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


class MemoryVectorIndex:
    """
    LanceDB-backed vector index for memory records.

    Parameters
    ----------
    dimension
        Fixed vector length for this index.  Defaults to
        ``settings.EMBEDDING_DIMENSION``.
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Override the table name.  Defaults to ``settings.LANCEDB_TABLE_NAME``.
    """

    __slots__ = ("dimension", "_db_path", "_table_name", "db", "table")

    def __init__(self, dimension: int | None = None, db_path: str | None = None, table_name: str | None = None) -> None:
        self.dimension: int = dimension or settings.EMBEDDING_DIMENSION
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name or settings.LANCEDB_TABLE_NAME
        self.db: lancedb.DBConnection | None = None
        self.table: lancedb.table.Table | None = None
        self._connect()


    def _connect(self) -> None:
        """Open (or re-use) the LanceDB connection and initialise the table."""
        try:
            self.db = _get_connection(self._db_path)

            if self._table_name in self.db.table_names():
                self.table = self.db.open_table(self._table_name)
                existing_dim = self.table.schema.field("vector").type.list_size
                if existing_dim != self.dimension:
                    raise ValueError(f"Table '{self._table_name}' stores {existing_dim}-d vectors, index configured for {self.dimension}-d.")
                logger.info("Opened existing table '%s' (%d rows).", self._table_name, self.table.count_rows())
            else:
                self.table = self.db.create_table(self._table_name, schema=build_schema(self.dimension))
                logger.info("Created new table '%s' (%d-d, cosine).", self._table_name, self.dimension)

        except OSError as exc:
            logger.error("LanceDB filesystem error at %s: %s", self._db_path, exc)
            raise


    def _require_table(self) -> lancedb.table.Table:
        if self.table is None:
            raise RuntimeError("Vector table is not initialised. Call _connect() first.")
        return self.table


    def insert(self, record_id: int, vector: Sequence[float], metadata: IndexMetadata) -> None:
        """
        Persist one memory vector.

        Raises
        ------
        DimensionMismatchError
            ``len(vector) != self.dimension``.
        """
        table = self._require_table()
        check_dimension(vector, self.dimension)

        row: IndexRow = {
            "vector": [float(v) for v in vector],
            "record_id": int(record_id),
            "owner_id": int(metadata["owner_id"]),
            "sub_owner_id": int(metadata["sub_owner_id"]),
            "content": str(metadata.get("content", "")),
        }
        table.add([row])
        logger.info("Inserted vector for record_id=%d (owner=%s, sub_owner=%s).", record_id, row["owner_id"], row["sub_owner_id"])


    def search(self, vector: Sequence[float], flt: Filter | None, top_k: int) -> list[SearchCandidate]:
        """
        Cosine nearest-neighbour search restricted by *flt*.

        Returns candidates in descending similarity order, as LanceDB
        ranks them.  No score threshold is applied.
        """
        table = self._require_table()
        check_dimension(vector, self.dimension)
        if top_k < 1:
            raise ValueError(f"top_k must be ≥ 1, got {top_k}")

        query = table.search([float(v) for v in vector]).distance_type("cosine").select(_OUT_FIELDS).limit(top_k)
        if flt is not None:
            query = query.where(flt.to_sql(), prefilter=True)

        rows: list[IndexRow] = query.to_list()
        logger.debug("Search (filter=%s, top_k=%d) returned %d rows.", describe(flt), top_k, len(rows))

        return [
            SearchCandidate(
                record_id=int(row["record_id"]),
                raw_score=distance_to_score(row["_distance"]),
                owner_id=int(row["owner_id"]),
                sub_owner_id=int(row["sub_owner_id"]),
                content=str(row["content"]),
            )
            for row in rows
        ]


    def delete(self, flt: Filter) -> None:
        """Delete every row matching *flt*.  An explicit filter is required."""
        if flt is None:
            raise ValueError("Refusing to delete without a filter.")
        table = self._require_table()
        table.delete(flt.to_sql())
        logger.info("Deleted vectors where %s.", flt.to_expression())


    def count(self) -> int:
        """Return the total number of rows in the table."""
        if self.table is None:
            return 0
        return self.table.count_rows()


    def drop_table(self) -> None:
        """Drop the vector table (useful for testing / re-indexing)."""
        if self.db is None:
            logger.warning("No database connection; nothing to drop.")
            return
        try:
            self.db.drop_table(self._table_name)
            self.table = None
            logger.info("Dropped table '%s'.", self._table_name)
        except (ValueError, FileNotFoundError):
            logger.warning("Table '%s' does not exist — nothing to drop.", self._table_name)


    def __repr__(self) -> str:
        return f"MemoryVectorIndex(db='{self._db_path}', table='{self._table_name}', dim={self.dimension}, rows={self.count()})"
