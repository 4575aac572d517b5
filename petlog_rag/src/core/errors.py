"""
Petlog RAG - Error Taxonomy & Stage Results
=============================================
Every retrieval stage returns a ``StageResult`` instead of raising, so the
"never propagate to the chat caller" rule is visible in the types: the
orchestrator inspects ``result.ok`` and maps each failure to the empty
retrieval result.

Storage adapters still raise (``DimensionMismatchError``, driver errors);
the stages catch at their boundary and wrap the cause in one of the
``RetrievalError`` subclasses below.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class RetrievalError(Exception):
    """Base class for soft failures inside the retrieval pipeline."""


class EmbeddingError(RetrievalError):
    """Embedding provider unreachable, timed out, or rejected the input."""


class IndexQueryError(RetrievalError):
    """Vector index query failed (network, timeout, malformed filter)."""


class RecordStoreError(RetrievalError):
    """Memory record lookup failed."""


class DimensionMismatchError(ValueError):
    """A vector's length differs from the index's configured dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


def check_dimension(vector: object, expected: int) -> None:
    """Raise ``DimensionMismatchError`` unless ``len(vector) == expected``."""
    actual = len(vector)  # type: ignore[arg-type]
    if actual != expected:
        raise DimensionMismatchError(expected, actual)


@dataclass(frozen=True)
class StageResult(Generic[T]):
    value: T | None = None
    error: RetrievalError | None = None

    @classmethod
    def success(cls, value: T) -> StageResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: RetrievalError) -> StageResult[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
