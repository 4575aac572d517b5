"""
Petlog RAG - Domain Models
===========================
Plain data carriers shared by the retrieval pipeline, the write path and
the storage adapters.

``MemoryRecord``
    A unit of retrievable knowledge (a diary entry or a health note).
    Immutable; the only permitted change is attaching the "vectorized"
    marker, which returns a new instance.
``SearchCandidate``
    Transient, per-call result of a similarity query.  ``blended_score`` is
    rewritten during re-ranking and is never persisted.
``RetrievalResult``
    What ``MemoryRetriever.retrieve`` hands back to the chat layer.
``DiaryEvent``
    Upstream diary lifecycle event payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class MemoryRecord:
    id: int
    owner_id: int
    sub_owner_id: int
    content: str
    embedding: tuple[float, ...]
    created_at: datetime = field(default_factory=utc_now)
    vectorized_at: datetime | None = None

    def mark_vectorized(self, when: datetime | None = None) -> MemoryRecord:
        """Return a copy carrying the vectorization completion marker."""
        return replace(self, vectorized_at=when or utc_now())

    @property
    def is_vectorized(self) -> bool:
        return self.vectorized_at is not None


@dataclass(slots=True)
class SearchCandidate:
    record_id: int
    raw_score: float
    blended_score: float | None = None
    owner_id: int | None = None
    sub_owner_id: int | None = None
    content: str | None = None

    def __post_init__(self) -> None:
        if self.blended_score is None:
            self.blended_score = self.raw_score


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    context: str
    record_ids: list[int]

    @classmethod
    def empty(cls, placeholder: str) -> RetrievalResult:
        return cls(context=placeholder, record_ids=[])

    @property
    def found(self) -> bool:
        return bool(self.record_ids)


class DiaryEventType(str, Enum):
    CREATED = "DIARY_CREATED"
    UPDATED = "DIARY_UPDATED"
    DELETED = "DIARY_DELETED"


class DiaryEvent(BaseModel):
    """
    Diary lifecycle event as published by the diary service.

    Accepts both the camelCase wire names (``eventType``, ``diaryId`` ...)
    and snake_case.  ``event_type`` stays a plain string so unknown types
    can be logged and skipped instead of failing validation.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: str = Field(alias="eventType")
    diary_id: int = Field(alias="diaryId")
    user_id: int | None = Field(default=None, alias="userId")
    pet_id: int | None = Field(default=None, alias="petId")
    content: str | None = None
    image_url: str | None = Field(default=None, alias="imageUrl")
    created_at: datetime | None = Field(default=None, alias="createdAt")
