"""
Petlog RAG - Metadata Filters
==============================
A small tagged union for vector-index metadata filters.

Filters are built from ``Equals`` clauses combined with ``And`` instead of
concatenating strings, and each filter can render itself into:

- ``to_expression()`` — the canonical ``field == literal && ...`` form
  used in logs and by Milvus-style indexes;
- ``to_sql()`` — the SQL ``WHERE`` dialect LanceDB expects
  (``field = literal AND ...``);
- ``matches(row)`` — in-memory evaluation against a metadata mapping.

Usage:
    from petlog_rag.src.core.filters import partition_filter
    flt = partition_filter(owner_id=1, sub_owner_id=5)
    flt.to_expression()   # "owner_id == 1 && sub_owner_id == 5"
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

# Scalar metadata columns the index exposes for filtering.
FILTERABLE_FIELDS: frozenset[str] = frozenset({"record_id", "owner_id", "sub_owner_id"})

FilterValue = int | str


def _literal(value: FilterValue) -> str:
    if isinstance(value, bool):
        raise TypeError("boolean filter values are not supported")
    if isinstance(value, int):
        return str(value)
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True, slots=True)
class Equals:
    field: str
    value: FilterValue

    def __post_init__(self) -> None:
        if self.field not in FILTERABLE_FIELDS:
            raise ValueError(f"Unknown filter field '{self.field}'. Allowed: {sorted(FILTERABLE_FIELDS)}")
        _literal(self.value)

    def to_expression(self) -> str:
        return f"{self.field} == {_literal(self.value)}"

    def to_sql(self) -> str:
        return f"{self.field} = {_literal(self.value)}"

    def matches(self, row: Mapping[str, object]) -> bool:
        return row.get(self.field) == self.value


@dataclass(frozen=True, slots=True)
class And:
    clauses: tuple[Equals, ...]

    def __post_init__(self) -> None:
        if not self.clauses:
            raise ValueError("And() needs at least one clause")

    def to_expression(self) -> str:
        return " && ".join(c.to_expression() for c in self.clauses)

    def to_sql(self) -> str:
        return " AND ".join(c.to_sql() for c in self.clauses)

    def matches(self, row: Mapping[str, object]) -> bool:
        return all(c.matches(row) for c in self.clauses)


Filter = Equals | And


def partition_filter(owner_id: int | None = None, sub_owner_id: int | None = None) -> Filter | None:
    """
    Build the owner / sub-owner partition filter.

    Every non-None identifier contributes one equality; ``None`` means
    "no restriction on this field".  Returns ``None`` when both are
    ``None`` (unrestricted search).
    """
    clauses: list[Equals] = []
    if owner_id is not None:
        clauses.append(Equals("owner_id", owner_id))
    if sub_owner_id is not None:
        clauses.append(Equals("sub_owner_id", sub_owner_id))

    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return And(tuple(clauses))


def describe(flt: Filter | None) -> str:
    """Log-friendly rendering; ``<none>`` for an unrestricted search."""
    return flt.to_expression() if flt is not None else "<none>"
