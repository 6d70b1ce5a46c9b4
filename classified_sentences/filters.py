"""Predicate clauses composed into SQL filters over classified sentences.

Each clause renders itself to a SQL fragment plus its bound parameters.
``compose`` joins the clauses that are present with ``AND``; ``None`` entries
stand for absent optional filters and are dropped, so callers can build a
filter from optional parts in a single list.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple

from .schemas import as_utc

COLUMNS = {
    "text_key",
    "full_text",
    "language",
    "application_id",
    "creation_date",
    "update_date",
    "status",
    "intent_id",
}

ENTITY_ATTRIBUTES = {"type", "role"}


def to_iso(value: datetime) -> str:
    """UTC ISO-8601 with fixed precision, so stored strings sort chronologically."""
    return as_utc(value).isoformat(timespec="microseconds")


def sql_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    return value


def _check_column(column: str) -> None:
    if column not in COLUMNS:
        raise ValueError(f"Unknown sentence column: {column}")


class Clause:
    """A single predicate of a sentence filter."""

    def to_sql(self) -> Tuple[str, List[Any]]:
        raise NotImplementedError


@dataclass(frozen=True)
class Eq(Clause):
    column: str
    value: Any

    def __post_init__(self) -> None:
        _check_column(self.column)

    def to_sql(self) -> Tuple[str, List[Any]]:
        return f"{self.column} = ?", [sql_value(self.value)]


@dataclass(frozen=True)
class NotEq(Clause):
    column: str
    value: Any

    def __post_init__(self) -> None:
        _check_column(self.column)

    def to_sql(self) -> Tuple[str, List[Any]]:
        return f"{self.column} != ?", [sql_value(self.value)]


@dataclass(frozen=True)
class In(Clause):
    column: str
    values: Tuple[Any, ...]

    def __post_init__(self) -> None:
        _check_column(self.column)

    def to_sql(self) -> Tuple[str, List[Any]]:
        if not self.values:
            return "0", []
        placeholders = ",".join("?" for _ in self.values)
        return f"{self.column} IN ({placeholders})", [sql_value(v) for v in self.values]


@dataclass(frozen=True)
class Range(Clause):
    """Bounded interval; by default ``lower < column <= upper``."""

    column: str
    lower: Any = None
    upper: Any = None
    lower_inclusive: bool = False
    upper_inclusive: bool = True

    def __post_init__(self) -> None:
        _check_column(self.column)
        if self.lower is None and self.upper is None:
            raise ValueError("Range needs at least one bound")

    def to_sql(self) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        params: List[Any] = []
        if self.upper is not None:
            parts.append(f"{self.column} {'<=' if self.upper_inclusive else '<'} ?")
            params.append(sql_value(self.upper))
        if self.lower is not None:
            parts.append(f"{self.column} {'>=' if self.lower_inclusive else '>'} ?")
            params.append(sql_value(self.lower))
        return " AND ".join(parts), params


@dataclass(frozen=True)
class TextMatch(Clause):
    """Exact equality, or a case-insensitive regular expression search."""

    column: str
    pattern: str
    exact: bool = False

    def __post_init__(self) -> None:
        _check_column(self.column)

    def to_sql(self) -> Tuple[str, List[Any]]:
        if self.exact:
            return f"{self.column} = ?", [self.pattern]
        return f"{self.column} REGEXP ?", [self.pattern]


@dataclass(frozen=True)
class EntityMatch(Clause):
    """At least one top-level entity has ``attribute == value``."""

    attribute: str
    value: str

    def __post_init__(self) -> None:
        if self.attribute not in ENTITY_ATTRIBUTES:
            raise ValueError(f"Unknown entity attribute: {self.attribute}")

    def to_sql(self) -> Tuple[str, List[Any]]:
        return (
            "EXISTS (SELECT 1 FROM json_each(classified_sentence.entities) AS e "
            f"WHERE json_extract(e.value, '$.{self.attribute}') = ?)",
            [self.value],
        )


def compose(clauses: Iterable[Optional[Clause]]) -> Tuple[str, List[Any]]:
    """AND the present clauses; returns a WHERE fragment (possibly empty) and params."""
    where: List[str] = []
    params: List[Any] = []
    for clause in clauses:
        if clause is None:
            continue
        sql, clause_params = clause.to_sql()
        where.append(f"({sql})")
        params.extend(clause_params)
    where_sql = f"WHERE {' AND '.join(where)}" if where else ""
    return where_sql, params
