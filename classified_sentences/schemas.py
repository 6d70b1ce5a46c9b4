"""Core data structures shared across modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

UNKNOWN_INTENT = "unknown"


def text_key(text: str) -> str:
    """Canonical form of a sentence text used for deduplication."""
    return text.strip().lower()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ClassifiedSentenceStatus(str, Enum):
    """Validation workflow state of a sentence."""

    inbox = "inbox"
    validated = "validated"
    model = "model"
    deleted = "deleted"


@dataclass
class ClassifiedEntity:
    """Entity span of a sentence, possibly composed of sub-entities."""

    type: str
    role: str
    start: int
    end: int
    sub_entities: List["ClassifiedEntity"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "role": self.role,
            "start": self.start,
            "end": self.end,
            "subEntities": [sub.to_dict() for sub in self.sub_entities],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassifiedEntity":
        return cls(
            type=data["type"],
            role=data["role"] if data.get("role") is not None else data["type"],
            start=int(data.get("start", 0)),
            end=int(data.get("end", 0)),
            sub_entities=[cls.from_dict(sub) for sub in data.get("subEntities") or []],
        )


@dataclass
class Classification:
    """Intent and entities assigned to a sentence."""

    intent_id: str
    entities: List[ClassifiedEntity] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intentId": self.intent_id,
            "entities": [entity.to_dict() for entity in self.entities],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Classification":
        return cls(
            intent_id=data.get("intentId") or UNKNOWN_INTENT,
            entities=[ClassifiedEntity.from_dict(e) for e in data.get("entities") or []],
        )


@dataclass
class ClassifiedSentence:
    """Sentence persisted with its classification and validation status."""

    text: str
    language: str
    application_id: str
    creation_date: datetime
    update_date: datetime
    status: ClassifiedSentenceStatus
    classification: Classification
    last_intent_probability: Optional[float] = None
    last_entity_probability: Optional[float] = None


@dataclass
class EntityDefinition:
    """Entity declared on an intent: a type name played under a role."""

    entity_type_name: str
    role: str

    def matches(self, entity: ClassifiedEntity) -> bool:
        return entity.role == self.role and entity.type == self.entity_type_name


@dataclass
class SearchMark:
    """Pagination cursor anchoring the result window at the first page load."""

    date: datetime


@dataclass
class SentencesQuery:
    """Search parameters for the sentence store."""

    application_id: str
    language: Optional[str] = None
    start: int = 0
    size: int = 1
    search: Optional[str] = None
    intent_id: Optional[str] = None
    status: Set[ClassifiedSentenceStatus] = field(default_factory=set)
    not_status: Optional[ClassifiedSentenceStatus] = None
    entity_type: Optional[str] = None
    entity_role: Optional[str] = None
    modified_after: Optional[datetime] = None
    search_mark: Optional[SearchMark] = None
    only_exact_match: bool = False


@dataclass
class SentencesQueryResult:
    """One page of search results with the total match count."""

    total: int
    sentences: List[ClassifiedSentence] = field(default_factory=list)


@dataclass
class UpdateSentencesQuery:
    """Bulk update request over selected or searched sentences."""

    application_id: str
    sentences: List[ClassifiedSentence] = field(default_factory=list)
    search_query: Optional[SentencesQuery] = None
    new_intent_id: Optional[str] = None
    old_entity: Optional[EntityDefinition] = None
    new_entity: Optional[EntityDefinition] = None
    new_status: Optional[ClassifiedSentenceStatus] = None


@dataclass
class UpdateSentencesReport:
    nb_updated_sentences: int = 0
