"""SQLite document storage for classified sentences."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from dateutil import parser as dt_parser

from .errors import InvalidQuery, StoreFailure
from .filters import Clause, EntityMatch, Eq, In, NotEq, Range, TextMatch, compose, to_iso
from .schemas import (
    UNKNOWN_INTENT,
    Classification,
    ClassifiedEntity,
    ClassifiedSentence,
    ClassifiedSentenceStatus,
    EntityDefinition,
    SentencesQuery,
    SentencesQueryResult,
    text_key,
)

logger = logging.getLogger(__name__)

EntityTransform = Callable[[List[ClassifiedEntity]], List[ClassifiedEntity]]

UPSERT_SQL = """
INSERT INTO classified_sentence (
    text_key, full_text, language, application_id, creation_date, update_date,
    status, intent_id, entities, last_intent_probability, last_entity_probability
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(text_key, language, application_id) DO UPDATE SET
    full_text=excluded.full_text,
    creation_date=excluded.creation_date,
    update_date=excluded.update_date,
    status=excluded.status,
    intent_id=excluded.intent_id,
    entities=excluded.entities,
    last_intent_probability=excluded.last_intent_probability,
    last_entity_probability=excluded.last_entity_probability
"""


def _regexp(pattern: str, value: Optional[str]) -> bool:
    if value is None:
        return False
    return re.search(pattern, value, re.IGNORECASE) is not None


def _entities_json(entities: List[ClassifiedEntity]) -> str:
    return json.dumps([entity.to_dict() for entity in entities], ensure_ascii=False)


def _load_entities(raw: str) -> List[ClassifiedEntity]:
    return [ClassifiedEntity.from_dict(item) for item in json.loads(raw or "[]")]


def _row_to_sentence(row: sqlite3.Row) -> ClassifiedSentence:
    return ClassifiedSentence(
        text=row["full_text"],
        language=row["language"],
        application_id=row["application_id"],
        creation_date=dt_parser.isoparse(row["creation_date"]),
        update_date=dt_parser.isoparse(row["update_date"]),
        status=ClassifiedSentenceStatus(row["status"]),
        classification=Classification(
            intent_id=row["intent_id"],
            entities=_load_entities(row["entities"]),
        ),
        last_intent_probability=row["last_intent_probability"],
        last_entity_probability=row["last_entity_probability"],
    )


def _prune_sub_entities(
    entities: List[ClassifiedEntity], entity_type: str, role: str, level: int
) -> List[ClassifiedEntity]:
    """Drop sub-entities with ``role`` under ``entity_type`` parents ``level`` levels down."""
    out: List[ClassifiedEntity] = []
    for entity in entities:
        if level <= 1:
            if entity.type == entity_type:
                entity = replace(
                    entity,
                    sub_entities=[sub for sub in entity.sub_entities if sub.role != role],
                )
        else:
            entity = replace(
                entity,
                sub_entities=_prune_sub_entities(entity.sub_entities, entity_type, role, level - 1),
            )
        out.append(entity)
    return out


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        logger.error("Sentence store operation '%s' failed: %s", operation, exc)
        raise StoreFailure(f"{operation} failed: {exc}") from exc


class SQLiteSentenceStore:
    """Persists classified sentences; runs filtered queries and bulk rewrites.

    Writes are upserts keyed on ``(text_key, language, application_id)``.
    Bulk operations run in a single transaction. Per-sentence batch operations
    commit sentence by sentence: a failure midway leaves the earlier sentences
    updated, and rerunning the batch is safe.
    """

    def __init__(
        self,
        db_path: str,
        unknown_intent_id: str = UNKNOWN_INTENT,
        sub_entity_levels: int = 1,
    ):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with _store_errors("connect"):
            self.conn = sqlite3.connect(db_path)
            self.conn.row_factory = sqlite3.Row
            self.conn.create_function("REGEXP", 2, _regexp, deterministic=True)
        self.unknown_intent_id = unknown_intent_id
        self.sub_entity_levels = max(1, sub_entity_levels)

    @classmethod
    def open(cls, db_path: str, **kwargs) -> "SQLiteSentenceStore":
        """Connect and bring the schema up to date."""
        store = cls(db_path, **kwargs)
        store.migrate()
        return store

    def migrate(self) -> None:
        """Create the table and its indexes; safe to run repeatedly."""
        with _store_errors("migrate"), self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS classified_sentence (
                    text_key TEXT NOT NULL,
                    full_text TEXT NOT NULL,
                    language TEXT NOT NULL,
                    application_id TEXT NOT NULL,
                    creation_date TEXT NOT NULL,
                    update_date TEXT NOT NULL,
                    status TEXT NOT NULL,
                    intent_id TEXT NOT NULL,
                    entities TEXT NOT NULL DEFAULT '[]',
                    last_intent_probability REAL,
                    last_entity_probability REAL
                )
                """
            )
            self.conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_sentence_key "
                "ON classified_sentence(text_key, language, application_id)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sentence_language_app_status "
                "ON classified_sentence(language, application_id, status)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sentence_status ON classified_sentence(status)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sentence_update_date ON classified_sentence(update_date)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sentence_language_status_intent "
                "ON classified_sentence(language, status, intent_id)"
            )

    def get_sentences(
        self,
        intents: Optional[Iterable[str]] = None,
        language: Optional[str] = None,
        status: Optional[ClassifiedSentenceStatus] = None,
    ) -> List[ClassifiedSentence]:
        intent_ids = None if intents is None else tuple(intents)
        if not intent_ids and language is None and status is None:
            raise InvalidQuery("At least one of intents, language or status must be given.")
        where_sql, params = compose(
            [
                In("intent_id", intent_ids) if intent_ids is not None else None,
                Eq("language", language) if language is not None else None,
                Eq("status", status) if status is not None else None,
            ]
        )
        return self._find(where_sql, params)

    def save(self, sentence: ClassifiedSentence) -> None:
        with _store_errors("save"), self.conn:
            self.conn.execute(UPSERT_SQL, self._payload(sentence))

    def switch_sentences_status(
        self, sentences: List[ClassifiedSentence], new_status: ClassifiedSentenceStatus
    ) -> List[ClassifiedSentence]:
        return self._save_each(replace(sentence, status=new_status) for sentence in sentences)

    def delete_sentences_by_status(self, status: ClassifiedSentenceStatus) -> int:
        return self._delete("delete_sentences_by_status", [Eq("status", status)])

    def delete_sentences_by_application_id(self, application_id: str) -> int:
        return self._delete("delete_sentences_by_application_id", [Eq("application_id", application_id)])

    def search(self, query: SentencesQuery) -> SentencesQueryResult:
        where_sql, params = compose(self._search_clauses(query))
        logger.debug("search filter: %s %s", where_sql, params)
        with _store_errors("search"):
            row = self.conn.execute(
                f"SELECT COUNT(*) AS n FROM classified_sentence {where_sql}", params
            ).fetchone()
            count = int(row["n"])
            logger.debug("count : %s", count)
            if count <= query.start:
                return SentencesQueryResult(total=0, sentences=[])
            rows = self.conn.execute(
                f"""
                SELECT * FROM classified_sentence
                {where_sql}
                ORDER BY update_date DESC
                LIMIT ? OFFSET ?
                """,
                [*params, query.size, query.start],
            ).fetchall()
        return SentencesQueryResult(total=count, sentences=[_row_to_sentence(r) for r in rows])

    def switch_sentences_intent(
        self, application_id: str, old_intent_id: str, new_intent_id: str
    ) -> int:
        """Move every sentence of an intent to another one, back to the inbox without entities."""
        where_sql, params = compose(
            [Eq("application_id", application_id), Eq("intent_id", old_intent_id)]
        )
        with _store_errors("switch_sentences_intent"), self.conn:
            cursor = self.conn.execute(
                f"UPDATE classified_sentence SET intent_id = ?, entities = '[]', status = ? {where_sql}",
                [new_intent_id, ClassifiedSentenceStatus.inbox.value, *params],
            )
        logger.info(
            "Switched %d sentences of application %s from intent %s to %s",
            cursor.rowcount,
            application_id,
            old_intent_id,
            new_intent_id,
        )
        return cursor.rowcount

    def switch_sentences_intent_for(
        self, sentences: List[ClassifiedSentence], new_intent_id: str
    ) -> List[ClassifiedSentence]:
        """Per-sentence intent change; moving to the unknown intent drops the entities."""
        clear_entities = new_intent_id == self.unknown_intent_id

        def switched(sentence: ClassifiedSentence) -> ClassifiedSentence:
            classification = replace(sentence.classification, intent_id=new_intent_id)
            if clear_entities:
                classification = replace(classification, entities=[])
            return replace(sentence, classification=classification)

        return self._save_each(switched(sentence) for sentence in sentences)

    def switch_sentences_entity(
        self,
        sentences: List[ClassifiedSentence],
        old_entity: EntityDefinition,
        new_entity: EntityDefinition,
    ) -> List[ClassifiedSentence]:
        """Rename matching entities; renamed ones move after the untouched ones."""

        def renamed(sentence: ClassifiedSentence) -> ClassifiedSentence:
            entities = sentence.classification.entities
            kept = [e for e in entities if not old_entity.matches(e)]
            moved = [
                replace(e, type=new_entity.entity_type_name, role=new_entity.role)
                for e in entities
                if old_entity.matches(e)
            ]
            return replace(sentence, classification=replace(sentence.classification, entities=kept + moved))

        return self._save_each(renamed(sentence) for sentence in sentences)

    def remove_entity_from_sentences(
        self, application_id: str, intent_id: str, entity_type: str, role: str
    ) -> int:
        def prune(entities: List[ClassifiedEntity]) -> List[ClassifiedEntity]:
            return [e for e in entities if not (e.role == role and e.type == entity_type)]

        return self._rewrite_entities(
            "remove_entity_from_sentences",
            [
                Eq("application_id", application_id),
                Eq("intent_id", intent_id),
                EntityMatch("role", role),
            ],
            prune,
        )

    def remove_sub_entity_from_sentences(self, application_id: str, entity_type: str, role: str) -> int:
        def prune(entities: List[ClassifiedEntity]) -> List[ClassifiedEntity]:
            for level in range(1, self.sub_entity_levels + 1):
                entities = _prune_sub_entities(entities, entity_type, role, level)
            return entities

        return self._rewrite_entities(
            "remove_sub_entity_from_sentences",
            [Eq("application_id", application_id)],
            prune,
        )

    def count(self) -> int:
        with _store_errors("count"):
            row = self.conn.execute("SELECT COUNT(*) AS n FROM classified_sentence").fetchone()
        return int(row["n"]) if row else 0

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "SQLiteSentenceStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _search_clauses(self, query: SentencesQuery) -> List[Optional[Clause]]:
        if not query.application_id:
            raise InvalidQuery("applicationId is required.")
        if query.start < 0 or query.size < 1:
            raise InvalidQuery(f"Invalid page: start={query.start} size={query.size}")

        text_clause = None
        search = (query.search or "").strip()
        if search:
            if query.only_exact_match:
                # stored key is normalized, so the searched text is normalized the same way
                text_clause = TextMatch("text_key", text_key(search), exact=True)
            else:
                try:
                    re.compile(search)
                except re.error as exc:
                    raise InvalidQuery(f"Invalid search expression {search!r}: {exc}") from exc
                text_clause = TextMatch("full_text", search)

        if query.status:
            status_clause: Optional[Clause] = In("status", tuple(query.status))
        elif query.not_status is not None:
            status_clause = NotEq("status", query.not_status)
        else:
            status_clause = None

        upper = query.search_mark.date if query.search_mark is not None else None
        if upper is None and query.modified_after is None:
            time_clause = None
        else:
            time_clause = Range("update_date", lower=query.modified_after, upper=upper)

        return [
            Eq("application_id", query.application_id),
            Eq("language", query.language) if query.language is not None else None,
            text_clause,
            Eq("intent_id", query.intent_id) if query.intent_id is not None else None,
            status_clause,
            EntityMatch("type", query.entity_type) if query.entity_type is not None else None,
            EntityMatch("role", query.entity_role) if query.entity_role is not None else None,
            time_clause,
        ]

    def _save_each(self, sentences: Iterable[ClassifiedSentence]) -> List[ClassifiedSentence]:
        saved: List[ClassifiedSentence] = []
        for sentence in sentences:
            self.save(sentence)
            saved.append(sentence)
        return saved

    def _find(self, where_sql: str, params: list) -> List[ClassifiedSentence]:
        with _store_errors("find"):
            rows = self.conn.execute(
                f"SELECT * FROM classified_sentence {where_sql}", params
            ).fetchall()
        return [_row_to_sentence(row) for row in rows]

    def _delete(self, operation: str, clauses: List[Optional[Clause]]) -> int:
        where_sql, params = compose(clauses)
        with _store_errors(operation), self.conn:
            cursor = self.conn.execute(f"DELETE FROM classified_sentence {where_sql}", params)
        logger.info("%s deleted %d sentences", operation, cursor.rowcount)
        return cursor.rowcount

    def _rewrite_entities(
        self, operation: str, clauses: List[Optional[Clause]], transform: EntityTransform
    ) -> int:
        where_sql, params = compose(clauses)
        updated = 0
        with _store_errors(operation), self.conn:
            # write lock before the read, so no other writer slips in between
            if not self.conn.in_transaction:
                self.conn.execute("BEGIN IMMEDIATE")
            rows = self.conn.execute(
                f"SELECT rowid AS row_id, entities FROM classified_sentence {where_sql}", params
            ).fetchall()
            for row in rows:
                entities = _load_entities(row["entities"])
                pruned = transform(entities)
                if pruned == entities:
                    continue
                self.conn.execute(
                    "UPDATE classified_sentence SET entities = ? WHERE rowid = ?",
                    (_entities_json(pruned), row["row_id"]),
                )
                updated += 1
        logger.info("%s rewrote %d sentences", operation, updated)
        return updated

    @staticmethod
    def _payload(sentence: ClassifiedSentence) -> tuple:
        return (
            text_key(sentence.text),
            sentence.text,
            sentence.language,
            sentence.application_id,
            to_iso(sentence.creation_date),
            to_iso(sentence.update_date),
            ClassifiedSentenceStatus(sentence.status).value,
            sentence.classification.intent_id,
            _entities_json(sentence.classification.entities),
            sentence.last_intent_probability,
            sentence.last_entity_probability,
        )
