"""Administration layer: store setup, dump import/export and cascading rewrites."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List

from .config import AppConfig
from .ingest import SentenceDumpLoader, write_dump
from .schemas import (
    ClassifiedSentence,
    SearchMark,
    SentencesQuery,
    UpdateSentencesQuery,
    UpdateSentencesReport,
    utc_now,
)
from .storage import SQLiteSentenceStore

logger = logging.getLogger(__name__)


class SentenceAdminService:
    """High-level operations composed over the sentence store."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.loader = SentenceDumpLoader()
        self.store = SQLiteSentenceStore.open(
            config.paths.sqlite_path,
            unknown_intent_id=config.store.unknown_intent_id,
            sub_entity_levels=config.store.sub_entity_levels,
        )

    def import_dumps(self, input_paths: Iterable[str]) -> Dict[str, int]:
        """Load dump files and upsert every sentence they hold."""
        sentences = self.loader.load_paths(input_paths)
        for sentence in sentences:
            self.store.save(sentence)
        logger.info("Imported %d sentences", len(sentences))
        return {
            "sentences_loaded": len(sentences),
            "store_total_sentences": self.store.count(),
        }

    def collect(self, query: SentencesQuery) -> List[ClassifiedSentence]:
        """Every sentence matched by ``query``, paging from its ``start``."""
        mark = query.search_mark or SearchMark(date=utc_now())
        page = replace(query, search_mark=mark, size=self.config.store.export_page_size)
        out: List[ClassifiedSentence] = []
        while True:
            result = self.store.search(page)
            out.extend(result.sentences)
            if not result.sentences or page.start + len(result.sentences) >= result.total:
                return out
            page = replace(page, start=page.start + len(result.sentences))

    def export_dump(self, query: SentencesQuery, path: str) -> int:
        sentences = self.collect(query)
        write_dump(path, sentences, application_id=query.application_id, language=query.language)
        logger.info("Exported %d sentences to %s", len(sentences), path)
        return len(sentences)

    def remove_intent(self, application_id: str, intent_id: str) -> int:
        """Sentences of a deleted intent fall back to the unknown intent."""
        return self.store.switch_sentences_intent(
            application_id, intent_id, self.config.store.unknown_intent_id
        )

    def remove_entity(self, application_id: str, intent_id: str, entity_type: str, role: str) -> int:
        return self.store.remove_entity_from_sentences(application_id, intent_id, entity_type, role)

    def remove_sub_entity(self, application_id: str, entity_type: str, role: str) -> int:
        return self.store.remove_sub_entity_from_sentences(application_id, entity_type, role)

    def update_sentences(self, query: UpdateSentencesQuery) -> UpdateSentencesReport:
        """Apply intent, entity and status changes to selected or searched sentences."""
        if query.search_query is not None:
            sentences = self.collect(query.search_query)
        else:
            sentences = [s for s in query.sentences if s.application_id == query.application_id]

        if query.new_intent_id is not None:
            sentences = self.store.switch_sentences_intent_for(sentences, query.new_intent_id)
        if query.old_entity is not None and query.new_entity is not None:
            sentences = self.store.switch_sentences_entity(sentences, query.old_entity, query.new_entity)
        if query.new_status is not None:
            sentences = self.store.switch_sentences_status(sentences, query.new_status)

        return UpdateSentencesReport(nb_updated_sentences=len(sentences))

    def close(self) -> None:
        self.store.close()
