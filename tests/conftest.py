from datetime import datetime, timedelta, timezone

import pytest

from classified_sentences.schemas import (
    Classification,
    ClassifiedSentence,
    ClassifiedSentenceStatus,
)
from classified_sentences.storage import SQLiteSentenceStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    s = SQLiteSentenceStore.open(str(tmp_path / "sentences.db"))
    yield s
    s.close()


@pytest.fixture
def make_sentence():
    def _make(
        text="book a flight",
        language="en",
        application_id="app1",
        intent_id="I1",
        entities=None,
        status=ClassifiedSentenceStatus.inbox,
        minutes=0,
    ):
        when = T0 + timedelta(minutes=minutes)
        return ClassifiedSentence(
            text=text,
            language=language,
            application_id=application_id,
            creation_date=when,
            update_date=when,
            status=status,
            classification=Classification(intent_id, list(entities or [])),
        )

    return _make
