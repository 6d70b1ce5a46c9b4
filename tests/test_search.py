from datetime import datetime, timedelta, timezone

import pytest

from classified_sentences.errors import InvalidQuery
from classified_sentences.schemas import (
    ClassifiedEntity,
    ClassifiedSentenceStatus,
    SearchMark,
    SentencesQuery,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _at(minutes):
    return T0 + timedelta(minutes=minutes)


def _texts(result):
    return [s.text for s in result.sentences]


@pytest.fixture
def populated(store, make_sentence):
    store.save(make_sentence(text="Book a flight", intent_id="travel", minutes=1,
                             entities=[ClassifiedEntity("city", "destination", 0, 4)]))
    store.save(make_sentence(text="Cancel my FLIGHT", intent_id="cancel", minutes=2,
                             status=ClassifiedSentenceStatus.validated))
    store.save(make_sentence(text="Réserver un vol", intent_id="travel", language="fr", minutes=3,
                             entities=[ClassifiedEntity("city", "origin", 0, 4)]))
    store.save(make_sentence(text="hello", intent_id="greetings", minutes=4,
                             status=ClassifiedSentenceStatus.model))
    store.save(make_sentence(text="book a hotel", intent_id="travel", application_id="app2", minutes=5))
    return store


def test_results_sorted_by_update_date_descending(populated):
    result = populated.search(SentencesQuery(application_id="app1", size=10))

    assert result.total == 4
    assert _texts(result) == ["hello", "Réserver un vol", "Cancel my FLIGHT", "Book a flight"]
    dates = [s.update_date for s in result.sentences]
    assert all(a >= b for a, b in zip(dates, dates[1:]))


def test_pagination_skips_and_limits(populated):
    result = populated.search(SentencesQuery(application_id="app1", start=1, size=2))

    assert result.total == 4
    assert _texts(result) == ["Réserver un vol", "Cancel my FLIGHT"]


def test_start_beyond_matches_reports_zero_total(populated):
    assert populated.search(SentencesQuery(application_id="app1", start=4, size=10)).total == 0

    result = populated.search(SentencesQuery(application_id="app1", start=10, size=10))
    assert result.total == 0
    assert result.sentences == []


def test_language_and_intent_filters(populated):
    assert _texts(populated.search(SentencesQuery(application_id="app1", language="fr", size=10))) == [
        "Réserver un vol"
    ]
    assert _texts(populated.search(SentencesQuery(application_id="app1", intent_id="travel", size=10))) == [
        "Réserver un vol",
        "Book a flight",
    ]


def test_regex_search_is_case_insensitive(populated):
    result = populated.search(SentencesQuery(application_id="app1", search=" flight ", size=10))

    assert _texts(result) == ["Cancel my FLIGHT", "Book a flight"]
    assert _texts(populated.search(SentencesQuery(application_id="app1", search="^book", size=10))) == [
        "Book a flight"
    ]


def test_exact_match_search_uses_text_key(populated):
    assert _texts(populated.search(
        SentencesQuery(application_id="app1", search="book a FLIGHT", only_exact_match=True, size=10)
    )) == ["Book a flight"]
    assert populated.search(
        SentencesQuery(application_id="app1", search="flight", only_exact_match=True, size=10)
    ).total == 0


def test_blank_search_adds_no_constraint(populated):
    assert populated.search(SentencesQuery(application_id="app1", search="   ", size=10)).total == 4


def test_invalid_regex_fails_before_store_access(populated):
    with pytest.raises(InvalidQuery):
        populated.search(SentencesQuery(application_id="app1", search="(unclosed"))


def test_status_inclusion_takes_precedence_over_exclusion(populated):
    query = SentencesQuery(
        application_id="app1",
        status={ClassifiedSentenceStatus.validated, ClassifiedSentenceStatus.model},
        not_status=ClassifiedSentenceStatus.validated,
        size=10,
    )
    assert _texts(populated.search(query)) == ["hello", "Cancel my FLIGHT"]


def test_status_exclusion(populated):
    query = SentencesQuery(application_id="app1", not_status=ClassifiedSentenceStatus.inbox, size=10)
    assert _texts(populated.search(query)) == ["hello", "Cancel my FLIGHT"]


def test_entity_type_and_role_filters(populated):
    assert populated.search(SentencesQuery(application_id="app1", entity_type="city", size=10)).total == 2
    assert _texts(populated.search(SentencesQuery(application_id="app1", entity_role="origin", size=10))) == [
        "Réserver un vol"
    ]
    query = SentencesQuery(application_id="app1", entity_type="city", entity_role="destination", size=10)
    assert _texts(populated.search(query)) == ["Book a flight"]


def test_search_mark_bounds_window_from_above(populated):
    result = populated.search(SentencesQuery(application_id="app1", search_mark=SearchMark(_at(2)), size=10))
    assert _texts(result) == ["Cancel my FLIGHT", "Book a flight"]


def test_modified_after_is_exclusive(populated):
    result = populated.search(SentencesQuery(application_id="app1", modified_after=_at(3), size=10))
    assert _texts(result) == ["hello"]


def test_search_mark_and_modified_after_combined(store, make_sentence):
    store.save(make_sentence(text="first", minutes=1))
    store.save(make_sentence(text="second", minutes=2))

    result = store.search(
        SentencesQuery(application_id="app1", search_mark=SearchMark(_at(2)), modified_after=_at(1), size=10)
    )
    assert result.total == 1
    assert _texts(result) == ["second"]


def test_application_id_is_required(store):
    with pytest.raises(InvalidQuery):
        store.search(SentencesQuery(application_id=""))


def test_invalid_page_is_rejected(store):
    with pytest.raises(InvalidQuery):
        store.search(SentencesQuery(application_id="app1", start=-1))
    with pytest.raises(InvalidQuery):
        store.search(SentencesQuery(application_id="app1", size=0))
