"""Loading and writing JSON sentence dumps."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as dt_parser

from .filters import to_iso
from .schemas import (
    Classification,
    ClassifiedSentence,
    ClassifiedSentenceStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".json"}


def _parse_optional_timestamp(value: object) -> Optional[datetime]:
    if value is None:
        return None
    try:
        if isinstance(value, (int, float)):
            # epoch milliseconds, as produced by the admin console
            return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
        if isinstance(value, str) and value.strip():
            return dt_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    return None


def _parse_status(value: object) -> ClassifiedSentenceStatus:
    try:
        return ClassifiedSentenceStatus(str(value)) if value else ClassifiedSentenceStatus.inbox
    except ValueError:
        logger.warning("Unknown sentence status %r, using inbox", value)
        return ClassifiedSentenceStatus.inbox


def _optional_float(value: object) -> Optional[float]:
    return None if value is None else float(value)


def sentence_to_dict(sentence: ClassifiedSentence) -> Dict[str, Any]:
    return {
        "text": sentence.text,
        "language": sentence.language,
        "applicationId": sentence.application_id,
        "creationDate": to_iso(sentence.creation_date),
        "updateDate": to_iso(sentence.update_date),
        "status": sentence.status.value,
        "classification": sentence.classification.to_dict(),
        "lastIntentProbability": sentence.last_intent_probability,
        "lastEntityProbability": sentence.last_entity_probability,
    }


def sentence_from_dict(
    data: Dict[str, Any],
    application_id: Optional[str] = None,
    language: Optional[str] = None,
) -> Optional[ClassifiedSentence]:
    """Build a sentence from its dump form; ``None`` when the record is unusable."""
    text = str(data.get("text") or "")
    app = data.get("applicationId") or application_id
    lang = data.get("language") or language
    if not text.strip() or not app or not lang:
        return None

    now = utc_now()
    creation = _parse_optional_timestamp(data.get("creationDate")) or now
    update = _parse_optional_timestamp(data.get("updateDate")) or creation
    try:
        return ClassifiedSentence(
            text=text,
            language=str(lang),
            application_id=str(app),
            creation_date=creation,
            update_date=update,
            status=_parse_status(data.get("status")),
            classification=Classification.from_dict(data.get("classification") or {}),
            last_intent_probability=_optional_float(data.get("lastIntentProbability")),
            last_entity_probability=_optional_float(data.get("lastEntityProbability")),
        )
    except (AttributeError, KeyError, TypeError, ValueError):
        return None


class SentenceDumpLoader:
    """Loads sentence dumps (a JSON list, or an object with a ``sentences`` list)."""

    def load_paths(self, inputs: Iterable[str]) -> List[ClassifiedSentence]:
        sentences: List[ClassifiedSentence] = []
        for raw in inputs:
            path = Path(raw)
            if path.is_dir():
                for child in sorted(path.rglob("*")):
                    if child.is_file() and child.suffix.lower() in SUPPORTED_EXTENSIONS:
                        sentences.extend(self.load_file(child))
            elif path.is_file():
                sentences.extend(self.load_file(path))
            else:
                logger.warning("Dump path %s does not exist", path)
        return sentences

    def load_file(self, path: Path) -> List[ClassifiedSentence]:
        raw = path.read_text(encoding="utf-8", errors="ignore")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Skipping %s: invalid JSON (%s)", path, exc)
            return []

        if isinstance(data, list):
            return self._load_records(path, data)
        if isinstance(data, dict):
            return self._load_records(
                path,
                data.get("sentences") or [],
                application_id=data.get("applicationId"),
                language=data.get("language"),
            )
        logger.warning("Skipping %s: unexpected dump layout", path)
        return []

    def _load_records(
        self,
        path: Path,
        records: list,
        application_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> List[ClassifiedSentence]:
        out: List[ClassifiedSentence] = []
        for idx, item in enumerate(records):
            sentence = (
                sentence_from_dict(item, application_id=application_id, language=language)
                if isinstance(item, dict)
                else None
            )
            if sentence is None:
                logger.warning("Skipping malformed record %s#%d", path, idx)
                continue
            out.append(sentence)
        return out


def write_dump(
    path: str,
    sentences: List[ClassifiedSentence],
    application_id: Optional[str] = None,
    language: Optional[str] = None,
) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "applicationId": application_id,
        "language": language,
        "sentences": [sentence_to_dict(sentence) for sentence in sentences],
    }
    with target.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2)
