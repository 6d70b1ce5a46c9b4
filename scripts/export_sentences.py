"""CLI entrypoint for exporting searched sentences as a JSON dump."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dateutil import parser as dt_parser

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from classified_sentences.config import AppConfig  # noqa: E402
from classified_sentences.schemas import ClassifiedSentenceStatus, SentencesQuery  # noqa: E402
from classified_sentences.service import SentenceAdminService  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export classified sentences to a JSON dump.")
    parser.add_argument(
        "--config",
        type=str,
        default=str(PROJECT_ROOT / "config.yaml"),
        help="Path to YAML config.",
    )
    parser.add_argument("--application", required=True, help="Application id.")
    parser.add_argument("--language", default=None)
    parser.add_argument("--intent", default=None)
    parser.add_argument("--search", default=None, help="Case-insensitive regular expression on the text.")
    parser.add_argument(
        "--status",
        action="append",
        choices=[s.value for s in ClassifiedSentenceStatus],
        default=[],
        help="Status to include (repeatable).",
    )
    parser.add_argument("--modified-after", default=None, help="Only sentences updated after this date.")
    parser.add_argument("--output", default=None, help="Dump path (defaults to the configured dump dir).")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = AppConfig.from_yaml(args.config)
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    query = SentencesQuery(
        application_id=args.application,
        language=args.language,
        intent_id=args.intent,
        search=args.search,
        status={ClassifiedSentenceStatus(s) for s in args.status},
        modified_after=dt_parser.parse(args.modified_after) if args.modified_after else None,
    )
    output = args.output or str(Path(config.paths.dump_dir) / f"{args.application}.json")

    service = SentenceAdminService(config)
    try:
        exported = service.export_dump(query, output)
    finally:
        service.close()
    print(f"Exported {exported} sentences to {output}")


if __name__ == "__main__":
    main()
