"""CLI for matching one student profile against a list of lecturer profiles."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from conceptmatch.config import Settings
from conceptmatch.explainer import format_explanation
from conceptmatch.ontology import OntologyLoadError, OntologyValidationError, load_ontology
from conceptmatch.pipeline import MatchingPipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Match a student against lecturers using the concept ontology")
    parser.add_argument(
        "--ontology",
        help="Path to the ontology JSON/YAML file (defaults to ONTOLOGY_PATH)",
    )
    parser.add_argument("--lecturers", required=True, help="JSON file holding a list of lecturer profiles")
    parser.add_argument("--student", required=True, help="JSON file holding one student profile")
    parser.add_argument("--top", type=int, help="Number of matches to show (defaults to MATCH_TOP_N)")
    parser.add_argument(
        "--candidates-out",
        help="Write the concept candidate queue mined from unmatched tokens to this JSON file",
    )
    parser.add_argument("--workers", type=int, help="Score candidates on a thread pool of this size")
    parser.add_argument(
        "--lenient",
        action="store_true",
        help="Accept duplicate or malformed ontology keys (last definition wins)",
    )
    parser.add_argument("--use-llm", action="store_true", help="Ask the configured chat backend for explanations")
    parser.add_argument("--json", action="store_true", help="Print the full run result as JSON")
    return parser


def _read_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.ontology:
        settings.ontology_path = args.ontology
    if args.workers is not None:
        settings.match_max_workers = args.workers if args.workers > 0 else None
    top_n = args.top if args.top is not None else settings.match_top_n

    try:
        lecturers = _read_json(args.lecturers)
        student = _read_json(args.student)
    except (OSError, json.JSONDecodeError) as exc:  # pragma: no cover - CLI validation
        parser.error(f"Unable to read profile input: {exc}")
        return 1
    if not isinstance(lecturers, list):
        parser.error("--lecturers must contain a JSON list")
        return 1
    if not isinstance(student, dict):
        parser.error("--student must contain a JSON object")
        return 1

    try:
        concepts = load_ontology(settings.ontology_path)
        pipeline = MatchingPipeline.from_settings(
            settings,
            concepts=concepts,
            strict=False if args.lenient else None,
        )
    except (OntologyLoadError, OntologyValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    result = pipeline.run(student, lecturers, top_n=top_n, use_llm=args.use_llm)

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    elif not result.matches:
        print("No matching lecturers found.")
    else:
        for position, explained in enumerate(result.matches, start=1):
            name = explained.match.name or explained.match.candidate_id
            print(f"#{position} {name}")
            print(format_explanation(explained.explanation))
            print()

    if args.candidates_out:
        output = Path(args.candidates_out)
        output.parent.mkdir(parents=True, exist_ok=True)
        payload = [candidate.to_dict() for candidate in result.candidates]
        output.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        print(f"Wrote {len(payload)} concept candidate(s) to {output}", file=sys.stderr)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
