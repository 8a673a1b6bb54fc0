#!/usr/bin/env python3
import argparse
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
LIB_DIR = REPO_ROOT / "lib"
sys.path.insert(0, str(LIB_DIR))

from log_review.analysis import AnalysisInputError, discover_deliverable
from log_review.search import search_logs
from log_review.swe_constants import SEARCH_CONTEXT_LINES


def print_hits(label: str, hits) -> None:
    print(f"== {label}: {len(hits)} match(es)")
    for hit in hits:
        start = hit.line_number - len(hit.context_before)
        for offset, line in enumerate(hit.context_before):
            print(f"  {start + offset:>6}  {line}")
        print(f"> {hit.line_number:>6}  {hit.line_content}")
        for offset, line in enumerate(hit.context_after, start=1):
            print(f"  {hit.line_number + offset:>6}  {line}")
        print("  ------")


def main() -> int:
    parser = argparse.ArgumentParser(description="Find a test name in the stage logs.")
    parser.add_argument("test_name", help="Test name to search for.")
    parser.add_argument("--deliverable-dir", help="Folder to discover stage logs from.")
    parser.add_argument("--base-log", help="Log of the base run.")
    parser.add_argument("--before-log", help="Log before the golden patch.")
    parser.add_argument("--after-log", help="Log after the golden patch.")
    parser.add_argument("--agent-log", help="Log after the agent patch.")
    parser.add_argument(
        "--context",
        type=int,
        default=SEARCH_CONTEXT_LINES,
        help=f"Context lines around each hit (default: {SEARCH_CONTEXT_LINES}).",
    )
    parser.add_argument("--json", action="store_true", help="Print hits as JSON.")
    args = parser.parse_args()

    paths: dict[str, Path] = {}
    if args.deliverable_dir:
        try:
            inputs = discover_deliverable(Path(args.deliverable_dir))
        except AnalysisInputError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        paths = {stage.value: path for stage, path in inputs.stage_paths().items()}
    for label in ("base", "before", "after", "agent"):
        value = getattr(args, f"{label}_log")
        if value:
            paths[label] = Path(value)
    if not paths:
        print("error: no logs given.", file=sys.stderr)
        return 1

    missing = [str(path) for path in paths.values() if not path.is_file()]
    if missing:
        print(f"error: log not found: {', '.join(missing)}", file=sys.stderr)
        return 1

    results = search_logs(paths, args.test_name, context=args.context)
    if args.json:
        payload = {label: [hit.to_dict() for hit in hits] for label, hits in results.items()}
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        for label, hits in results.items():
            print_hits(label, hits)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
