#!/usr/bin/env python3
import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
LIB_DIR = REPO_ROOT / "lib"
sys.path.insert(0, str(LIB_DIR))

from openai import OpenAIError

from log_review.analysis import AnalysisInputError, discover_deliverable, read_text
from log_review.llm_analyzer import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MODEL,
    LLMResponseError,
    analyze_log,
    create_client,
)
from log_review.manifest import ManifestError, load_manifest
from log_review.swe_constants import Stage

DEFAULT_OUTPUT_DIR = Path("llm_results")


def render_progress(done: int, total: int, bar_width: int = 30) -> str:
    if total <= 0:
        return "Progress: 0/0"
    filled = int(bar_width * done / total)
    bar = "#" * filled + "-" * (bar_width - filled)
    return f"\rProgress: {done}/{total} [{bar}]"


def parse_log_args(values: list[str]) -> dict[Stage, Path]:
    logs = {}
    for value in values:
        stage_name, sep, path = value.partition("=")
        if not sep or not path:
            raise ValueError(f"--log expects STAGE=PATH, got: {value}")
        logs[Stage(stage_name.strip().lower())] = Path(path)
    return logs


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Classify manifest tests in stage logs with a language model."
    )
    parser.add_argument("--deliverable-dir", help="Folder to discover manifest and logs from.")
    parser.add_argument("--manifest", help="JSON with fail_to_pass/pass_to_pass lists.")
    parser.add_argument(
        "--log",
        action="append",
        default=[],
        metavar="STAGE=PATH",
        help="Stage log to classify; repeatable (base, before, after, agent).",
    )
    parser.add_argument(
        "--output-dir",
        default=str(DEFAULT_OUTPUT_DIR),
        help="Directory for <stage>.json results (default: llm_results).",
    )
    parser.add_argument("--model", default=DEFAULT_MODEL, help=f"Model name (default: {DEFAULT_MODEL}).")
    parser.add_argument("--api-base", help="OpenAI API base URL.")
    parser.add_argument("--api-key", help="OpenAI API key (default: OPENAI_API_KEY).")
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=DEFAULT_CHUNK_SIZE,
        help=f"Characters per log chunk (default: {DEFAULT_CHUNK_SIZE}).",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=4,
        help="Logs analyzed in parallel (default: 4).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if args.chunk_size < 1 or args.max_workers < 1:
        print("--chunk-size and --max-workers must be >= 1.", file=sys.stderr)
        return 1

    try:
        logs = parse_log_args(args.log)
        if args.deliverable_dir:
            inputs = discover_deliverable(Path(args.deliverable_dir))
            manifest_path = Path(args.manifest) if args.manifest else inputs.manifest
            discovered = inputs.stage_paths()
            discovered.update(logs)
            logs = discovered
        elif args.manifest:
            manifest_path = Path(args.manifest)
        else:
            raise ValueError("--manifest is required without --deliverable-dir.")
        manifest = load_manifest(manifest_path)
    except (AnalysisInputError, ManifestError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    if not logs:
        print("error: no logs to classify.", file=sys.stderr)
        return 1

    try:
        client = create_client(api_key=args.api_key, api_base=args.api_base)
    except OpenAIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    def classify(stage: Stage, path: Path) -> Path:
        rows = analyze_log(
            client,
            read_text(path),
            manifest,
            model=args.model,
            chunk_size=args.chunk_size,
        )
        output_path = output_dir / f"{stage.value}.json"
        output_path.write_text(json.dumps(rows, indent=2), encoding="utf-8")
        return output_path

    failures = 0
    completed = 0
    total = len(logs)
    with ThreadPoolExecutor(max_workers=args.max_workers) as executor:
        futures = {executor.submit(classify, stage, path): stage for stage, path in logs.items()}
        for future in as_completed(futures):
            stage = futures[future]
            try:
                future.result()
            except (LLMResponseError, OSError) as exc:
                failures += 1
                sys.stderr.write(f"\n{stage.value}: {exc}\n")
            completed += 1
            sys.stderr.write(render_progress(completed, total))
            sys.stderr.flush()
    sys.stderr.write("\n")

    print(f"LLM results written to: {output_dir}")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
