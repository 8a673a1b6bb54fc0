#!/usr/bin/env python3
import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
LIB_DIR = REPO_ROOT / "lib"
sys.path.insert(0, str(LIB_DIR))

from log_review.analysis import (
    DEFAULT_MAX_WORKERS,
    AnalysisInputError,
    AnalysisInputs,
    analyze,
    discover_deliverable,
)
from log_review.manifest import ManifestError
from log_review.report import render_summary, write_report
from log_review.swe_constants import Stage

DEFAULT_OUTPUT = Path("verify_results.json")
EXIT_REJECTED = 2


def parse_llm_results(values: list[str]) -> dict[Stage, Path]:
    results = {}
    for value in values:
        stage_name, sep, path = value.partition("=")
        if not sep or not path:
            raise ValueError(f"--llm-results expects STAGE=PATH, got: {value}")
        try:
            stage = Stage(stage_name.strip().lower())
        except ValueError:
            choices = ", ".join(stage.value for stage in Stage)
            raise ValueError(f"unknown stage '{stage_name}' (choose from {choices})") from None
        results[stage] = Path(path)
    return results


def build_inputs(args: argparse.Namespace) -> AnalysisInputs:
    if args.deliverable_dir:
        inputs = discover_deliverable(Path(args.deliverable_dir))
    else:
        if not args.manifest:
            raise ValueError("--manifest is required without --deliverable-dir.")
        inputs = AnalysisInputs(manifest=Path(args.manifest))

    # Explicit paths override discovered ones.
    overrides = {
        "manifest": args.manifest,
        "base_log": args.base_log,
        "before_log": args.before_log,
        "after_log": args.after_log,
        "agent_log": args.agent_log,
        "report": args.report,
    }
    for attr, value in overrides.items():
        if value:
            setattr(inputs, attr, Path(value))
    if args.patch:
        inputs.patches = [Path(path) for path in args.patch]
    inputs.llm_results = parse_llm_results(args.llm_results)
    return inputs


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Check a deliverable's test logs against its F2P/P2P manifest."
    )
    parser.add_argument(
        "--deliverable-dir",
        help="Folder to auto-discover the manifest, logs, report and patches from.",
    )
    parser.add_argument("--manifest", help="JSON with fail_to_pass/pass_to_pass lists.")
    parser.add_argument("--base-log", help="Log of the base run.")
    parser.add_argument("--before-log", help="Log before the golden patch.")
    parser.add_argument("--after-log", help="Log after the golden patch.")
    parser.add_argument("--agent-log", help="Log after the agent patch (optional).")
    parser.add_argument("--report", help="External report JSON (optional).")
    parser.add_argument(
        "--patch",
        action="append",
        default=[],
        help="Patch/diff file; repeatable. Names containing 'test' are test diffs.",
    )
    parser.add_argument(
        "--llm-results",
        action="append",
        default=[],
        metavar="STAGE=PATH",
        help="LLM verdicts used to fill tests the log parser missed; repeatable.",
    )
    parser.add_argument(
        "--output",
        default=str(DEFAULT_OUTPUT),
        help="Path to write the JSON report (default: verify_results.json).",
    )
    parser.add_argument("--compact", action="store_true", help="Write JSON without indentation.")
    parser.add_argument("--summary", action="store_true", help="Print a text summary.")
    parser.add_argument(
        "--fail-on-reject",
        action="store_true",
        help="Exit with code 2 when the deliverable is rejected.",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=DEFAULT_MAX_WORKERS,
        help=f"Threads used to parse stage logs (default: {DEFAULT_MAX_WORKERS}).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.max_workers < 1:
        print("--max-workers must be >= 1.", file=sys.stderr)
        return 1

    try:
        inputs = build_inputs(args)
        report = analyze(inputs, max_workers=args.max_workers)
    except (AnalysisInputError, ManifestError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    output_path = Path(args.output)
    write_report(report, output_path, compact=args.compact)
    print(f"JSON report written: {output_path}")

    for error in report["errors"]:
        print(f"warning: {error}", file=sys.stderr)
    if args.summary:
        print(render_summary(report))

    if args.fail_on_reject and report["rejection_reason"]["satisfied"]:
        return EXIT_REJECTED
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
