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

from log_review.analysis import AnalysisInputError, analyze, discover_deliverable
from log_review.manifest import ManifestError
from log_review.report import write_report


def find_deliverables(root: Path) -> list[Path]:
    return sorted(path for path in root.iterdir() if path.is_dir())


def check_one(directory: Path, reports_dir: Path | None) -> dict:
    try:
        inputs = discover_deliverable(directory)
        report = analyze(inputs, max_workers=1)
    except (AnalysisInputError, ManifestError, ValueError, OSError) as exc:
        return {"deliverable": directory.name, "error": str(exc)}

    report_path = None
    if reports_dir is not None:
        report_path = reports_dir / f"{directory.name}.json"
        write_report(report, report_path)
    return {"deliverable": directory.name, "report": report, "report_path": report_path}


def build_report_item(outcome: dict) -> dict:
    error = outcome.get("error")
    if error:
        return {"deliverable": outcome["deliverable"], "rejected": None, "error": error}

    report = outcome["report"]
    rejection = report["rejection_reason"]
    return {
        "deliverable": outcome["deliverable"],
        "rejected": rejection["satisfied"],
        "p2p_rejected": rejection["p2p_rejected"],
        "problems": [key for key, check in report["rule_checks"].items() if check["has_problem"]],
        "report_path": str(outcome["report_path"]) if outcome["report_path"] else None,
        "warnings": report["errors"],
        "error": "",
    }


def render_progress_bar(completed: int, total: int, width: int = 30) -> str:
    if total <= 0:
        return "[" + ("-" * width) + "]"
    filled = max(0, min(width, int((completed / total) * width)))
    return "[" + ("#" * filled) + ("-" * (width - filled)) + "]"


def main() -> int:
    parser = argparse.ArgumentParser(description="Check every deliverable folder under a root.")
    parser.add_argument("root", help="Directory whose sub-folders are deliverables.")
    parser.add_argument(
        "--max-workers",
        type=int,
        default=4,
        help="Number of deliverables to check in parallel.",
    )
    parser.add_argument(
        "--reports-dir",
        default="",
        help="Optional directory for one full JSON report per deliverable.",
    )
    parser.add_argument(
        "--report-json",
        default="batch_report.json",
        help="Path to write the aggregate JSON report.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if args.max_workers < 1:
        print("--max-workers must be >= 1.", file=sys.stderr)
        return 1

    root = Path(args.root)
    if not root.is_dir():
        print(f"Deliverables root not found: {root}", file=sys.stderr)
        return 1
    deliverables = find_deliverables(root)
    if not deliverables:
        print(f"No deliverable folders under {root}", file=sys.stderr)
        return 1
    reports_dir = Path(args.reports_dir) if args.reports_dir else None

    total = len(deliverables)
    completed = 0
    accepted = 0
    rejected = 0
    errored = 0

    def print_progress() -> None:
        bar = render_progress_bar(completed, total)
        line = (
            f"\r{bar} done {completed}/{total} | "
            f"accepted {accepted} | rejected {rejected} | error {errored}"
        )
        print(line, end="", flush=True, file=sys.stderr)

    print_progress()

    outcomes: dict[str, dict] = {}
    with ThreadPoolExecutor(max_workers=args.max_workers) as executor:
        future_to_name = {
            executor.submit(check_one, directory, reports_dir): directory.name
            for directory in deliverables
        }
        for future in as_completed(future_to_name):
            name = future_to_name[future]
            try:
                outcome = future.result()
            except Exception as exc:
                outcome = {"deliverable": name, "error": str(exc)}
            outcomes[name] = outcome

            if outcome.get("error"):
                errored += 1
            elif outcome["report"]["rejection_reason"]["satisfied"]:
                rejected += 1
            else:
                accepted += 1
            completed += 1
            print_progress()

    print(file=sys.stderr)

    items = [build_report_item(outcomes[directory.name]) for directory in deliverables]
    all_ok = errored == 0 and rejected == 0
    report_path = Path(args.report_json)
    report_path.write_text(
        json.dumps(
            {
                "max_workers": args.max_workers,
                "total": len(items),
                "all_ok": all_ok,
                "items": items,
            },
            ensure_ascii=False,
            indent=2,
        ),
        encoding="utf-8",
    )
    print(f"JSON report written: {report_path}")

    return 0 if all_ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
