import json
from collections.abc import Mapping
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from log_review.log_parsers import ParsedLog
from log_review.manifest import Manifest
from log_review.rules import RULE_KEYS, RuleResults
from log_review.swe_constants import Stage, TestStatus

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
SUMMARY_TEMPLATE = "summary.txt.j2"
MATRIX_STAGES = (Stage.BASE, Stage.BEFORE, Stage.AFTER, Stage.AGENT)


def _stage_matrix(
    names,
    statuses: Mapping[Stage, Mapping[str, TestStatus]],
    report: Mapping[str, TestStatus] | None,
) -> dict[str, dict[str, str]]:
    matrix = {}
    for name in names:
        row = {
            stage.value: statuses.get(stage, {}).get(name, TestStatus.MISSING).value
            for stage in MATRIX_STAGES
        }
        row["report"] = (report or {}).get(name, TestStatus.MISSING).value
        matrix[name] = row
    return matrix


def log_counts(label: str, parsed: ParsedLog) -> dict:
    return {"label": label, "format": parsed.log_format.value, **parsed.counts()}


def assemble_report(
    inputs: dict,
    manifest: Manifest,
    parsed: Mapping[Stage, ParsedLog],
    statuses: Mapping[Stage, Mapping[str, TestStatus]],
    results: RuleResults,
    report: Mapping[str, TestStatus] | None = None,
    errors: list[str] | None = None,
) -> dict:
    """Build the JSON-compatible analysis report. Nothing here mutates its inputs."""
    return {
        "inputs": dict(inputs),
        "counts": {
            "P2P": len(manifest.p2p),
            "F2P": len(manifest.f2p),
            "universe": len(manifest.universe),
        },
        "rule_checks": {key: results.outcomes[key].to_dict() for key in RULE_KEYS},
        "rejection_reason": results.decision.to_dict(),
        "p2p_analysis": _stage_matrix(manifest.p2p, statuses, report),
        "f2p_analysis": _stage_matrix(manifest.f2p, statuses, report),
        "debug_log_counts": [
            log_counts(stage.value, parsed[stage]) for stage in MATRIX_STAGES if stage in parsed
        ],
        "errors": list(errors or []),
    }


def write_report(report: dict, path: Path, compact: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(report, ensure_ascii=False, indent=None if compact else 2),
        encoding="utf-8",
    )


def render_summary(report: dict, max_examples: int = 10) -> str:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template(SUMMARY_TEMPLATE)
    return template.render(report=report, max_examples=max_examples)
