import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from log_review.log_parsers import ParsedLog, parse_log
from log_review.manifest import load_manifest
from log_review.patches import partition_patches
from log_review.report import assemble_report
from log_review.report_data import ReportFormatError, load_report_data
from log_review.resolver import fill_missing, parsed_log_from_verdicts, resolve_universe
from log_review.rules import evaluate_rules
from log_review.swe_constants import REQUIRED_STAGES, Stage

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4

LOG_SUFFIXES = {
    Stage.BASE: ("_base.log", "base.log"),
    Stage.BEFORE: ("_before.log", "before.log"),
    Stage.AFTER: ("_after.log", "after.log"),
    Stage.AGENT: ("_post_agent_patch.log", "post_agent_patch.log", "_agent.log", "agent.log"),
}
REPORT_NAMES = ("report.json", "results.json", "analysis.json")
PATCH_SUFFIXES = (".diff", ".patch")


class AnalysisInputError(ValueError):
    pass


@dataclass
class AnalysisInputs:
    manifest: Path
    base_log: Path | None = None
    before_log: Path | None = None
    after_log: Path | None = None
    agent_log: Path | None = None
    report: Path | None = None
    patches: list[Path] = field(default_factory=list)
    llm_results: dict[Stage, Path] = field(default_factory=dict)

    def stage_paths(self) -> dict[Stage, Path]:
        paths = {
            Stage.BASE: self.base_log,
            Stage.BEFORE: self.before_log,
            Stage.AFTER: self.after_log,
            Stage.AGENT: self.agent_log,
        }
        return {stage: path for stage, path in paths.items() if path is not None}

    def describe(self) -> dict:
        def _str(path: Path | None) -> str | None:
            return str(path.resolve()) if path is not None else None

        return {
            "base_log": _str(self.base_log),
            "before_log": _str(self.before_log),
            "after_log": _str(self.after_log),
            "agent_log": _str(self.agent_log),
            "report": _str(self.report),
            "patches": [str(path.resolve()) for path in self.patches],
        }


def _match_stage_suffix(path: Path, suffixes: tuple[str, ...]) -> str | None:
    """Return the file-name prefix before a stage suffix, or None."""
    name = path.name.lower()
    for suffix in suffixes:
        if suffix.startswith("_") and name.endswith(suffix):
            return name[: -len(suffix)]
        if name == suffix:
            return ""
    return None


def _pick_stage_logs(logs: list[Path]) -> dict[Stage, Path]:
    candidates: dict[Stage, dict[str, Path]] = {stage: {} for stage in LOG_SUFFIXES}
    for path in logs:
        for stage, suffixes in LOG_SUFFIXES.items():
            prefix = _match_stage_suffix(path, suffixes)
            if prefix is not None:
                candidates[stage].setdefault(prefix, path)
                break

    shared = set(candidates[Stage.BASE])
    for stage in (Stage.BEFORE, Stage.AFTER):
        shared &= set(candidates[stage])

    picked = {}
    for stage, by_prefix in candidates.items():
        if not by_prefix:
            continue
        preferred = sorted(prefix for prefix in by_prefix if prefix in shared)
        prefix = preferred[0] if preferred else sorted(by_prefix)[0]
        picked[stage] = by_prefix[prefix]
    return picked


def _find_manifest(directory: Path) -> Path | None:
    main_dir = directory / "main"
    if main_dir.is_dir():
        in_main = sorted(main_dir.glob("*.json"))
        if in_main:
            return in_main[0]
    main_json = directory / "main.json"
    if main_json.is_file():
        return main_json
    top_level = [
        path for path in sorted(directory.glob("*.json")) if path.name.lower() not in REPORT_NAMES
    ]
    if len(top_level) == 1:
        return top_level[0]
    return None


def discover_deliverable(directory: Path) -> AnalysisInputs:
    """Locate the manifest, stage logs, report and patches inside a deliverable folder."""
    if not directory.is_dir():
        raise AnalysisInputError(f"Deliverable directory not found: {directory}")

    manifest = _find_manifest(directory)
    if manifest is None:
        raise AnalysisInputError(
            f"{directory}: no manifest found (expected main/*.json, main.json "
            "or a single top-level JSON file)"
        )

    files = sorted(path for path in directory.rglob("*") if path.is_file())
    stage_logs = _pick_stage_logs([path for path in files if path.suffix.lower() == ".log"])
    report = next((path for path in files if path.name.lower() in REPORT_NAMES), None)
    patches = [path for path in files if path.suffix.lower() in PATCH_SUFFIXES]

    inputs = AnalysisInputs(
        manifest=manifest,
        base_log=stage_logs.get(Stage.BASE),
        before_log=stage_logs.get(Stage.BEFORE),
        after_log=stage_logs.get(Stage.AFTER),
        agent_log=stage_logs.get(Stage.AGENT),
        report=report,
        patches=patches,
    )
    logger.debug("discovered deliverable inputs: %s", inputs)
    return inputs


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def _read_and_parse(path: Path) -> tuple[str, ParsedLog]:
    text = read_text(path)
    return text, parse_log(text)


def parse_stage_logs(
    paths: dict[Stage, Path],
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> tuple[dict[Stage, str], dict[Stage, ParsedLog], list[str]]:
    """Read and parse each stage log on its own worker.

    A required stage that cannot be read aborts the analysis; an unreadable
    agent log is reported in the returned error list.
    """
    texts: dict[Stage, str] = {}
    parsed: dict[Stage, ParsedLog] = {}
    errors: list[str] = []

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_stage = {
            executor.submit(_read_and_parse, path): stage for stage, path in paths.items()
        }
        for future in as_completed(future_to_stage):
            stage = future_to_stage[future]
            try:
                texts[stage], parsed[stage] = future.result()
            except OSError as exc:
                if stage in REQUIRED_STAGES:
                    raise AnalysisInputError(
                        f"cannot read {stage.value} log {paths[stage]}: {exc}"
                    ) from exc
                logger.warning("skipping %s log: %s", stage.value, exc)
                errors.append(f"cannot read {stage.value} log {paths[stage]}: {exc}")
    return texts, parsed, errors


def load_verdicts(path: Path) -> ParsedLog:
    """Load LLM analyzer output (rows of ``{test_name, status}``)."""
    try:
        data = json.loads(read_text(path))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("test_results", data.get("results"))
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of test verdicts")
    try:
        return parsed_log_from_verdicts(data)
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc


def analyze(inputs: AnalysisInputs, max_workers: int = DEFAULT_MAX_WORKERS) -> dict:
    """Run the whole check for one deliverable and return the report dict."""
    manifest = load_manifest(inputs.manifest)
    universe = manifest.universe

    stage_paths = inputs.stage_paths()
    for stage in REQUIRED_STAGES:
        path = stage_paths.get(stage)
        if path is None:
            raise AnalysisInputError(f"required {stage.value} log was not provided")
        if not path.is_file():
            raise AnalysisInputError(f"required {stage.value} log not found: {path}")

    errors: list[str] = []
    agent_path = stage_paths.get(Stage.AGENT)
    if agent_path is not None and not agent_path.is_file():
        errors.append(f"agent log not found: {agent_path}")
        del stage_paths[Stage.AGENT]

    texts, parsed, read_errors = parse_stage_logs(stage_paths, max_workers)
    errors.extend(read_errors)

    for stage, path in inputs.llm_results.items():
        if stage not in parsed:
            errors.append(f"LLM results for {stage.value} given without a {stage.value} log")
            continue
        try:
            parsed[stage] = fill_missing(parsed[stage], load_verdicts(path))
        except (OSError, ValueError) as exc:
            errors.append(f"cannot load LLM results: {exc}")

    statuses = {stage: resolve_universe(universe, log) for stage, log in parsed.items()}

    report = None
    if inputs.report is not None:
        try:
            report = load_report_data(inputs.report)
        except ReportFormatError as exc:
            logger.warning("report data unusable: %s", exc)
            errors.append(str(exc))

    golden: dict[str, str] = {}
    tests: dict[str, str] = {}
    golden_paths, test_paths = partition_patches(inputs.patches)
    for target, paths in ((golden, golden_paths), (tests, test_paths)):
        for path in paths:
            try:
                target[path.name] = read_text(path)
            except OSError as exc:
                errors.append(f"cannot read patch {path}: {exc}")

    results = evaluate_rules(
        manifest,
        statuses,
        stage_logs={stage.value: texts[stage] for stage in Stage if stage in texts},
        report=report,
        golden_patches=golden,
        test_patches=tests,
    )
    return assemble_report(
        inputs=inputs.describe(),
        manifest=manifest,
        parsed=parsed,
        statuses=statuses,
        results=results,
        report=report,
        errors=errors,
    )
