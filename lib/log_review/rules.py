import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from log_review.duplicates import detect_same_file_duplicates
from log_review.manifest import Manifest
from log_review.patches import find_f2p_in_golden_source
from log_review.swe_constants import MAX_DUPLICATE_EXAMPLES, Stage, TestStatus

logger = logging.getLogger(__name__)

C1 = "c1_failed_in_base_present_in_P2P"
C2 = "c2_failed_in_after_present_in_F2P_or_P2P"
C3 = "c3_F2P_success_in_before"
C4 = "c4_P2P_missing_in_base_and_not_passing_in_before"
C5 = "c5_duplicates_in_same_log_for_F2P_or_P2P"
C6 = "c6_report_status_conflicts_with_agent_log"
C7 = "c7_f2p_tests_in_golden_source_diff"
RULE_KEYS = (C1, C2, C3, C4, C5, C6, C7)

StatusMap = Mapping[str, TestStatus]


@dataclass
class RuleOutcome:
    has_problem: bool = False
    evaluated: bool = True
    examples: list[str] = field(default_factory=list)
    duplicate_tests_per_log: dict[str, list[str]] | None = None

    @classmethod
    def from_examples(cls, examples: list[str]) -> "RuleOutcome":
        return cls(has_problem=bool(examples), examples=examples)

    @classmethod
    def skipped(cls) -> "RuleOutcome":
        return cls(evaluated=False)

    def to_dict(self) -> dict:
        payload = {
            "has_problem": self.has_problem,
            "evaluated": self.evaluated,
            "examples": list(self.examples),
        }
        if self.duplicate_tests_per_log is not None:
            payload["duplicate_tests_per_log"] = {
                stage: list(items) for stage, items in self.duplicate_tests_per_log.items()
            }
        return payload


@dataclass(frozen=True)
class AcceptanceDecision:
    """P2P/F2P partition behind the rejection flag.

    ``satisfied`` is True when the deliverable must be rejected.
    """

    satisfied: bool
    p2p_ignored: list[str]
    p2p_considered: list[str]
    p2p_rejected: list[str]
    p2p_ok: list[str]
    f2p_ignored: list[str]
    f2p_considered: list[str]
    f2p_rejected: list[str]
    f2p_ok: list[str]

    def to_dict(self) -> dict:
        return {
            "satisfied": self.satisfied,
            "p2p_ignored_because_passed_in_base_and_after": self.p2p_ignored,
            "p2p_considered": self.p2p_considered,
            "p2p_rejected": self.p2p_rejected,
            "p2p_considered_but_ok": self.p2p_ok,
            "f2p_ignored_because_passed_in_after": self.f2p_ignored,
            "f2p_considered": self.f2p_considered,
            "f2p_rejected": self.f2p_rejected,
            "f2p_considered_but_ok": self.f2p_ok,
        }


@dataclass(frozen=True)
class RuleResults:
    outcomes: dict[str, RuleOutcome]
    decision: AcceptanceDecision

    @property
    def problems(self) -> list[str]:
        return [key for key, outcome in self.outcomes.items() if outcome.has_problem]


def _status(statuses: StatusMap, name: str) -> TestStatus:
    return statuses.get(name, TestStatus.MISSING)


def check_failed_in_base(p2p: Sequence[str], base: StatusMap) -> list[str]:
    return [name for name in p2p if _status(base, name) == TestStatus.FAILED]


def check_failed_in_after(universe: Sequence[str], after: StatusMap) -> list[str]:
    return [name for name in universe if _status(after, name) == TestStatus.FAILED]


def check_f2p_passed_in_before(f2p: Sequence[str], before: StatusMap) -> list[str]:
    return [name for name in f2p if _status(before, name) == TestStatus.PASSED]


def check_p2p_missing_in_base(
    p2p: Sequence[str], base: StatusMap, before: StatusMap
) -> list[str]:
    """P2P tests absent from base are acceptable only if they pass in before."""
    violations = []
    for name in p2p:
        base_status = _status(base, name)
        if base_status == TestStatus.PASSED:
            continue
        if base_status == TestStatus.MISSING and _status(before, name) != TestStatus.PASSED:
            violations.append(name)
    return violations


def check_duplicates(stage_logs: Mapping[str, str]) -> dict[str, list[str]]:
    """Run duplicate detection on every stage log, capped per stage."""
    per_stage = {}
    for stage, text in stage_logs.items():
        findings = detect_same_file_duplicates(text)
        if findings:
            per_stage[stage] = findings[:MAX_DUPLICATE_EXAMPLES]
    return per_stage


def check_report_conflicts(
    universe: Sequence[str], agent: StatusMap, report: StatusMap
) -> list[str]:
    conflicting = {TestStatus.PASSED, TestStatus.FAILED}
    examples = []
    for name in universe:
        reported = report.get(name)
        observed = _status(agent, name)
        if reported in conflicting and observed in conflicting and reported != observed:
            examples.append(
                f"{name} (report: {reported.value}, agent log: {observed.value})"
            )
    return examples


def decide_acceptance(
    f2p: Sequence[str],
    p2p: Sequence[str],
    base: StatusMap,
    before: StatusMap,
    after: StatusMap,
) -> AcceptanceDecision:
    p2p_ignored, p2p_considered = [], []
    for name in p2p:
        if _status(base, name) == TestStatus.PASSED and _status(after, name) == TestStatus.PASSED:
            p2p_ignored.append(name)
        else:
            p2p_considered.append(name)
    p2p_rejected = [
        name
        for name in p2p_considered
        if _status(base, name) == TestStatus.MISSING
        and _status(before, name) != TestStatus.PASSED
    ]
    rejected = set(p2p_rejected)
    p2p_ok = [name for name in p2p_considered if name not in rejected]

    return AcceptanceDecision(
        satisfied=bool(p2p_rejected),
        p2p_ignored=p2p_ignored,
        p2p_considered=p2p_considered,
        p2p_rejected=p2p_rejected,
        p2p_ok=p2p_ok,
        f2p_ignored=[n for n in f2p if _status(after, n) == TestStatus.PASSED],
        f2p_considered=[n for n in f2p if _status(after, n) != TestStatus.PASSED],
        f2p_rejected=[n for n in f2p if _status(after, n) == TestStatus.FAILED],
        f2p_ok=[n for n in f2p if _status(after, n) == TestStatus.MISSING],
    )


def evaluate_rules(
    manifest: Manifest,
    statuses: Mapping[Stage, StatusMap],
    stage_logs: Mapping[str, str] | None = None,
    report: StatusMap | None = None,
    golden_patches: Mapping[str, str] | None = None,
    test_patches: Mapping[str, str] | None = None,
) -> RuleResults:
    """Evaluate C1-C7 and the acceptance decision.

    Args:
        manifest: F2P and P2P test lists
        statuses: resolved universe statuses per stage; base, before and
            after are required, agent is optional
        stage_logs: raw text per stage label, for duplicate detection
        report: external report statuses; C6 needs it and an agent stage
        golden_patches / test_patches: patch name to text; C7 runs when
            either is non-empty
    Returns:
        RuleResults with one RuleOutcome per rule key
    """
    f2p, p2p = list(manifest.f2p), list(manifest.p2p)
    universe = manifest.universe
    base = statuses[Stage.BASE]
    before = statuses[Stage.BEFORE]
    after = statuses[Stage.AFTER]
    agent = statuses.get(Stage.AGENT)

    outcomes = {
        C1: RuleOutcome.from_examples(check_failed_in_base(p2p, base)),
        C2: RuleOutcome.from_examples(check_failed_in_after(universe, after)),
        C3: RuleOutcome.from_examples(check_f2p_passed_in_before(f2p, before)),
        C4: RuleOutcome.from_examples(check_p2p_missing_in_base(p2p, base, before)),
    }

    duplicates = check_duplicates(stage_logs or {})
    outcomes[C5] = RuleOutcome(
        has_problem=bool(duplicates),
        examples=[f"{stage}: {item}" for stage, items in duplicates.items() for item in items],
        duplicate_tests_per_log=duplicates,
    )

    if agent is not None and report is not None:
        outcomes[C6] = RuleOutcome.from_examples(
            check_report_conflicts(universe, agent, report)
        )
    else:
        outcomes[C6] = RuleOutcome.skipped()

    if golden_patches or test_patches:
        outcomes[C7] = RuleOutcome.from_examples(
            find_f2p_in_golden_source(f2p, golden_patches or {}, test_patches or {})
        )
    else:
        outcomes[C7] = RuleOutcome.skipped()

    decision = decide_acceptance(f2p, p2p, base, before, after)
    results = RuleResults(outcomes=outcomes, decision=decision)
    logger.debug("rule problems: %s; rejected: %s", results.problems, decision.satisfied)
    return results
