import re
from collections import defaultdict
from dataclasses import dataclass

from log_review.log_parsers import ansi_escape
from log_review.swe_constants import DUPLICATE_CONTEXT_LINES, DUPLICATE_MIN_DISTANCE

UNKNOWN_FILE = "unknown"

FILE_BOUNDARY_PATTERNS = [
    re.compile(r"Running\s+(?:unittests\s+)?([^/\s]+(?:/[^/\s]+)*\.rs)\s*\("),
    re.compile(r"===\s*Running\s+(.+\.rs)"),
    re.compile(r"test\s+result:\s+ok\.\s+\d+\s+passed.*for\s+(.+\.rs)"),
]
SUMMARY_LINE_RE = re.compile(r"test result:\s*\w+\.\s*\d+\s*passed")
OCCURRENCE_PATTERNS = [
    re.compile(
        r"\btest\s+(?P<name>[^\s.]+(?:::[^\s.]+)*)\s*\.{2,}\s*(?P<status>ok|FAILED|ignored|error)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\btest\s+(?P<name>\S+)\s+\.\.\.\s+(?P<status>ok|FAILED|ignored|error)\b",
        re.IGNORECASE,
    ),
]


@dataclass(frozen=True)
class Occurrence:
    test_name: str
    status: str
    line_no: int
    context_before: tuple[str, ...] = ()
    context_after: tuple[str, ...] = ()

    @property
    def context(self) -> str:
        return " ".join(self.context_before + self.context_after)


@dataclass(frozen=True)
class DuplicateFinding:
    test_name: str
    file_name: str
    line_numbers: tuple[int, ...]

    def describe(self) -> str:
        lines = ", ".join(f"line {line_no}" for line_no in self.line_numbers)
        return (
            f"{self.test_name} (appears {len(self.line_numbers)} times in "
            f"{self.file_name}: {lines})"
        )


def detect_file_boundary(line: str) -> str | None:
    """Return the source file a ``Running ...`` banner or summary line names."""
    for pattern in FILE_BOUNDARY_PATTERNS:
        match = pattern.search(line)
        if match:
            return match.group(1).strip()
    return None


def extract_occurrence(line: str) -> tuple[str, str] | None:
    for pattern in OCCURRENCE_PATTERNS:
        match = pattern.search(line)
        if match:
            return match.group("name").strip(), match.group("status").lower()
    return None


def collect_occurrences(log: str) -> dict[str, list[Occurrence]]:
    """Attribute every ``test NAME ... STATUS`` mention to its file context.

    Line numbers are 1-based.
    """
    lines = [ansi_escape(line) for line in log.splitlines()]
    current_file = UNKNOWN_FILE
    by_file: dict[str, list[Occurrence]] = defaultdict(list)

    for index, line in enumerate(lines):
        file_name = detect_file_boundary(line)
        if file_name:
            current_file = file_name
            continue
        if SUMMARY_LINE_RE.search(line):
            continue
        info = extract_occurrence(line)
        if info is None:
            continue
        test_name, status = info
        by_file[current_file].append(
            Occurrence(
                test_name=test_name,
                status=status,
                line_no=index + 1,
                context_before=tuple(lines[max(0, index - DUPLICATE_CONTEXT_LINES) : index]),
                context_after=tuple(lines[index + 1 : index + 1 + DUPLICATE_CONTEXT_LINES]),
            )
        )
    return by_file


def is_true_duplicate(occurrences: list[Occurrence]) -> bool:
    """Decide whether repeated mentions of one test in one file are a real
    conflict rather than an incidental re-listing."""
    if len(occurrences) <= 1:
        return False

    line_numbers = sorted(occurrence.line_no for occurrence in occurrences)
    min_distance = min(
        later - earlier for earlier, later in zip(line_numbers, line_numbers[1:])
    )
    if min_distance < DUPLICATE_MIN_DISTANCE:
        return True

    statuses = {occurrence.status for occurrence in occurrences}
    if "ok" in statuses and statuses & {"failed", "error"}:
        return True

    contexts = {occurrence.context for occurrence in occurrences}
    return len(contexts) == 1 and bool(next(iter(contexts)).strip())


def find_duplicates(log: str) -> list[DuplicateFinding]:
    """Return every true duplicate in a raw log, in order of first appearance."""
    if not log:
        return []
    findings = []
    for file_name, occurrences in collect_occurrences(log).items():
        by_name: dict[str, list[Occurrence]] = defaultdict(list)
        for occurrence in occurrences:
            by_name[occurrence.test_name].append(occurrence)
        for test_name, group in by_name.items():
            if is_true_duplicate(group):
                findings.append(
                    DuplicateFinding(
                        test_name=test_name,
                        file_name=file_name,
                        line_numbers=tuple(occurrence.line_no for occurrence in group),
                    )
                )
    return findings


def detect_same_file_duplicates(log: str) -> list[str]:
    """Human-readable descriptions of the true duplicates in a log."""
    return [finding.describe() for finding in find_duplicates(log)]
