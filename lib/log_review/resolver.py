import logging
from collections.abc import Iterable, Mapping, Sequence

from log_review.log_parsers import ParsedLog
from log_review.swe_constants import LogFormat, TestStatus

logger = logging.getLogger(__name__)

# Verdict emitted by the LLM analyzer for tests absent from a chunk.
NON_EXISTING = "non_existing"

LLM_STATUSES = {
    "passed": TestStatus.PASSED,
    "failed": TestStatus.FAILED,
}


def build_universe(f2p: Sequence[str], p2p: Sequence[str]) -> list[str]:
    """Ordered, de-duplicated union of the F2P and P2P lists."""
    return list(dict.fromkeys([*f2p, *p2p]))


def resolve_status(name: str, parsed: ParsedLog | None) -> TestStatus:
    # failed > passed > ignored: a failure is never shadowed by a stray "ok"
    if parsed is None:
        return TestStatus.MISSING
    if name in parsed.failed:
        return TestStatus.FAILED
    if name in parsed.passed:
        return TestStatus.PASSED
    if name in parsed.ignored:
        return TestStatus.IGNORED
    return TestStatus.MISSING


def resolve_universe(names: Iterable[str], parsed: ParsedLog | None) -> dict[str, TestStatus]:
    """Map each test name to exactly one status for one stage log.

    A stage without a log resolves every name to ``missing``.
    """
    return {name: resolve_status(name, parsed) for name in names}


def merge_status(existing: str | None, new: str) -> str:
    """Combine two verdicts for the same test from different log chunks."""
    if existing is None or existing == new:
        return new
    if {existing, new} == {"failed", "passed"}:
        return "failed"
    if existing == NON_EXISTING:
        return new
    if new == NON_EXISTING:
        return existing
    return new


def _row_fields(row) -> tuple[str, str]:
    if isinstance(row, Mapping):
        name, status = row.get("test_name"), row.get("status")
    elif isinstance(row, (tuple, list)) and len(row) == 2:
        name, status = row
    else:
        raise ValueError(f"malformed verdict row: {row!r}")
    if not isinstance(name, str) or not isinstance(status, str):
        raise ValueError(f"verdict row needs string test_name and status: {row!r}")
    return name, status


def merge_verdicts(rows: Iterable, merged: dict[str, str] | None = None) -> dict[str, str]:
    """Fold ``(test_name, status)`` pairs or ``{"test_name", "status"}`` rows
    into one verdict per test."""
    merged = {} if merged is None else merged
    for row in rows:
        name, status = _row_fields(row)
        merged[name] = merge_status(merged.get(name), status)
    return merged


def merge_chunk_results(chunk_results: Iterable[Iterable]) -> dict[str, str]:
    merged: dict[str, str] = {}
    for chunk in chunk_results:
        merge_verdicts(chunk, merged)
    return merged


def parsed_log_from_verdicts(
    verdicts: Mapping[str, str] | Iterable,
    log_format: LogFormat = LogFormat.STANDARD,
) -> ParsedLog:
    """Build a ParsedLog from LLM verdicts; ``non_existing`` contributes nothing."""
    if not isinstance(verdicts, Mapping):
        verdicts = merge_verdicts(verdicts)
    statuses = {}
    for name, status in verdicts.items():
        if status == NON_EXISTING:
            continue
        if status not in LLM_STATUSES:
            logger.warning("ignoring unknown verdict %r for %s", status, name)
            continue
        statuses[name] = LLM_STATUSES[status]
    return ParsedLog.from_statuses(statuses, log_format)


def fill_missing(primary: ParsedLog, fallback: ParsedLog) -> ParsedLog:
    """Add fallback classifications only for names the primary log never saw."""
    statuses = primary.status_map()
    added = 0
    for name, status in fallback.status_map().items():
        if name not in statuses:
            statuses[name] = status
            added += 1
    logger.debug("fallback filled %d tests", added)
    return ParsedLog.from_statuses(statuses, primary.log_format)
