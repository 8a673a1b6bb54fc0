import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from log_review.swe_constants import (
    BROAD_RESCAN_GRACE,
    BROAD_RESCAN_WINDOW,
    DIAGNOSTIC_WINDOW,
    LOOKAHEAD_WINDOWS,
    PANIC_CONTEXT_LINES,
    SPLIT_TOKEN_LOOKBACK,
    LogFormat,
    TestStatus,
)

logger = logging.getLogger(__name__)

ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

# Format markers
NEXTEST_MARKERS = ("Nextest run ID", "PASS [", "FAIL [", "cargo nextest run")
NEXTEST_LINE_RE = re.compile(
    r"^\s*(?P<status>PASS|FAIL|SKIP|IGNORED)\s+\[[^\]]*\]\s+"
    r"(?:\(\s*\d+/\d+\)\s+)?(?P<name>\S.*?)\s*$"
)
NEXTEST_BINARY_ID_RE = re.compile(
    r"^(?P<crate>[A-Za-z_][\w-]*)(?P<qualifier>(?:::|\$)[\w/-]+)?\s+(?P<test>\S.*)$"
)

# Standard libtest output
DIRECT_RESULT_RE = re.compile(
    r"^\s*test\s+(?P<name>\S.*?)\s+\.\.\.\s+"
    r"(?P<status>ok|FAILED|failed|ignored|error)(?=$|[\s,;.(\[])"
)
TEST_START_RE = re.compile(r"\btest\s+(?P<name>\S.*?)\s+\.\.\.(?=\s|$)\s*(?P<rest>.*)$")
STATUS_TOKEN_RE = re.compile(r"\b(?P<status>ok|FAILED|failed|ignored|error)\b")
TRAILING_STATUS_RE = re.compile(r"\b(?P<status>ok|FAILED|failed|ignored|error)\s*$")
LEADING_STATUS_RE = re.compile(
    r"^\s*(?P<status>ok|FAILED|ignored)(?=$|[\s\[(<]|\d{4}-\d{2}-\d{2})"
)
STANDALONE_STATUS_WORDS = frozenset({"ok", "FAILED", "failed", "ignored", "error"})
SUMMARY_LINE_RE = re.compile(r"^\s*test result:")
SPLIT_O_RE = re.compile(r"(?:^|\s)o\s*$")
FAILURE_ENTRY_RE = re.compile(r"^ {4}(?P<name>\S.*?)\s*$")

# Compact / single-line output. A name may hold spaces (doc tests such as
# "src/lib.rs - parse (line 10)") but never " ... " or another " test " start.
COMPACT_NAME = r"(?P<name>\S(?:(?![ \t]+(?:\.\.\.(?:\s|$)|test[ \t]))[^\n])*?)"
COMPACT_RESULT_RE = re.compile(
    r"\btest[ \t]+" + COMPACT_NAME + r"[ \t]+\.\.\.\s+(?P<status>ok|FAILED|ignored|error)\b"
)
COMPACT_TRAILING_RE = re.compile(
    r"\btest[ \t]+" + COMPACT_NAME + r"[ \t]+\.\.\.\s+(?P<status>ok|FAILED|ignored|error)(?=\S)"
)
COMPACT_START_RE = re.compile(r"\btest[ \t]+" + COMPACT_NAME + r"[ \t]+\.\.\.(?=\s|$)")
UI_TEST_RE = re.compile(
    r"^\s*(?:test\s+)?(?P<name>(?:\[[\w-]+\]\s+)?(?:[\w.-]+/)+[\w.-]+\.\w+)\s+\.\.\.\s+"
    r"(?P<status>ok|FAILED|failed|ignored|error|mismatch)\b"
)

DIAGNOSTIC_MARKERS = (
    "error:",
    "panic",
    "custom",
    "called `result::unwrap()`",
    "thread",
    "kind:",
)
DIAGNOSTIC_CHARS_BEFORE = frozenset("\"'`=:({[<")
DIAGNOSTIC_CHARS_AFTER = frozenset("\"'`=:([{")

STATUS_TOKENS = {
    "ok": TestStatus.PASSED,
    "failed": TestStatus.FAILED,
    "error": TestStatus.FAILED,
    "mismatch": TestStatus.FAILED,
    "ignored": TestStatus.IGNORED,
}
NEXTEST_STATUS = {
    "PASS": TestStatus.PASSED,
    "FAIL": TestStatus.FAILED,
    "SKIP": TestStatus.IGNORED,
    "IGNORED": TestStatus.IGNORED,
}
CLEAN_LOG_TOKENS = {
    TestStatus.PASSED: "ok",
    TestStatus.FAILED: "FAILED",
    TestStatus.IGNORED: "ignored",
}
# failed > passed > ignored, matching universe resolution.
STATUS_PRECEDENCE = {
    TestStatus.IGNORED: 0,
    TestStatus.PASSED: 1,
    TestStatus.FAILED: 2,
}

DiagnosticPredicate = Callable[[str, int, int], bool]


@dataclass(frozen=True)
class ParsedLog:
    """Per-log classification: each test name sits in exactly one status set."""

    passed: frozenset[str] = frozenset()
    failed: frozenset[str] = frozenset()
    ignored: frozenset[str] = frozenset()
    log_format: LogFormat = LogFormat.STANDARD

    @property
    def all(self) -> frozenset[str]:
        return self.passed | self.failed | self.ignored

    @classmethod
    def from_statuses(
        cls,
        statuses: Mapping[str, TestStatus],
        log_format: LogFormat = LogFormat.STANDARD,
    ) -> "ParsedLog":
        buckets: dict[TestStatus, set[str]] = {
            TestStatus.PASSED: set(),
            TestStatus.FAILED: set(),
            TestStatus.IGNORED: set(),
        }
        for name, status in statuses.items():
            if status in buckets:
                buckets[status].add(name)
        return cls(
            passed=frozenset(buckets[TestStatus.PASSED]),
            failed=frozenset(buckets[TestStatus.FAILED]),
            ignored=frozenset(buckets[TestStatus.IGNORED]),
            log_format=log_format,
        )

    def status_map(self) -> dict[str, TestStatus]:
        statuses = {name: TestStatus.IGNORED for name in self.ignored}
        statuses.update({name: TestStatus.PASSED for name in self.passed})
        statuses.update({name: TestStatus.FAILED for name in self.failed})
        return statuses

    def counts(self) -> dict[str, int]:
        return {
            "passed": len(self.passed),
            "failed": len(self.failed),
            "ignored": len(self.ignored),
            "all": len(self.all),
        }


def ansi_escape(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_ESCAPE_RE.sub("", text)


def _status_from_token(token: str) -> TestStatus:
    return STATUS_TOKENS[token.lower()]


def _fill_status(results: dict[str, TestStatus], name: str, status: TestStatus) -> None:
    """Record a status only for a name no earlier pass has classified."""
    if name and name not in results:
        results[name] = status


def _update_status_by_precedence(
    results: dict[str, TestStatus], name: str, status: TestStatus
) -> None:
    """Set test status, overriding only if new status has equal or higher precedence."""
    if not name:
        return
    current = results.get(name)
    if current is None or STATUS_PRECEDENCE[status] >= STATUS_PRECEDENCE[current]:
        results[name] = status


def is_diagnostic_context(text: str, start: int, end: int) -> bool:
    """Return True when the status token at text[start:end] reads as part of a
    panic message or error payload rather than a test verdict.

    A token is diagnostic when a known diagnostic phrase sits within
    DIAGNOSTIC_WINDOW characters of it, or when it is glued to quoting or
    assignment punctuation (``"failed"``, ``status=ok``, ``error[E0425]``).
    """
    window = text[max(0, start - DIAGNOSTIC_WINDOW) : end + DIAGNOSTIC_WINDOW].lower()
    if any(marker in window for marker in DIAGNOSTIC_MARKERS):
        return True
    before = text[start - 1] if start > 0 else ""
    after = text[end] if end < len(text) else ""
    return before in DIAGNOSTIC_CHARS_BEFORE or after in DIAGNOSTIC_CHARS_AFTER


def _has_panic_evidence(text: str, name: str) -> bool:
    pattern = re.compile(r"thread '" + re.escape(name) + r"'.*?panicked at")
    return pattern.search(text) is not None


def _panic_window(lines: list[str], index: int) -> str:
    low = max(0, index - PANIC_CONTEXT_LINES)
    return "\n".join(lines[low : index + PANIC_CONTEXT_LINES + 1])


def _is_split_ok(lines: list[str], index: int, text: str) -> bool:
    return (
        SPLIT_O_RE.search(text) is not None
        and index + 1 < len(lines)
        and lines[index + 1].strip() == "k"
    )


def detect_log_format(log: str) -> LogFormat:
    """Pick the extraction strategy for a log.

    Nextest detection runs first: nextest output may itself carry ANSI codes
    or interleaved libtest lines and must still be read as nextest.
    """
    clean = ansi_escape(log)
    if any(marker in clean for marker in NEXTEST_MARKERS):
        return LogFormat.NEXTEST
    lines = clean.splitlines()
    if sum(1 for line in lines if NEXTEST_LINE_RE.match(line)) > 5:
        return LogFormat.NEXTEST

    if ANSI_ESCAPE_RE.search(log):
        return LogFormat.SINGLE_LINE_ANSI
    if len(lines) <= 3 and len(COMPACT_RESULT_RE.findall(clean)) > 5:
        return LogFormat.SINGLE_LINE_ANSI
    if sum(1 for line in lines if UI_TEST_RE.match(line)) > 10:
        return LogFormat.SINGLE_LINE_ANSI
    return LogFormat.STANDARD


# ---------------------------------------------------------------------------
# Standard multi-line strategy
# ---------------------------------------------------------------------------


def _collect_direct_results(lines: list[str], results: dict[str, TestStatus]) -> None:
    for line in lines:
        if match := DIRECT_RESULT_RE.match(line):
            _update_status_by_precedence(
                results, match.group("name"), _status_from_token(match.group("status"))
            )


def _accept_status_match(
    lines: list[str],
    index: int,
    match: re.Match,
    name: str,
    is_diagnostic: DiagnosticPredicate,
) -> bool:
    if not is_diagnostic(lines[index], match.start("status"), match.end("status")):
        return True
    return _has_panic_evidence(_panic_window(lines, index), name)


def _scan_forward(
    lines: list[str],
    start: int,
    name: str,
    window: int,
    grace: int,
    is_diagnostic: DiagnosticPredicate,
) -> TestStatus | None:
    end = min(start + window, len(lines))
    for index in range(start + 1, end):
        line = lines[index]
        if SUMMARY_LINE_RE.match(line):
            return None
        if TEST_START_RE.search(line):
            if index > start + grace:
                return None
            continue
        stripped = line.strip()
        if stripped in STANDALONE_STATUS_WORDS:
            return _status_from_token(stripped)
        if _is_split_ok(lines, index, line):
            return TestStatus.PASSED
        for regex in (TRAILING_STATUS_RE, LEADING_STATUS_RE):
            match = regex.search(line)
            if match and _accept_status_match(lines, index, match, name, is_diagnostic):
                return _status_from_token(match.group("status"))
    return None


def _has_verdict_token(line: str, offset: int, is_diagnostic: DiagnosticPredicate) -> bool:
    return any(
        not is_diagnostic(line, token.start("status"), token.end("status"))
        for token in STATUS_TOKEN_RE.finditer(line, offset)
    )


def _resolve_pending_results(
    lines: list[str],
    results: dict[str, TestStatus],
    is_diagnostic: DiagnosticPredicate,
) -> None:
    pending: dict[str, int] = {}
    for index, line in enumerate(lines):
        match = TEST_START_RE.search(line)
        if not match:
            continue
        name = match.group("name")
        if name in results or name in pending:
            continue
        # Split "o"/"k" tokens are left to the repair pass.
        if _is_split_ok(lines, index, match.group("rest")):
            continue
        # Only a verdict-like status word on the start line rules out the lookahead.
        if _has_verdict_token(line, match.start("rest"), is_diagnostic):
            continue
        pending[name] = index

    for name, start in pending.items():
        for window, grace in LOOKAHEAD_WINDOWS:
            status = _scan_forward(lines, start, name, window, grace, is_diagnostic)
            if status is not None:
                _fill_status(results, name, status)
                break


def _repair_split_tokens(lines: list[str], results: dict[str, TestStatus]) -> None:
    for index in range(len(lines) - 1):
        if not _is_split_ok(lines, index, lines[index]):
            continue
        for back in range(index, max(index - SPLIT_TOKEN_LOOKBACK, -1), -1):
            match = TEST_START_RE.search(lines[back])
            if match:
                _fill_status(results, match.group("name"), TestStatus.PASSED)
                break


def _rescan_broadly(
    lines: list[str],
    results: dict[str, TestStatus],
    is_diagnostic: DiagnosticPredicate,
) -> None:
    for index, line in enumerate(lines):
        match = TEST_START_RE.search(line)
        if not match or match.group("name") in results:
            continue
        name = match.group("name")
        status = None
        end = min(index + BROAD_RESCAN_WINDOW, len(lines))
        for cursor in range(index, end):
            text = lines[cursor]
            offset = 0
            if cursor == index:
                offset = match.start("rest")
            elif SUMMARY_LINE_RE.match(text):
                break
            elif TEST_START_RE.search(text):
                if cursor > index + BROAD_RESCAN_GRACE:
                    break
                continue
            for token in STATUS_TOKEN_RE.finditer(text, offset):
                if not is_diagnostic(
                    text, token.start("status"), token.end("status")
                ) or _has_panic_evidence(_panic_window(lines, cursor), name):
                    status = _status_from_token(token.group("status"))
        if status is not None:
            _fill_status(results, name, status)


def _collect_failure_block(lines: list[str], results: dict[str, TestStatus]) -> None:
    collecting = False
    for line in lines:
        stripped = line.strip()
        if stripped == "failures:":
            collecting = True
            continue
        if not collecting:
            continue
        if (
            not stripped
            or stripped.startswith("----")
            or stripped.startswith("error:")
            or stripped.startswith("test result:")
        ):
            collecting = False
            continue
        if match := FAILURE_ENTRY_RE.match(line):
            _update_status_by_precedence(results, match.group("name"), TestStatus.FAILED)


def parse_log_cargo_standard(
    log: str, is_diagnostic: DiagnosticPredicate = is_diagnostic_context
) -> dict[str, TestStatus]:
    """
    Parser for multi-line libtest output (``test NAME ... STATUS``).

    Runs five passes; passes two to four only classify names the earlier
    passes left open, the failures block may still mark a test failed.

    Args:
        log (str): log content
        is_diagnostic: predicate rejecting status tokens inside diagnostics
    Returns:
        dict: test case to test status mapping
    """
    lines = log.splitlines()
    results: dict[str, TestStatus] = {}

    _collect_direct_results(lines, results)
    logger.debug("direct matches: %d", len(results))
    _resolve_pending_results(lines, results, is_diagnostic)
    logger.debug("after lookahead: %d", len(results))
    _repair_split_tokens(lines, results)
    _rescan_broadly(lines, results, is_diagnostic)
    logger.debug("after broad rescan: %d", len(results))
    _collect_failure_block(lines, results)
    return results


# ---------------------------------------------------------------------------
# Single-line / ANSI strategy
# ---------------------------------------------------------------------------


def _first_status_between(
    text: str,
    begin: int,
    end: int,
    name: str,
    is_diagnostic: DiagnosticPredicate,
) -> TestStatus | None:
    for token in STATUS_TOKEN_RE.finditer(text, begin, end):
        start, stop = token.start("status"), token.end("status")
        if not is_diagnostic(text, start, stop):
            return _status_from_token(token.group("status"))
        nearby = text[max(begin, start - 1000) : min(end, stop + 1000)]
        if _has_panic_evidence(nearby, name):
            return _status_from_token(token.group("status"))
    return None


def parse_log_cargo_compact(
    log: str, is_diagnostic: DiagnosticPredicate = is_diagnostic_context
) -> dict[str, TestStatus]:
    """Parser for ANSI-colored or compressed libtest output where many results
    can share one physical line."""
    text = ansi_escape(log)
    results: dict[str, TestStatus] = {}

    for match in COMPACT_RESULT_RE.finditer(text):
        _update_status_by_precedence(
            results, match.group("name"), _status_from_token(match.group("status"))
        )
    for match in COMPACT_TRAILING_RE.finditer(text):
        _fill_status(results, match.group("name"), _status_from_token(match.group("status")))
    for line in text.splitlines():
        if match := UI_TEST_RE.match(line):
            _fill_status(
                results, match.group("name"), _status_from_token(match.group("status"))
            )

    starts = list(COMPACT_START_RE.finditer(text))
    for position, start in enumerate(starts):
        name = start.group("name")
        if name in results:
            continue
        end = starts[position + 1].start() if position + 1 < len(starts) else len(text)
        status = _first_status_between(text, start.end(), end, name, is_diagnostic)
        if status is not None:
            results[name] = status
    return results


# ---------------------------------------------------------------------------
# Nextest strategy
# ---------------------------------------------------------------------------


def normalize_nextest_name(name: str) -> str:
    """Guess the manifest form of a nextest test name.

    ``my-crate tests::it_works`` becomes ``tests::it_works``. Names whose
    binary id is qualified (``my-crate::integration tests::x``,
    ``my-crate$bin x``) are library-integration style and kept verbatim, as
    are names whose test part has no ``::`` path.
    """
    name = name.strip()
    match = NEXTEST_BINARY_ID_RE.match(name)
    if not match or match.group("qualifier"):
        return name
    test = match.group("test").strip()
    if "::" not in test:
        return name
    return test


def parse_log_nextest(
    log: str, is_diagnostic: DiagnosticPredicate = is_diagnostic_context
) -> dict[str, TestStatus]:
    """Parse cargo-nextest output and return {test_name: status}.

    Nextest lines carry explicit verdicts, so ``is_diagnostic`` is accepted
    for a uniform parser signature and not consulted.

    Rules:
      * ``PASS [duration] NAME`` -> passed
      * ``FAIL [duration] NAME`` -> failed (overrides a prior pass)
      * ``SKIP|IGNORED [duration] NAME`` -> ignored
      * other lines fall back to libtest direct and compact patterns
    """
    results: dict[str, TestStatus] = {}
    for raw in log.splitlines():
        line = ansi_escape(raw)
        if match := NEXTEST_LINE_RE.match(line):
            _update_status_by_precedence(
                results,
                normalize_nextest_name(match.group("name")),
                NEXTEST_STATUS[match.group("status")],
            )
            continue
        if match := DIRECT_RESULT_RE.match(line):
            _fill_status(results, match.group("name"), _status_from_token(match.group("status")))
            continue
        for match in COMPACT_RESULT_RE.finditer(line):
            _fill_status(results, match.group("name"), _status_from_token(match.group("status")))
    return results


NAME_TO_PARSER = {
    LogFormat.STANDARD: parse_log_cargo_standard,
    LogFormat.SINGLE_LINE_ANSI: parse_log_cargo_compact,
    LogFormat.NEXTEST: parse_log_nextest,
}


def parse_log(
    log: str,
    log_format: LogFormat | None = None,
    is_diagnostic: DiagnosticPredicate = is_diagnostic_context,
) -> ParsedLog:
    """Classify every test found in a raw log into passed/failed/ignored."""
    if log_format is None:
        log_format = detect_log_format(log)
    results = NAME_TO_PARSER[log_format](log, is_diagnostic=is_diagnostic)
    parsed = ParsedLog.from_statuses(results, log_format)
    logger.debug("parsed %s log: %s", log_format.value, parsed.counts())
    return parsed


def render_clean_log(parsed: ParsedLog) -> str:
    """Emit one ``test NAME ... STATUS`` line per classified test."""
    lines = [
        f"test {name} ... {CLEAN_LOG_TOKENS[status]}"
        for name, status in sorted(parsed.status_map().items())
    ]
    return "\n".join(lines) + ("\n" if lines else "")
