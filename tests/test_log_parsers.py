"""Tests for log format detection and the status extraction strategies."""

import pytest

from log_review.log_parsers import (
    NAME_TO_PARSER,
    ParsedLog,
    detect_log_format,
    is_diagnostic_context,
    normalize_nextest_name,
    parse_log,
    render_clean_log,
)
from log_review.swe_constants import LogFormat, TestStatus

NOISY_LOG = """running 6 tests
test tests::plain ... ok
test tests::slow ...
2024-01-01T00:00:00Z DEBUG worker: starting job
2024-01-01T00:00:01Z TRACE worker: polling
ok
test tests::unwrapped ...
called `Result::unwrap()` on an `Err` value: failed
ok
test tests::boom ...
thread 'tests::boom' panicked at src/lib.rs:5:9: boom failed
test tests::cached ...
[worker] result ok (cached)
test tests::skipped ... ignored, requires network

failures:
    tests::listed_only

test result: FAILED. 4 passed; 2 failed; 1 ignored
"""


class TestDetectLogFormat:
    """Test detect_log_format."""

    def test_plain_libtest_output_is_standard(self) -> None:
        """Multi-line libtest output without markers is Standard."""
        assert detect_log_format(NOISY_LOG) == LogFormat.STANDARD

    def test_nextest_lines_classify_as_nextest(self) -> None:
        """Six PASS lines are read as nextest, not Standard."""
        log = "\n".join(f"PASS [0.01s] crate mod::test_{i}" for i in range(6))
        assert detect_log_format(log) == LogFormat.NEXTEST

    def test_nextest_wins_over_ansi(self) -> None:
        """Colored nextest output is still nextest."""
        log = "\x1b[32m    PASS\x1b[0m [   0.004s] crate mod::test_x\n"
        assert detect_log_format(log) == LogFormat.NEXTEST

    def test_ansi_output_is_single_line(self) -> None:
        log = "test a ... \x1b[32mok\x1b[0m\ntest b ... \x1b[31mFAILED\x1b[0m\n"
        assert detect_log_format(log) == LogFormat.SINGLE_LINE_ANSI

    def test_compressed_output_is_single_line(self) -> None:
        """Many results on one physical line select the single-line strategy."""
        log = " ".join(f"test t{i} ... ok" for i in range(6))
        assert detect_log_format(log) == LogFormat.SINGLE_LINE_ANSI

    def test_ui_test_paths_are_single_line(self) -> None:
        log = "\n".join(f"tests/ui/case_{i}.rs ... ok" for i in range(11))
        assert detect_log_format(log) == LogFormat.SINGLE_LINE_ANSI


class TestStandardStrategy:
    """Test the five-pass Standard extractor."""

    @pytest.fixture
    def parsed(self) -> ParsedLog:
        return parse_log(NOISY_LOG)

    def test_direct_matches(self, parsed: ParsedLog) -> None:
        assert "tests::plain" in parsed.passed
        assert "tests::skipped" in parsed.ignored

    def test_standalone_status_after_noise(self, parsed: ParsedLog) -> None:
        """A bare status line below trace output resolves the pending test."""
        assert "tests::slow" in parsed.passed

    def test_diagnostic_token_is_skipped(self, parsed: ParsedLog) -> None:
        """'failed' inside an unwrap message is not a verdict."""
        assert "tests::unwrapped" in parsed.passed

    def test_panic_for_same_test_is_accepted(self, parsed: ParsedLog) -> None:
        assert "tests::boom" in parsed.failed

    def test_broad_rescan_finds_embedded_token(self, parsed: ParsedLog) -> None:
        assert "tests::cached" in parsed.passed

    def test_failure_block_adds_failed_names(self, parsed: ParsedLog) -> None:
        assert "tests::listed_only" in parsed.failed

    def test_error_is_failed(self) -> None:
        parsed = parse_log("running 1 test\ntest a ... error\n\ntest result: FAILED.\n")
        assert parsed.failed == {"a"}

    def test_split_ok_token(self) -> None:
        """An 'ok' broken into 'o' and 'k' lines still counts as passed."""
        parsed = parse_log("test split_me ... o\nk\ntest other ... ok\n")
        assert parsed.passed == {"split_me", "other"}

    def test_failure_is_not_shadowed_by_later_ok(self) -> None:
        parsed = parse_log("running\ntest a ... FAILED\nretry\ntest a ... ok\n")
        assert parsed.failed == {"a"}
        assert "a" not in parsed.passed

    def test_failure_block_overrides_ok(self) -> None:
        log = "running 1 test\ntest a ... ok\n\nfailures:\n    a\n\ntest result: FAILED.\n"
        assert parse_log(log).failed == {"a"}

    def test_custom_diagnostic_predicate(self) -> None:
        """The diagnostic filter is pluggable."""
        log = "running\ntest a ...\nstatus=failed\nok\n"
        assert parse_log(log).passed == {"a"}
        never = parse_log(log, is_diagnostic=lambda text, start, end: False)
        assert never.failed == {"a"}

    def test_diagnostic_word_on_start_line_keeps_lookahead(self) -> None:
        """An 'error:' log line after '...' does not hide the later verdict."""
        log = "test a ... [DEBUG] error: retrying connection\n" + "trace line\n" * 150 + "ok\n"
        parsed = parse_log(log)
        assert parsed.passed == {"a"}
        assert not parsed.failed


FILLER = "  trace output\n"


class TestStandardWindows:
    """Test the lookahead, rescan and split-token window boundaries."""

    def test_verdict_past_first_window(self) -> None:
        parsed = parse_log("test a ...\n" + FILLER * 300 + "ok\n")
        assert parsed.passed == {"a"}

    def test_verdict_at_end_of_wide_window(self) -> None:
        parsed = parse_log("test a ...\n" + FILLER * 9998 + "ok\n")
        assert parsed.passed == {"a"}

    def test_verdict_beyond_wide_window(self) -> None:
        parsed = parse_log("test a ...\n" + FILLER * 10_000 + "ok\n")
        assert parsed.all == frozenset()

    def test_wide_window_grace_allows_start_at_line_50(self) -> None:
        log = "test a ...\n" + FILLER * 49 + "test b ... ok\nok\n"
        assert parse_log(log).passed == {"a", "b"}

    def test_wide_window_stops_at_start_after_line_50(self) -> None:
        log = "test a ...\n" + FILLER * 50 + "test b ... ok\nok\n"
        parsed = parse_log(log)
        assert parsed.passed == {"b"}
        assert "a" not in parsed.all

    def test_rescan_reads_past_start_within_grace(self) -> None:
        """The last token wins while a new start sits within five lines."""
        log = "test a ... [trace] ok maybe\n" + FILLER * 4 + "test b ... ok\nFAILED\n"
        parsed = parse_log(log)
        assert parsed.failed == {"a"}
        assert parsed.passed == {"b"}

    def test_rescan_stops_at_start_after_grace(self) -> None:
        log = "test a ... [trace] ok maybe\n" + FILLER * 5 + "test b ... ok\nFAILED\n"
        assert parse_log(log).passed == {"a", "b"}

    def test_split_token_within_lookback(self) -> None:
        log = "test a ... [trace] ignored here\n" + FILLER * 8 + "progress o\nk\n"
        assert parse_log(log).passed == {"a"}

    def test_split_token_beyond_lookback(self) -> None:
        log = "test a ... [trace] ignored here\n" + FILLER * 9 + "progress o\nk\n"
        parsed = parse_log(log)
        assert parsed.ignored == {"a"}
        assert not parsed.passed


class TestStatusPrecedence:
    """Repeated results resolve failed > passed > ignored in every strategy."""

    @pytest.mark.parametrize(
        "log",
        [
            "test a ... ok\n" + "noise\n" * 20 + "test a ... ignored\n",
            "test a ... ignored\n" + "noise\n" * 20 + "test a ... ok\n",
        ],
    )
    def test_standard_passed_beats_ignored(self, log: str) -> None:
        parsed = parse_log(log)
        assert parsed.passed == {"a"}
        assert not parsed.ignored

    def test_compact_passed_beats_ignored(self) -> None:
        parsed = parse_log("test a ... ok test a ... ignored", LogFormat.SINGLE_LINE_ANSI)
        assert parsed.passed == {"a"}

    def test_nextest_pass_beats_skip(self) -> None:
        parsed = parse_log("PASS [0.1s] c m::a\nSKIP [0.1s] c m::a\n")
        assert parsed.passed == {"m::a"}
        assert not parsed.ignored


class TestSingleLineStrategy:
    """Test the ANSI / compressed extractor."""

    def test_ansi_colored_results(self) -> None:
        log = "test a ... \x1b[32mok\x1b[0m\ntest b ... \x1b[31mFAILED\x1b[0m\n"
        parsed = parse_log(log)
        assert parsed.log_format == LogFormat.SINGLE_LINE_ANSI
        assert parsed.passed == {"a"}
        assert parsed.failed == {"b"}

    def test_many_results_on_one_line(self) -> None:
        log = (
            "test a ... ok test b ... ok test c ... FAILED "
            "test d ... ok test e ... ignored test f ... ok"
        )
        parsed = parse_log(log)
        assert parsed.passed == {"a", "b", "d", "f"}
        assert parsed.failed == {"c"}
        assert parsed.ignored == {"e"}

    def test_ui_paths_and_mismatch(self) -> None:
        lines = [f"tests/ui/case_{i}.rs ... ok" for i in range(10)]
        lines.append("tests/ui/broken.rs ... mismatch")
        parsed = parse_log("\n".join(lines))
        assert "tests/ui/case_0.rs" in parsed.passed
        assert parsed.failed == {"tests/ui/broken.rs"}

    def test_lookahead_between_starts(self) -> None:
        log = "\x1b[0mtest slow ... [DEBUG] working\n ok\ntest fast ... ok\n"
        parsed = parse_log(log)
        assert parsed.passed == {"slow", "fast"}

    def test_lookahead_spans_long_output(self) -> None:
        log = "\x1b[0mtest slow ... " + "x" * 25_000 + " ok\ntest fast ... ok\n"
        assert parse_log(log).passed == {"slow", "fast"}

    def test_doc_test_names_with_spaces(self) -> None:
        log = (
            "test src/lib.rs - parse (line 10) ... \x1b[32mok\x1b[0m\n"
            "test tests::x ... \x1b[32mok\x1b[0m\n"
        )
        parsed = parse_log(log)
        assert parsed.log_format == LogFormat.SINGLE_LINE_ANSI
        assert parsed.passed == {"src/lib.rs - parse (line 10)", "tests::x"}

    def test_doc_test_between_compressed_results(self) -> None:
        log = "test a ... ok test src/lib.rs - parse (line 10) ... ok test b ... FAILED"
        parsed = parse_log(log, LogFormat.SINGLE_LINE_ANSI)
        assert parsed.passed == {"a", "src/lib.rs - parse (line 10)"}
        assert parsed.failed == {"b"}


class TestNextestStrategy:
    """Test nextest parsing and name normalization."""

    def test_pass_fail_skip(self) -> None:
        log = "\n".join(
            [
                "    Starting 3 tests across 1 binary",
                "        PASS [   0.004s] my_crate tests::it_works",
                "        FAIL [   0.010s] my_crate tests::it_breaks",
                "        SKIP [   0.000s] my_crate tests::later",
            ]
        )
        parsed = parse_log(log)
        assert parsed.log_format == LogFormat.NEXTEST
        assert parsed.passed == {"tests::it_works"}
        assert parsed.failed == {"tests::it_breaks"}
        assert parsed.ignored == {"tests::later"}

    def test_fail_overrides_pass(self) -> None:
        log = "PASS [0.1s] c mod::x\nFAIL [0.2s] c mod::x\n"
        assert parse_log(log).failed == {"mod::x"}

    def test_counter_prefix(self) -> None:
        log = "PASS [0.1s] (1/2) c mod::x\n"
        assert parse_log(log).passed == {"mod::x"}

    def test_mixed_libtest_lines(self) -> None:
        log = "PASS [0.1s] c mod::x\ntest doc_example ... ok\n"
        assert parse_log(log).passed == {"mod::x", "doc_example"}

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("my_crate tests::it_works", "tests::it_works"),
            ("my-crate::integration tests::it_works", "my-crate::integration tests::it_works"),
            ("my-crate$bin top_level", "my-crate$bin top_level"),
            ("my_crate top_level", "my_crate top_level"),
            ("tests::it_works", "tests::it_works"),
        ],
    )
    def test_normalize_nextest_name(self, raw: str, expected: str) -> None:
        assert normalize_nextest_name(raw) == expected


class TestParserRegistry:
    """Every registered parser takes the same arguments."""

    @pytest.mark.parametrize("log_format", list(LogFormat))
    def test_accepts_diagnostic_predicate(self, log_format: LogFormat) -> None:
        parser = NAME_TO_PARSER[log_format]
        results = parser("test a ... ok\n", is_diagnostic=lambda text, start, end: False)
        assert results == {"a": TestStatus.PASSED}

    def test_parse_log_passes_predicate_to_nextest(self) -> None:
        log = "PASS [0.1s] c m::a\n"
        parsed = parse_log(log, is_diagnostic=lambda text, start, end: True)
        assert parsed.passed == {"m::a"}


class TestDiagnosticContext:
    """Test is_diagnostic_context directly with crafted lines."""

    @pytest.mark.parametrize(
        "text",
        [
            'assertion failed: status == "failed"',
            "error: test failed, to rerun pass `--lib`",
            "status=ok",
            "Err(Custom { kind: Other, error: failed })",
        ],
    )
    def test_diagnostic_lines(self, text: str) -> None:
        token = "failed" if "failed" in text else "ok"
        start = text.rindex(token)
        assert is_diagnostic_context(text, start, start + len(token))

    def test_plain_verdict(self) -> None:
        text = "[INFO] flushed buffers ok"
        start = text.rindex("ok")
        assert not is_diagnostic_context(text, start, start + 2)


class TestParsedLogProperties:
    """Properties every ParsedLog holds."""

    @pytest.mark.parametrize(
        "log",
        [
            NOISY_LOG,
            "test a ... ok test a ... FAILED test b ... ok test c ... ok test d ... ok test e ... ok",
            "PASS [0.1s] c m::a\nFAIL [0.1s] c m::a\nSKIP [0.1s] c m::b\n",
        ],
    )
    def test_sets_are_disjoint(self, log: str) -> None:
        parsed = parse_log(log)
        assert not parsed.passed & parsed.failed
        assert not parsed.passed & parsed.ignored
        assert not parsed.failed & parsed.ignored
        assert parsed.all == parsed.passed | parsed.failed | parsed.ignored

    def test_clean_log_round_trip_is_stable(self) -> None:
        first = parse_log(NOISY_LOG)
        second = parse_log(render_clean_log(first), LogFormat.STANDARD)
        assert (second.passed, second.failed, second.ignored) == (
            first.passed,
            first.failed,
            first.ignored,
        )

    def test_status_map_and_counts(self) -> None:
        parsed = ParsedLog.from_statuses({"a": TestStatus.PASSED, "b": TestStatus.FAILED})
        assert parsed.status_map() == {"a": TestStatus.PASSED, "b": TestStatus.FAILED}
        assert parsed.counts() == {"passed": 1, "failed": 1, "ignored": 0, "all": 2}
