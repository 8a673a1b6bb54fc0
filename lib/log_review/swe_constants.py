from enum import Enum


class TestStatus(str, Enum):
    __test__ = False  # not a pytest test class

    PASSED = "passed"
    FAILED = "failed"
    IGNORED = "ignored"
    MISSING = "missing"


class LogFormat(str, Enum):
    NEXTEST = "nextest"
    SINGLE_LINE_ANSI = "single_line_ansi"
    STANDARD = "standard"


class Stage(str, Enum):
    BASE = "base"
    BEFORE = "before"
    AFTER = "after"
    AGENT = "agent"


REQUIRED_STAGES = (Stage.BASE, Stage.BEFORE, Stage.AFTER)

# Standard extractor windows, in lines.
LOOKAHEAD_WINDOWS = ((200, 5), (10_000, 50))  # (window, boundary grace)
BROAD_RESCAN_WINDOW = 100
BROAD_RESCAN_GRACE = 5
SPLIT_TOKEN_LOOKBACK = 10

# Characters inspected on each side of a status token.
DIAGNOSTIC_WINDOW = 50
PANIC_CONTEXT_LINES = 3

DUPLICATE_MIN_DISTANCE = 10
DUPLICATE_CONTEXT_LINES = 2
MAX_DUPLICATE_EXAMPLES = 50

SEARCH_CONTEXT_LINES = 5
