import re
from collections.abc import Iterable, Mapping
from pathlib import Path

TEST_ATTRIBUTE_RE = re.compile(r"#\[(?:[\w:]+::)?test\b[^\]]*\]")
ATTRIBUTE_LOOKAHEAD_LINES = 3


def is_test_patch(path: Path | str) -> bool:
    """Patches whose file name mentions "test" carry test code; the rest are
    golden source patches."""
    return "test" in Path(path).name.lower()


def partition_patches(paths: Iterable[Path]) -> tuple[list[Path], list[Path]]:
    golden, tests = [], []
    for path in paths:
        (tests if is_test_patch(path) else golden).append(path)
    return golden, tests


def search_key(test_name: str) -> str:
    return test_name.split("::")[-1].strip()


def _mentions(key: str, text: str) -> bool:
    return re.search(r"(?<!\w)" + re.escape(key) + r"(?!\w)", text) is not None


def has_test_definition(key: str, text: str) -> bool:
    """True if text defines ``fn KEY(`` or a ``#[test]`` function named KEY."""
    escaped = re.escape(key)
    if re.search(r"\bfn\s+" + escaped + r"\s*(?:<[^>]*>\s*)?\(", text):
        return True
    fn_name_re = re.compile(r"\bfn\s+" + escaped + r"\b")
    lines = text.splitlines()
    for index, line in enumerate(lines):
        if not TEST_ATTRIBUTE_RE.search(line):
            continue
        following = lines[index + 1 : index + 1 + ATTRIBUTE_LOOKAHEAD_LINES]
        if any(fn_name_re.search(candidate) for candidate in following):
            return True
    return False


def find_f2p_in_golden_source(
    f2p: Iterable[str],
    golden: Mapping[str, str],
    tests: Mapping[str, str],
) -> list[str]:
    """Report F2P tests whose name shows up in a golden source patch without
    being defined in any test patch.

    ``golden`` and ``tests`` map patch file names to their text.
    """
    examples = []
    for test_name in f2p:
        key = search_key(test_name)
        if not key:
            continue
        hits = [name for name, text in golden.items() if _mentions(key, text)]
        if not hits:
            continue
        if any(has_test_definition(key, text) for text in tests.values()):
            continue
        examples.append(
            f"{test_name} (found '{key}' in golden source diff {', '.join(hits)}; "
            f"no test definition in test diffs)"
        )
    return examples
