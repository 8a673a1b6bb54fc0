import json
from pathlib import Path

import pytest

MANIFEST = {
    "fail_to_pass": ["tests::f2p_one"],
    "pass_to_pass": ["tests::p2p_one", "tests::p2p_two"],
}

ALL_OK_LOG = """running 3 tests
test tests::f2p_one ... ok
test tests::p2p_one ... ok
test tests::p2p_two ... ok

test result: ok. 3 passed; 0 failed; 0 ignored
"""


@pytest.fixture
def make_deliverable(tmp_path: Path):
    """Write a deliverable folder: main/task.json plus proj_<stage>.log files."""

    def _make(logs: dict[str, str], manifest: dict | None = None, extra_files: dict | None = None) -> Path:
        root = tmp_path / "deliverable"
        (root / "main").mkdir(parents=True, exist_ok=True)
        (root / "main" / "task.json").write_text(json.dumps(manifest or MANIFEST), encoding="utf-8")
        for stage, text in logs.items():
            (root / f"proj_{stage}.log").write_text(text, encoding="utf-8")
        for name, text in (extra_files or {}).items():
            path = root / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return root

    return _make
