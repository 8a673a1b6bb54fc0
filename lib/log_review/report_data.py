import json
import logging
from pathlib import Path

from log_review.swe_constants import TestStatus

logger = logging.getLogger(__name__)

STATUS_ALIASES = {
    "passed": TestStatus.PASSED,
    "pass": TestStatus.PASSED,
    "ok": TestStatus.PASSED,
    "success": TestStatus.PASSED,
    "failed": TestStatus.FAILED,
    "fail": TestStatus.FAILED,
    "failure": TestStatus.FAILED,
    "error": TestStatus.FAILED,
    "ignored": TestStatus.IGNORED,
    "skipped": TestStatus.IGNORED,
    "skip": TestStatus.IGNORED,
}
CATEGORY_STATUS = {
    "success": TestStatus.PASSED,
    "failure": TestStatus.FAILED,
}


class ReportFormatError(ValueError):
    pass


def normalize_status(value) -> TestStatus | None:
    if not isinstance(value, str):
        return None
    return STATUS_ALIASES.get(value.strip().lower())


def _record(statuses: dict[str, TestStatus], name, status: TestStatus | None) -> None:
    if not isinstance(name, str) or status is None:
        return
    # A failure reported anywhere wins over a success reported elsewhere.
    if statuses.get(name) == TestStatus.FAILED:
        return
    statuses[name] = status


def _from_flat_list(data: list) -> dict[str, TestStatus]:
    statuses: dict[str, TestStatus] = {}
    for item in data:
        if not isinstance(item, dict):
            raise ReportFormatError("report list entries must be objects.")
        name = item.get("test_name", item.get("name"))
        _record(statuses, name, normalize_status(item.get("status")))
    return statuses


def _from_tests_map(tests: dict) -> dict[str, TestStatus]:
    statuses: dict[str, TestStatus] = {}
    for name, value in tests.items():
        if isinstance(value, dict):
            value = value.get("status")
        _record(statuses, name, normalize_status(value))
    return statuses


def _from_tests_status(data: dict) -> dict[str, TestStatus]:
    statuses: dict[str, TestStatus] = {}
    for entry in data.values():
        if not isinstance(entry, dict) or not isinstance(entry.get("tests_status"), dict):
            continue
        for category in entry["tests_status"].values():
            if not isinstance(category, dict):
                continue
            for key, status in CATEGORY_STATUS.items():
                for name in category.get(key) or []:
                    _record(statuses, name, status)
    return statuses


def _has_tests_status(data: dict) -> bool:
    return any(
        isinstance(entry, dict) and isinstance(entry.get("tests_status"), dict)
        for entry in data.values()
    )


def parse_report_data(data) -> dict[str, TestStatus]:
    """Flatten an external report into {test_name: status}.

    Recognized shapes:
      * ``[{"test_name": ..., "status": ...}, ...]``
      * ``{"tests": {name: {"status": ...}}}``
      * ``{instance: {"tests_status": {CATEGORY: {"success": [...], "failure": [...]}}}}``
    """
    if isinstance(data, list):
        return _from_flat_list(data)
    if isinstance(data, dict):
        if isinstance(data.get("tests"), dict):
            return _from_tests_map(data["tests"])
        if _has_tests_status(data):
            return _from_tests_status(data)
    raise ReportFormatError(
        "report data is not a test list, a 'tests' map, or a 'tests_status' report."
    )


def load_report_data(path: Path) -> dict[str, TestStatus]:
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except OSError as exc:
        raise ReportFormatError(f"{path}: cannot read report: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ReportFormatError(f"{path}: invalid JSON: {exc}") from exc
    try:
        statuses = parse_report_data(data)
    except ReportFormatError as exc:
        raise ReportFormatError(f"{path}: {exc}") from exc
    logger.debug("loaded %d report statuses from %s", len(statuses), path)
    return statuses
