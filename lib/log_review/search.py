from collections.abc import Mapping
from dataclasses import asdict, dataclass
from pathlib import Path

from log_review.swe_constants import SEARCH_CONTEXT_LINES


@dataclass(frozen=True)
class SearchHit:
    line_number: int
    line_content: str
    context_before: list[str]
    context_after: list[str]

    def to_dict(self) -> dict:
        return asdict(self)


def get_search_terms(test_name: str) -> list[str]:
    """The test name, plus its last `` - `` segment for described tests."""
    terms = [test_name]
    last_part = test_name.split(" - ")[-1]
    if last_part and last_part != test_name:
        terms.append(last_part)
    return terms


def search_text(
    text: str, test_name: str, context: int = SEARCH_CONTEXT_LINES
) -> list[SearchHit]:
    lines = text.splitlines()
    terms = get_search_terms(test_name)
    hits = []
    for index, line in enumerate(lines):
        if not any(term in line for term in terms):
            continue
        hits.append(
            SearchHit(
                line_number=index + 1,
                line_content=line,
                context_before=lines[max(0, index - context) : index],
                context_after=lines[index + 1 : index + 1 + context],
            )
        )
    return hits


def search_logs(
    paths: Mapping[str, Path], test_name: str, context: int = SEARCH_CONTEXT_LINES
) -> dict[str, list[SearchHit]]:
    """Search every stage log for a test; keys follow ``paths``."""
    return {
        label: search_text(path.read_text(encoding="utf-8", errors="replace"), test_name, context)
        for label, path in paths.items()
    }
