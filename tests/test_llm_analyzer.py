"""Tests for chunked LLM log classification with a fake client."""

import json
from types import SimpleNamespace

import pytest

from log_review import llm_analyzer
from log_review.llm_analyzer import (
    LLMResponseError,
    analyze_log,
    chunk_log_content,
    classify_chunk,
    parse_response_content,
    render_prompt,
)
from log_review.manifest import Manifest


def completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def verdicts(*rows: tuple[str, str]) -> str:
    return json.dumps({"test_results": [{"test_name": name, "status": status} for name, status in rows]})


class FakeClient:
    """Returns queued response contents in order and records each prompt."""

    def __init__(self, contents: list[str]) -> None:
        self.contents = list(contents)
        self.calls: list[dict] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        return completion(self.contents.pop(0))


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    delays: list[float] = []
    monkeypatch.setattr(llm_analyzer.time, "sleep", delays.append)
    return delays


class TestChunking:
    def test_short_text_is_one_chunk(self) -> None:
        assert chunk_log_content("abc", 100) == ["abc"]

    def test_split_after_newline_in_last_quarter(self) -> None:
        text = "a" * 80 + "\n" + "b" * 50
        assert chunk_log_content(text, 100) == ["a" * 80 + "\n", "b" * 50]

    def test_falls_back_to_last_newline(self) -> None:
        text = "a" * 70 + "\n" + "b" * 29 + "\n" + "c" * 50
        chunks = chunk_log_content(text, 100)
        assert chunks == ["a" * 70 + "\n", "b" * 29 + "\n" + "c" * 50]

    def test_hard_split_without_newlines(self) -> None:
        assert [len(chunk) for chunk in chunk_log_content("x" * 250, 100)] == [100, 100, 50]

    def test_chunks_rebuild_the_text(self) -> None:
        text = "\n".join(f"test t{n} ... ok" for n in range(200))
        assert "".join(chunk_log_content(text, 300)) == text

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            chunk_log_content("abc", 0)


class TestPrompt:
    def test_prompt_carries_tests_and_chunk(self) -> None:
        prompt = render_prompt("test a ... ok", ["a", "b"])
        assert '["a", "b"]' in prompt
        assert "test a ... ok" in prompt


class TestParseResponseContent:
    def test_valid(self) -> None:
        assert parse_response_content(verdicts(("a", "passed"))) == [
            {"test_name": "a", "status": "passed"}
        ]

    @pytest.mark.parametrize(
        "content",
        [
            "not json",
            json.dumps({"results": []}),
            json.dumps({"test_results": [{"status": "passed"}]}),
            json.dumps({"test_results": [{"test_name": "a", "status": "maybe"}]}),
        ],
    )
    def test_invalid(self, content: str) -> None:
        with pytest.raises(LLMResponseError):
            parse_response_content(content)


class TestClassifyChunk:
    def test_retries_then_succeeds(self, no_sleep: list[float]) -> None:
        client = FakeClient(["garbage", verdicts(("a", "failed"))])
        rows = classify_chunk(client, "model", "chunk", ["a"], 1)
        assert rows == [{"test_name": "a", "status": "failed"}]
        assert no_sleep == [llm_analyzer.RETRY_DELAY_SECONDS]
        assert client.calls[0]["response_format"] == llm_analyzer.RESPONSE_FORMAT

    def test_gives_up_after_retries(self, no_sleep: list[float]) -> None:
        client = FakeClient(["garbage"] * (llm_analyzer.MAX_RETRIES + 1))
        with pytest.raises(LLMResponseError, match="chunk 3 failed"):
            classify_chunk(client, "model", "chunk", ["a"], 3)
        assert len(client.calls) == llm_analyzer.MAX_RETRIES + 1
        assert len(no_sleep) == llm_analyzer.MAX_RETRIES


class TestAnalyzeLog:
    def test_chunks_are_merged(self, no_sleep: list[float]) -> None:
        manifest = Manifest(f2p=("f",), p2p=("p",))
        log = "a" * 80 + "\n" + "b" * 50
        client = FakeClient(
            [
                verdicts(("p", "passed"), ("f", "non_existing")),
                verdicts(("p", "failed"), ("f", "passed")),
            ]
        )
        rows = analyze_log(client, log, manifest, chunk_size=100)
        assert rows == [
            {"test_name": "f", "status": "passed", "type": "fail_to_pass"},
            {"test_name": "p", "status": "failed", "type": "pass_to_pass"},
        ]
        assert len(client.calls) == 2
        assert no_sleep == []
