import json
import logging
import time
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from openai import OpenAI, OpenAIError

from log_review.manifest import Manifest
from log_review.resolver import merge_chunk_results

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_CHUNK_SIZE = 10_000
MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 2
TEMPERATURE = 0.1
MAX_TOKENS = 16384

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
PROMPT_TEMPLATE = "llm_chunk_prompt.j2"
VERDICTS = ("passed", "failed", "non_existing")

RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "test_status_response",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "test_results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "test_name": {
                                "type": "string",
                                "description": "The name of the test",
                            },
                            "status": {
                                "type": "string",
                                "enum": list(VERDICTS),
                                "description": "The status of the test",
                            },
                        },
                        "required": ["test_name", "status"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["test_results"],
            "additionalProperties": False,
        },
    },
}


class LLMResponseError(ValueError):
    pass


def create_client(api_key: str | None = None, api_base: str | None = None) -> OpenAI:
    # OpenAI() falls back to OPENAI_API_KEY / OPENAI_BASE_URL when these are None.
    return OpenAI(api_key=api_key, base_url=api_base)


def chunk_log_content(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split a log into chunks of at most chunk_size characters.

    Each split lands just after a newline in the last quarter of the chunk
    when one exists, else after the last newline in the chunk, else exactly
    at the chunk boundary.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive.")
    if len(text) <= chunk_size:
        return [text]

    chunks = []
    start = 0
    while start < len(text):
        end = start + chunk_size
        if end >= len(text):
            end = len(text)
        else:
            newline = text.rfind("\n", start + chunk_size * 3 // 4, end)
            if newline == -1:
                newline = text.rfind("\n", start, end)
            if newline != -1:
                end = newline + 1
        chunks.append(text[start:end])
        start = end
    return chunks


def render_prompt(chunk: str, test_names: list[str]) -> str:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        undefined=StrictUndefined,
        autoescape=False,
    )
    template = env.get_template(PROMPT_TEMPLATE)
    return template.render(test_list=json.dumps(test_names), chunk=chunk)


def parse_response_content(content: str) -> list[dict]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"response is not JSON: {exc}") from exc
    rows = data.get("test_results") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        raise LLMResponseError("response has no 'test_results' list")
    verdicts = []
    for row in rows:
        if not isinstance(row, dict) or not isinstance(row.get("test_name"), str):
            raise LLMResponseError(f"malformed test result: {row!r}")
        if row.get("status") not in VERDICTS:
            raise LLMResponseError(f"unknown status for {row['test_name']}: {row.get('status')!r}")
        verdicts.append({"test_name": row["test_name"], "status": row["status"]})
    return verdicts


def request_chunk(client: OpenAI, model: str, prompt: str) -> list[dict]:
    completion = client.chat.completions.create(
        model=model,
        messages=[{"role": "user", "content": prompt}],
        temperature=TEMPERATURE,
        max_tokens=MAX_TOKENS,
        response_format=RESPONSE_FORMAT,
    )
    content = ""
    if completion.choices and completion.choices[0].message:
        content = completion.choices[0].message.content or ""
    return parse_response_content(content)


def classify_chunk(
    client: OpenAI,
    model: str,
    chunk: str,
    test_names: list[str],
    chunk_number: int,
) -> list[dict]:
    prompt = render_prompt(chunk, test_names)
    attempt = 0
    while True:
        try:
            return request_chunk(client, model, prompt)
        except (OpenAIError, ValueError) as exc:
            attempt += 1
            if attempt > MAX_RETRIES:
                raise LLMResponseError(
                    f"chunk {chunk_number} failed after {MAX_RETRIES} retries: {exc}"
                ) from exc
            logger.warning(
                "chunk %d failed (attempt %d), retrying in %ds: %s",
                chunk_number,
                attempt,
                RETRY_DELAY_SECONDS,
                exc,
            )
            time.sleep(RETRY_DELAY_SECONDS)


def analyze_log(
    client: OpenAI,
    log_text: str,
    manifest: Manifest,
    model: str = DEFAULT_MODEL,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> list[dict]:
    """Classify every manifest test in a log with the language model.

    Returns rows of ``{test_name, status, type}`` sorted by test name.
    """
    test_names = manifest.universe
    chunks = chunk_log_content(log_text, chunk_size)
    logger.info("analyzing %d chunks for %d tests", len(chunks), len(test_names))
    chunk_results = [
        classify_chunk(client, model, chunk, test_names, number)
        for number, chunk in enumerate(chunks, start=1)
    ]
    merged = merge_chunk_results(chunk_results)
    return [
        {"test_name": name, "status": merged[name], "type": manifest.test_type(name)}
        for name in sorted(merged)
    ]
