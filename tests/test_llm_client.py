from __future__ import annotations

import httpx
import pytest

from codereview.dev.mock_openai_server import app as mock_llm_app
from codereview.llm.client import OpenAICompatLLMClient
from codereview.llm.client import _normalize_base_url
from codereview.llm.client import parse_json_output
from codereview.review.errors import MalformedModelOutputError
from codereview.review.errors import ModelTransportError
from codereview.review.model_service import LLMModelService
from codereview.review.models import ChunkReview
from codereview.review.models import Severity


def _client(transport: httpx.AsyncBaseTransport) -> OpenAICompatLLMClient:
    return OpenAICompatLLMClient(
        api_key="k",
        base_url="http://llm.test",
        http_client=httpx.AsyncClient(transport=transport),
        model="mock",
    )


def _completion(content: str | None) -> dict[str, object]:
    return {
        "id": "x",
        "object": "chat.completion",
        "created": 0,
        "model": "mock",
        "choices": [{"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}}],
    }


def test_normalize_base_url() -> None:
    assert _normalize_base_url("http://llm.test") == "http://llm.test/v1"
    assert _normalize_base_url("http://llm.test/v1/") == "http://llm.test/v1"


def test_parse_json_output_validates_schema() -> None:
    review = parse_json_output(
        content='{"findings": [{"file_path": "a.py", "line": 3, "severity": "HIGH", '
        '"category": "Bug", "title": "t"}], "summary": "s"}',
        schema=ChunkReview,
    )
    assert isinstance(review, ChunkReview)
    assert review.findings[0].severity is Severity.HIGH
    assert review.summary == "s"


@pytest.mark.parametrize(
    "content",
    [
        "```json\n{}\n```",
        '{"findings": []}',
        '{"findings": [{"file_path": "a.py", "severity": "SEVERE", "category": "Bug", "title": "t"}], "summary": ""}',
    ],
)
def test_parse_json_output_rejects_malformed(content: str) -> None:
    with pytest.raises(MalformedModelOutputError):
        parse_json_output(content=content, schema=ChunkReview)


@pytest.mark.anyio
async def test_llm_model_service_against_mock_server(make_diff_text) -> None:
    service = LLMModelService(llm_client=_client(httpx.ASGITransport(app=mock_llm_app)))
    chunk_text = make_diff_text({"pkg/core.py": [3]})

    review = await service.review_chunk(chunk_text=chunk_text, context_text="")

    assert review.summary.startswith("[MOCK]")
    assert [(f.file_path, f.line) for f in review.findings] == [("pkg/core.py", 1)]
    assert await service.synthesize(context_text="- chunk 0 [1 findings]: x") == []


@pytest.mark.anyio
async def test_complete_json_maps_http_errors() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"error": {"message": "boom"}}))
    with pytest.raises(ModelTransportError):
        await _client(transport).complete_json(messages=[], schema=ChunkReview)


@pytest.mark.anyio
async def test_complete_json_rejects_empty_content() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=_completion(None)))
    with pytest.raises(ModelTransportError):
        await _client(transport).complete_json(messages=[], schema=ChunkReview)


@pytest.mark.anyio
async def test_complete_json_rejects_non_json_content() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=_completion("sure, here you go")))
    with pytest.raises(MalformedModelOutputError):
        await _client(transport).complete_json(messages=[], schema=ChunkReview)
