"""
LLM Client（基于 OpenAI SDK，对接任意 OpenAI-compatible 网关，例如 LiteLLM Proxy）。

目标：
- **尽量薄**：只做协议适配与错误分类
- **严格 JSON**：chunk review / synthesis 需要可机读输出，必须 schema 校验
- **错误分两类**：传输失败 -> `ModelTransportError`；内容不合规 -> `MalformedModelOutputError`
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from codereview.review.errors import MalformedModelOutputError
from codereview.review.errors import ModelTransportError

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


class OpenAICompatLLMClient:
    """OpenAI-compatible chat completions 客户端（复用外部传入的 httpx 连接池）。"""

    def __init__(self, api_key: str, base_url: str, http_client: httpx.AsyncClient, model: str) -> None:
        """
        - api_key: LLM API key
        - base_url: OpenAI-compatible base URL（自动补 `/v1`）
        - http_client: 复用 httpx.AsyncClient 连接池
        - model: 模型名（由网关路由）
        """
        self._base_url = _normalize_base_url(base_url=base_url)
        self._model = model
        # 重试由 reviewer 统一控制（带退避），这里关闭 SDK 自带重试
        self._client = AsyncOpenAI(api_key=api_key, base_url=self._base_url, http_client=http_client, max_retries=0)

    @property
    def model(self) -> str:
        return self._model

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[BaseModel]) -> BaseModel:
        """
        约定：让模型输出"纯 JSON"，然后做严格 schema 校验。

        - **JSON mode**：使用 response_format 确保返回纯 JSON（不包含 markdown 代码块）
        - **失败策略**：不在这里吞异常，由调用方决定重试/降级
        """
        try:
            logger.info(f"LLM JSON request: model={self._model}, schema={schema.__name__}")
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            logger.error(f"LLM API error: {exc}")
            raise ModelTransportError(f"LLM API error: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.error(f"LLM HTTP error: {exc}")
            raise ModelTransportError(f"LLM HTTP error: {exc}") from exc

        if not response.choices:
            logger.error("LLM returned no choices")
            raise ModelTransportError("LLM returned no choices")
        content = response.choices[0].message.content
        if content is None:
            logger.error("LLM returned None content")
            raise ModelTransportError("LLM returned None content")

        logger.info(f"LLM JSON response: {len(content)} chars")
        return parse_json_output(content=content, schema=schema)


def parse_json_output(content: str, schema: type[BaseModel]) -> BaseModel:
    """把模型原始文本解析为 schema；解析/校验失败 -> `MalformedModelOutputError`。"""
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.error(f"Invalid JSON from LLM. Raw content: {content}")
        raise MalformedModelOutputError(f"LLM did not return valid JSON. Raw: {content}") from exc

    try:
        validated = schema.model_validate(parsed)
    except ValidationError as exc:
        logger.error(f"Schema validation failed: {exc}")
        raise MalformedModelOutputError(f"LLM JSON does not match schema {schema.__name__}: {exc}") from exc

    logger.info(f"Successfully validated JSON to {schema.__name__}")
    return validated
