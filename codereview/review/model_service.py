"""
Model service 接口 + 基于 OpenAI-compatible LLM 的实现。

接口约定（`ModelService`）：
- review_chunk(chunk_text, context_text) -> `ChunkReview`（findings + 摘要）
- synthesize(context_text) -> 跨 chunk 的少量整体 findings
- 传输失败抛 `ModelTransportError`；输出不合规抛 `MalformedModelOutputError`
"""

from __future__ import annotations

from typing import Protocol

from codereview.llm.client import ChatMessage
from codereview.llm.client import OpenAICompatLLMClient
from codereview.review.errors import MalformedModelOutputError
from codereview.review.models import Category
from codereview.review.models import ChunkReview
from codereview.review.models import ModelFinding
from codereview.review.models import Severity
from codereview.review.models import SynthesisReview


class ModelService(Protocol):
    """外部语言模型 reviewer 的边界协议（方便替换实现 / 测试注入 fake）。"""

    async def review_chunk(self, chunk_text: str, context_text: str) -> ChunkReview: ...

    async def synthesize(self, context_text: str) -> list[ModelFinding]: ...


_SEVERITIES = "|".join(s.value for s in Severity)
_CATEGORIES = "|".join(c.value for c in Category)


def _system_prompt() -> str:
    """reviewer 的 system prompt：强制 JSON-only 输出。"""
    return (
        "你是资深代码审查工程师。"
        "你必须输出严格 JSON（不要 markdown、不要解释），用于自动化代码审查流水线。"
    )


def _chunk_user_prompt(chunk_text: str, context_text: str) -> str:
    """chunk review 的 user prompt：当前 chunk diff + 前序 chunk 摘要（不给原始的前序 diff）。"""
    context = context_text or "（这是第一个 chunk，没有前序摘要）"
    return (
        "请只基于下面的 diff 片段做代码审查，输出 JSON：\n"
        '{"findings":[{"file_path":"...","line":1,"end_line":null,'
        f'"severity":"{_SEVERITIES}","category":"{_CATEGORIES}",'
        '"title":"...","description":"...","suggested_fix":null,"references":[]}],'
        '"summary":"..."}\n'
        "要求：\n"
        "- file_path 必须是本片段中出现的文件\n"
        "- line 使用新文件的行号\n"
        "- title 简短（一句话），description 具体、可验证\n"
        "- summary 用 1~3 句话概括本片段的改动意图与风险，供后续片段参考\n\n"
        f"{context}\n\n"
        f"diff:\n{chunk_text}\n"
    )


def _synthesis_user_prompt(context_text: str) -> str:
    return (
        "下面是整个变更按片段审查后的摘要。请只给出跨片段的整体问题（例如架构/一致性问题），"
        "不要重复单个片段内的问题，最多 5 条，输出 JSON：\n"
        '{"findings":[{"file_path":"...","line":null,'
        f'"severity":"{_SEVERITIES}","category":"{_CATEGORIES}",'
        '"title":"...","description":"..."}]}\n\n'
        f"{context_text}\n"
    )


class LLMModelService:
    """基于 `OpenAICompatLLMClient.complete_json` 的 `ModelService` 实现。"""

    def __init__(self, llm_client: OpenAICompatLLMClient) -> None:
        self._llm_client = llm_client

    async def review_chunk(self, chunk_text: str, context_text: str) -> ChunkReview:
        messages = [
            ChatMessage(role="system", content=_system_prompt()),
            ChatMessage(role="user", content=_chunk_user_prompt(chunk_text=chunk_text, context_text=context_text)),
        ]
        result = await self._llm_client.complete_json(messages=messages, schema=ChunkReview)
        if not isinstance(result, ChunkReview):
            raise MalformedModelOutputError("LLM chunk review did not validate to ChunkReview")
        return result

    async def synthesize(self, context_text: str) -> list[ModelFinding]:
        messages = [
            ChatMessage(role="system", content=_system_prompt()),
            ChatMessage(role="user", content=_synthesis_user_prompt(context_text=context_text)),
        ]
        result = await self._llm_client.complete_json(messages=messages, schema=SynthesisReview)
        if not isinstance(result, SynthesisReview):
            raise MalformedModelOutputError("LLM synthesis did not validate to SynthesisReview")
        return result.findings
