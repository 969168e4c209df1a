"""
本地 Mock OpenAI-compatible LLM server。

用途：
- 在没有真实 LLM 网关的情况下，本地跑通闭环（chunk review / synthesis 的 JSON-only 输出）

启动：
  python -m codereview.dev.mock_openai_server
然后设置 LLM_BASE_URL=http://127.0.0.1:9001 LLM_API_KEY=mock LLM_MODEL=mock
"""

from __future__ import annotations

import json
from collections.abc import Sequence

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from codereview.llm.client import ChatMessage


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatMessage] = Field(default_factory=list)


def _extract_paths_from_chunk_prompt(prompt: str) -> list[str]:
    """从 chunk prompt 的 diff 部分提取 `+++ b/<path>` 里的文件 path。"""
    paths: list[str] = []
    for line in prompt.splitlines():
        if line.startswith("+++ b/"):
            path = line.removeprefix("+++ b/").strip()
            if path and path not in paths:
                paths.append(path)
    return paths


def _extract_first_new_line(prompt: str) -> int | None:
    for line in prompt.splitlines():
        if line.startswith("@@ "):
            new_part = line.split(" ")[2]
            return int(new_part.lstrip("+").split(",")[0])
    return None


def _build_mock_chunk_review_json(paths: list[str], line: int | None) -> str:
    findings = []
    if paths:
        findings.append(
            {
                "file_path": paths[0],
                "line": line,
                "severity": "LOW",
                "category": "Maintainability",
                "title": "[MOCK] Add tests for the changed logic",
                "description": "[MOCK] 建议补充更严格的错误处理与边界校验，并为关键逻辑添加单元测试。",
            }
        )
    summary = f"[MOCK] 修改了 {', '.join(paths) or '未知文件'}"
    return json.dumps({"findings": findings, "summary": summary}, ensure_ascii=False)


def _decide_mock_response(messages: Sequence[ChatMessage]) -> str:
    user_texts = [m.content for m in messages if m.role == "user"]
    if not user_texts:
        raise ValueError("Mock server expects at least one user message")
    prompt = "\n".join(user_texts)

    if '"summary"' in prompt and "diff:" in prompt:
        paths = _extract_paths_from_chunk_prompt(prompt=prompt)
        return _build_mock_chunk_review_json(paths=paths, line=_extract_first_new_line(prompt=prompt))

    # 兜底：synthesis 或未知 prompt 返回“空 findings”，避免流程卡死
    return '{"findings": []}'


app = FastAPI(title="Mock OpenAI-compatible LLM", version="0.1.0")


@app.post("/v1/chat/completions")
async def chat_completions(req: ChatCompletionRequest) -> dict[str, object]:
    content = _decide_mock_response(messages=req.messages)
    return {
        "id": "mock",
        "object": "chat.completion",
        "created": 0,
        "model": req.model,
        "choices": [
            {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}}
        ],
    }


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9001)


if __name__ == "__main__":
    main()
