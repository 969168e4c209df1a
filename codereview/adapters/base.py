"""
Tool Adapter 接口。

每个外部/内置分析引擎都要满足同一个契约：
- `name`：唯一标识（也是 finding 的 source）
- `async analyze(request) -> list[Finding]`：抛异常即“显式失败”
- 不得修改共享状态，也看不到其它 adapter 的输出

同步实现（纯 CPU 的规则扫描）继承 `ThreadedToolAdapter`，放到 worker 线程跑，避免阻塞事件循环。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import anyio.to_thread

from codereview.review.models import Diff
from codereview.review.models import Finding
from codereview.review.models import ReviewPlan


@dataclass(frozen=True)
class AdapterRequest:
    """一次 adapter 调用的输入：解析后的 diff、原始 diff 文本、本次 plan。"""

    diff: Diff
    diff_text: str
    plan: ReviewPlan


class ToolAdapter(Protocol):
    name: str

    async def analyze(self, request: AdapterRequest) -> list[Finding]: ...


class ThreadedToolAdapter:
    """同步 adapter 基类：`run` 在 worker 线程执行。"""

    name: str = ""

    async def analyze(self, request: AdapterRequest) -> list[Finding]:
        # 超时被取消时放弃等待线程结果（线程本身跑完即退出，不写共享状态）
        return await anyio.to_thread.run_sync(self.run, request, abandon_on_cancel=True)

    def run(self, request: AdapterRequest) -> list[Finding]:
        raise NotImplementedError


def infer_language_from_path(path: str) -> str:
    """
    通过文件扩展名推断语言。

    不需要 LLM，且必须确定性；未知扩展名返回 "unknown"。
    """
    lowered = path.lower()
    if lowered.endswith(".py"):
        return "python"
    if lowered.endswith(".ts") or lowered.endswith(".tsx"):
        return "typescript"
    if lowered.endswith(".js") or lowered.endswith(".jsx"):
        return "javascript"
    if lowered.endswith(".go"):
        return "go"
    if lowered.endswith(".java"):
        return "java"
    if lowered.endswith(".rb"):
        return "ruby"
    if lowered.endswith(".php"):
        return "php"
    if lowered.endswith(".rs"):
        return "rust"
    if lowered.endswith(".sql"):
        return "sql"
    return "unknown"
