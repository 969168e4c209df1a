"""
Review 错误类型。

传播策略：
- 只有 `MalformedDiffError` / `NoAnalysisAvailableError` 会中止整次 run
- 其余失败在局部恢复：转成一条 INFO finding + 一条 diagnostic，绝不静默丢弃
"""

from __future__ import annotations


class ReviewError(RuntimeError):
    """所有 review 相关错误的基类。"""


class MalformedDiffError(ReviewError, ValueError):
    """diff 无法解析（hunk 头非法、范围重叠等），在 triage 之前拒绝。"""


class NoAnalysisAvailableError(ReviewError):
    """所有 adapter 与 model reviewer 都失败，没有任何可用分析结果。"""


class AdapterFailure(ReviewError):
    """单个 tool adapter 失败或超时（可恢复）。"""

    def __init__(self, adapter: str, reason: str) -> None:
        super().__init__(f"Adapter {adapter} failed: {reason}")
        self.adapter = adapter
        self.reason = reason


class ChunkAnalysisFailure(ReviewError):
    """单个 chunk 在重试耗尽后仍无法分析（可恢复）。"""

    def __init__(self, chunk_index: int, reason: str) -> None:
        super().__init__(f"Chunk {chunk_index} was not analyzed: {reason}")
        self.chunk_index = chunk_index
        self.reason = reason


class ModelServiceError(ReviewError):
    """model service 调用失败的基类。"""


class ModelTransportError(ModelServiceError):
    """传输层失败：HTTP 错误、API 错误、超时、空响应等。"""


class MalformedModelOutputError(ModelServiceError, ValueError):
    """模型返回了内容，但不是合法 JSON 或不符合 schema。"""


class RunSupersededError(ReviewError):
    """同一变更出现了更新的 revision，本次（旧）run 被取消，结果作废。"""
