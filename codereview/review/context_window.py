"""
Context Window：逐 chunk review 时向后传递的“摘要窗口”。

- 有上限的环形缓冲：只保留最近 N 条 `ChunkSummary`，最旧的先淘汰（FIFO）
- 只由 Context-Carrying Reviewer 这一个顺序任务修改，无需加锁
- 每次 run 新建一个，不跨 run 复用
"""

from __future__ import annotations

from collections import deque

from codereview.review.models import ChunkSummary


class ContextWindow:
    def __init__(self, cap: int) -> None:
        if cap <= 0:
            raise ValueError("cap must be > 0")
        self._cap = cap
        self._entries: deque[ChunkSummary] = deque(maxlen=cap)
        self._evicted = 0

    @property
    def cap(self) -> int:
        return self._cap

    @property
    def evicted(self) -> int:
        """累计被淘汰的摘要条数。"""
        return self._evicted

    def append(self, summary: ChunkSummary) -> None:
        if len(self._entries) == self._cap:
            self._evicted += 1
        self._entries.append(summary)

    def entries(self) -> list[ChunkSummary]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def render(self) -> str:
        """渲染成给模型看的文本；窗口为空时返回空串。"""
        if not self._entries:
            return ""
        lines: list[str] = ["此前 chunk 的摘要（从旧到新）："]
        if self._evicted:
            lines.append(f"（更早的 {self._evicted} 个 chunk 摘要已省略）")
        for entry in self._entries:
            summary = entry.summary or "（未分析）"
            lines.append(f"- chunk {entry.chunk_index} [{entry.finding_count} findings]: {summary}")
        return "\n".join(lines)
