"""
Chunk Planner：把超大的 diff 切成有上限的分析单元。

规则：
- 只按整 hunk 打包（拆 hunk 会破坏语法上下文）
- 贪心：顺序装入，装不下就开新 chunk
- 单个 hunk 超过上限时独占一个 oversized chunk
- 保持原始 文件/hunk 顺序（后续 context window 的连贯性依赖它）
"""

from __future__ import annotations

import logging

from codereview.review.diff_parser import render_hunk
from codereview.review.models import Chunk
from codereview.review.models import Diff
from codereview.review.models import HunkRef

logger = logging.getLogger(__name__)


def plan_chunks(diff: Diff, max_chunk_lines: int) -> list[Chunk]:
    """同一个 diff + 同一个 max_chunk_lines 永远得到同一组 chunk。"""
    if max_chunk_lines <= 0:
        raise ValueError("max_chunk_lines must be > 0")

    chunks: list[Chunk] = []
    pending: list[HunkRef] = []
    pending_lines = 0

    def flush() -> None:
        nonlocal pending, pending_lines
        if not pending:
            return
        chunks.append(
            Chunk(
                index=len(chunks),
                hunk_refs=tuple(pending),
                line_count=pending_lines,
                oversized=pending_lines > max_chunk_lines,
            )
        )
        pending = []
        pending_lines = 0

    for file_index, file_change in enumerate(diff.files):
        for hunk_index, hunk in enumerate(file_change.hunks):
            size = hunk.line_count
            if pending and pending_lines + size > max_chunk_lines:
                flush()
            pending.append(HunkRef(file_index=file_index, hunk_index=hunk_index))
            pending_lines += size
            if pending_lines >= max_chunk_lines:
                flush()
    flush()

    oversized = sum(1 for c in chunks if c.oversized)
    logger.info(f"Planned {len(chunks)} chunk(s) (max_chunk_lines={max_chunk_lines}, oversized={oversized})")
    return chunks


def render_chunk(diff: Diff, chunk: Chunk) -> str:
    """把 chunk 渲染回 unified diff 文本（每个文件带 `---`/`+++` 头）。"""
    parts: list[str] = []
    current_file: int | None = None
    for ref in chunk.hunk_refs:
        file_change = diff.files[ref.file_index]
        if ref.file_index != current_file:
            old_path = file_change.old_path or file_change.path
            parts.append(f"--- a/{old_path}")
            parts.append(f"+++ b/{file_change.path}")
            current_file = ref.file_index
        parts.append(render_hunk(file_change.hunks[ref.hunk_index]))
    return "\n".join(parts)
