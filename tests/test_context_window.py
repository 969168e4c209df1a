from __future__ import annotations

import pytest

from codereview.review.context_window import ContextWindow
from codereview.review.models import ChunkSummary


def test_window_evicts_oldest_first() -> None:
    window = ContextWindow(cap=2)
    for i in range(4):
        window.append(ChunkSummary(chunk_index=i, summary=f"s{i}", finding_count=i))
    assert [e.chunk_index for e in window.entries()] == [2, 3]
    assert window.evicted == 2
    assert len(window) == 2


def test_render_empty_window_is_blank() -> None:
    assert ContextWindow(cap=3).render() == ""


def test_render_marks_unanalyzed_and_evicted_chunks() -> None:
    window = ContextWindow(cap=1)
    window.append(ChunkSummary(chunk_index=0, summary="adds login"))
    window.append(ChunkSummary(chunk_index=1))
    text = window.render()
    assert "chunk 1" in text
    assert "未分析" in text
    assert "chunk 0" not in text
    assert "1 个 chunk" in text


def test_cap_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ContextWindow(cap=0)
