from __future__ import annotations

from collections.abc import Callable, Sequence

import pytest

HunkSpec = int | Sequence[str]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def build_diff_text(files: dict[str, Sequence[HunkSpec]]) -> str:
    """
    生成测试用 unified diff。

    - files：path -> hunk 列表；hunk 为 int 表示 N 行通用新增行，为 list[str] 表示具体新增内容
    """
    out: list[str] = []
    for path, hunks in files.items():
        out.append(f"diff --git a/{path} b/{path}")
        out.append(f"--- a/{path}")
        out.append(f"+++ b/{path}")
        old_cursor = 1
        new_cursor = 1
        for spec in hunks:
            added = [f"line {i}" for i in range(spec)] if isinstance(spec, int) else list(spec)
            out.append(f"@@ -{old_cursor},0 +{new_cursor},{len(added)} @@")
            out.extend(f"+{text}" for text in added)
            old_cursor += 5
            new_cursor += len(added) + 5
    return "\n".join(out) + "\n"


@pytest.fixture
def make_diff_text() -> Callable[[dict[str, Sequence[HunkSpec]]], str]:
    return build_diff_text
