from __future__ import annotations

from collections.abc import Sequence

from codereview.review.models import Category
from codereview.review.models import MergedFinding

CATEGORY_PRECEDENCE: dict[Category, int] = {
    Category.SECURITY: 0,
    Category.BUG: 1,
    Category.PERFORMANCE: 2,
    Category.ARCHITECTURE: 3,
    Category.MAINTAINABILITY: 4,
    Category.STYLE: 5,
}


def priority_key(finding: MergedFinding) -> tuple[int, int, str, int]:
    # 没有行号（文件级）的排在同文件有行号的前面
    line = -1 if finding.line is None else finding.line
    return (-finding.severity.rank, CATEGORY_PRECEDENCE[finding.category], finding.file_path, line)


def prioritize(findings: Sequence[MergedFinding]) -> list[MergedFinding]:
    """severity > category > path > line；`sorted` 是稳定排序，同 key 保持输入相对顺序。"""
    return sorted(findings, key=priority_key)
