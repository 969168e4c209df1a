"""
测试覆盖关注 adapter：只在 triage 因“覆盖率缺口”进入 deep 时启用。

规则很简单：变更了源码文件，但本次 diff 里没有任何测试文件改动 -> 报一条 finding。
"""

from __future__ import annotations

import logging
import re

from codereview.adapters.base import AdapterRequest
from codereview.adapters.base import ThreadedToolAdapter
from codereview.adapters.base import infer_language_from_path
from codereview.review.models import Category
from codereview.review.models import ChangeKind
from codereview.review.models import Finding
from codereview.review.models import Severity
from codereview.review.planner import COVERAGE_ADAPTER

logger = logging.getLogger(__name__)

_TEST_PATH = re.compile(r"(^|/)(tests?|__tests__|spec)/|(^|/)test_[^/]*$|_test\.\w+$|\.(test|spec)\.\w+$")


def is_test_path(path: str) -> bool:
    return _TEST_PATH.search(path.lower()) is not None


class TestCoverageAdapter(ThreadedToolAdapter):
    # 防止 pytest 把它当成测试类收集
    __test__ = False

    def __init__(self, name: str = COVERAGE_ADAPTER) -> None:
        self.name = name

    def run(self, request: AdapterRequest) -> list[Finding]:
        files = request.diff.files
        if any(is_test_path(f.path) for f in files):
            return []

        findings: list[Finding] = []
        for file_change in files:
            if file_change.change_kind is ChangeKind.DELETED:
                continue
            if infer_language_from_path(file_change.path) == "unknown":
                continue
            first_line = file_change.hunks[0].new_start if file_change.hunks else None
            findings.append(
                Finding(
                    source=self.name,
                    file_path=file_change.path,
                    line=first_line,
                    severity=Severity.MEDIUM,
                    category=Category.MAINTAINABILITY,
                    title="Source change without accompanying tests",
                    description=f"{file_change.path} changed ({file_change.lines_changed} lines) while the "
                    f"estimated coverage gap is {request.plan.coverage_gap:.0f}%, and no test files were updated.",
                    suggested_fix="Add or update tests that exercise the changed code.",
                )
            )
        logger.info(f"Test coverage check: {len(findings)} finding(s)")
        return findings
