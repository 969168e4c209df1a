"""
复杂度分析 adapter（基于 diff 的近似值）。

说明：
- 真正的圈复杂度需要完整函数/文件，这里只有 diff，所以是“提示风险用”的近似指标
- 取 hunk 的新文件视图（新增行 + 上下文行），dedent 后用 AST 解析并统计分支节点
- 片段解析失败（diff 截断在语句中间很常见）就跳过该 hunk，不当作 adapter 失败
- 非 Python 文件只做“超大变更块”检查
"""

from __future__ import annotations

import ast
import logging
import textwrap

from codereview.adapters.base import AdapterRequest
from codereview.adapters.base import ThreadedToolAdapter
from codereview.adapters.base import infer_language_from_path
from codereview.review.models import Category
from codereview.review.models import Finding
from codereview.review.models import Hunk
from codereview.review.models import Severity
from codereview.review.planner import COMPLEXITY_ADAPTER

logger = logging.getLogger(__name__)

_BRANCH_NODES = (
    ast.If,
    ast.For,
    ast.AsyncFor,
    ast.While,
    ast.Try,
    ast.With,
    ast.AsyncWith,
    ast.Match,
    ast.BoolOp,
    ast.IfExp,
    ast.comprehension,
)


def calc_python_complexity(code: str) -> int:
    """
    一个可测试、确定性的近似复杂度：统计常见分支节点数量 + 1。

    空代码返回 0；无法解析时抛 `SyntaxError`（由调用方决定如何处理）。
    """
    if not code.strip():
        return 0
    tree = ast.parse(code)
    return _branch_count(tree) + 1


def _branch_count(node: ast.AST) -> int:
    return sum(1 for child in ast.walk(node) if isinstance(child, _BRANCH_NODES))


def _new_file_view(hunk: Hunk) -> tuple[list[str], set[int]]:
    """返回 (新文件视图的行, 其中属于新增行的下标集合)。"""
    lines: list[str] = []
    added: set[int] = set()
    for raw in hunk.lines:
        if raw.startswith("+"):
            added.add(len(lines))
            lines.append(raw[1:])
        elif raw.startswith(" "):
            lines.append(raw[1:])
    return lines, added


class ComplexityAdapter(ThreadedToolAdapter):
    def __init__(
        self,
        medium_threshold: int = 10,
        high_threshold: int = 20,
        large_hunk_lines: int = 200,
        name: str = COMPLEXITY_ADAPTER,
    ) -> None:
        if medium_threshold <= 0 or high_threshold < medium_threshold:
            raise ValueError("thresholds must satisfy 0 < medium_threshold <= high_threshold")
        self.name = name
        self._medium = medium_threshold
        self._high = high_threshold
        self._large_hunk_lines = large_hunk_lines

    def run(self, request: AdapterRequest) -> list[Finding]:
        findings: list[Finding] = []
        for file_change in request.diff.files:
            is_python = infer_language_from_path(file_change.path) == "python"
            for hunk in file_change.hunks:
                if hunk.line_count > self._large_hunk_lines:
                    findings.append(self._large_hunk_finding(path=file_change.path, hunk=hunk))
                if is_python:
                    findings.extend(self._function_findings(path=file_change.path, hunk=hunk))
        logger.info(f"Complexity scan: {len(findings)} finding(s)")
        return findings

    def _function_findings(self, path: str, hunk: Hunk) -> list[Finding]:
        lines, added = _new_file_view(hunk)
        if not added:
            return []
        try:
            tree = ast.parse(textwrap.dedent("\n".join(lines)))
        except SyntaxError:
            logger.debug(f"Skipping unparsable hunk {hunk.header} in {path}")
            return []

        findings: list[Finding] = []
        for node in ast.walk(tree):
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            end = node.end_lineno or node.lineno
            # 只报告包含新增行的函数（行号从 1 开始）
            if not any(node.lineno - 1 <= idx <= end - 1 for idx in added):
                continue
            score = _branch_count(node) + 1
            if score <= self._medium:
                continue
            severity = Severity.HIGH if score > self._high else Severity.MEDIUM
            findings.append(
                Finding(
                    source=self.name,
                    file_path=path,
                    line=hunk.new_start + node.lineno - 1,
                    end_line=hunk.new_start + end - 1,
                    severity=severity,
                    category=Category.MAINTAINABILITY,
                    title=f"High cyclomatic complexity in {node.name}",
                    description=f"Function `{node.name}` has an approximate complexity of {score} "
                    f"(threshold {self._medium}).",
                    suggested_fix="Split the function into smaller helpers or flatten nested branches.",
                )
            )
        return findings

    def _large_hunk_finding(self, path: str, hunk: Hunk) -> Finding:
        return Finding(
            source=self.name,
            file_path=path,
            line=hunk.new_start,
            end_line=hunk.new_end,
            severity=Severity.LOW,
            category=Category.MAINTAINABILITY,
            title="Large change block",
            description=f"A single hunk changes {hunk.line_count} lines, which is hard to review.",
            suggested_fix="Split the change into smaller, focused commits.",
        )
