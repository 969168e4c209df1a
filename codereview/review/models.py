"""
Review 领域模型（Pydantic）。

用途：
- 明确各阶段输入/输出的数据结构（diff -> plan -> chunk -> finding -> result）
- 作为 LLM JSON 输出的 schema 校验（chunk review / synthesis）

约定：
- 跨阶段传递的对象尽量 frozen（一次 run 内不可变）
- 排序/比较用的“等级”统一放在这里，避免各模块各写一份
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class Hunk(BaseModel):
    """unified diff 中的一个 hunk（`@@ -a,b +c,d @@` 及其正文）。"""

    model_config = ConfigDict(frozen=True)

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    line_count: int
    lines: tuple[str, ...] = ()

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"

    @property
    def new_end(self) -> int:
        return self.new_start + max(self.new_count, 1) - 1


class FileChange(BaseModel):
    """单个文件的变更（从 diff 文本归一化而来）。"""

    model_config = ConfigDict(frozen=True)

    path: str
    old_path: str | None = None
    change_kind: ChangeKind = ChangeKind.MODIFIED
    hunks: tuple[Hunk, ...] = ()

    @property
    def lines_changed(self) -> int:
        return sum(h.line_count for h in self.hunks)


class Diff(BaseModel):
    """一次变更的完整 diff：文件有序、文件内 hunk 有序。"""

    model_config = ConfigDict(frozen=True)

    files: tuple[FileChange, ...] = ()

    @property
    def total_lines_changed(self) -> int:
        return sum(f.lines_changed for f in self.files)

    @property
    def total_files_changed(self) -> int:
        return len(self.files)


class DepthTier(str, Enum):
    SHALLOW = "shallow"
    STANDARD = "standard"
    DEEP = "deep"
    HUMAN_REQUIRED = "human-required"


class ReviewPlan(BaseModel):
    """Triager 的输出：一次 run 内不可变。"""

    model_config = ConfigDict(frozen=True)

    total_lines_changed: int
    total_files_changed: int
    security_sensitive: bool
    coverage_gap: float = Field(ge=0, le=100)
    depth_tier: DepthTier
    enabled_adapters: tuple[str, ...] = ()
    focus_coverage: bool = False
    matched_sensitive_paths: tuple[str, ...] = ()


class HunkRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_index: int
    hunk_index: int


class Chunk(BaseModel):
    """
    Diff 的一个连续切片（由整 hunk 组成，不拆 hunk）。

    只保存对父 Diff 的引用下标，真正的文本由 `chunking.render_chunk` 生成。
    """

    model_config = ConfigDict(frozen=True)

    index: int
    hunk_refs: tuple[HunkRef, ...]
    line_count: int
    oversized: bool = False

    def paths(self, diff: Diff) -> list[str]:
        seen: list[str] = []
        for ref in self.hunk_refs:
            path = diff.files[ref.file_index].path
            if path not in seen:
                seen.append(path)
        return seen


class ChunkSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_index: int
    summary: str = ""
    finding_count: int = 0


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """越大越严重（INFO=0 ... CRITICAL=4）。"""
        return SEVERITY_RANK[self]


SEVERITY_RANK: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Category(str, Enum):
    SECURITY = "Security"
    PERFORMANCE = "Performance"
    BUG = "Bug"
    MAINTAINABILITY = "Maintainability"
    ARCHITECTURE = "Architecture"
    STYLE = "Style"


class Finding(BaseModel):
    """单个来源（tool adapter / model reviewer）报告的一条问题，去重之前。"""

    model_config = ConfigDict(frozen=True)

    source: str
    file_path: str
    line: int | None = None
    end_line: int | None = None
    severity: Severity
    category: Category
    title: str
    description: str = ""
    suggested_fix: str | None = None
    references: tuple[str, ...] = ()
    fingerprint: str | None = None


class MergedFinding(Finding):
    """去重后的 finding：同一 fingerprint 的多个 Finding 合并而来。"""

    contributing_sources: tuple[str, ...] = ()
    merge_count: int = 1


class GateVerdict(str, Enum):
    PASS = "PASS"
    BLOCK = "BLOCK"


class DiagnosticKind(str, Enum):
    ADAPTER_FAILURE = "adapter_failure"
    ADAPTER_TIMEOUT = "adapter_timeout"
    CHUNK_FAILURE = "chunk_failure"
    CHUNK_CANCELLED = "chunk_cancelled"
    SYNTHESIS_FAILURE = "synthesis_failure"
    ADVISORY = "advisory"


class Diagnostic(BaseModel):
    """run 级诊断信息：记录哪些 adapter/chunk 没有完成，保证 verdict 可审计。"""

    model_config = ConfigDict(frozen=True)

    kind: DiagnosticKind
    subject: str
    message: str


class ReviewResult(BaseModel):
    """一次 run 的最终产物（唯一输出），生成后不可变。"""

    model_config = ConfigDict(frozen=True)

    findings: tuple[MergedFinding, ...] = ()
    verdict: GateVerdict
    blocking_reasons: tuple[str, ...] = ()
    plan: ReviewPlan
    advisory: str | None = None
    diagnostics: tuple[Diagnostic, ...] = ()
    degraded: bool = False
    analyzed_chunks: tuple[int, ...] = ()
    failed_chunks: tuple[int, ...] = ()
    failed_adapters: tuple[str, ...] = ()


class ModelFinding(BaseModel):
    """LLM 输出的单条 finding（还没有 source/fingerprint，由 reviewer 补齐）。"""

    file_path: str
    line: int | None = None
    end_line: int | None = None
    severity: Severity
    category: Category
    title: str
    description: str = ""
    suggested_fix: str | None = None
    references: list[str] = Field(default_factory=list)


class ChunkReview(BaseModel):
    """LLM chunk 级输出 schema：若干 findings + 一段给后续 chunk 用的摘要。"""

    findings: list[ModelFinding] = Field(default_factory=list)
    summary: str


class SynthesisReview(BaseModel):
    """LLM 跨 chunk 汇总输出 schema。"""

    findings: list[ModelFinding] = Field(default_factory=list)
