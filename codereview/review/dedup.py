"""
Finding 归一化 + 去重（确定性，非 AI）。

fingerprint = hash(归一化 path, 行号桶, category, 标题签名)：
- 标题签名：casefold、去标点、合并空白
- 行号桶：同一 (path, category, 签名) 的 finding 按行号排序后做“锚定聚类”，
  簇从最小行号 L 开始，吸收所有 <= L + K 的行；锚点 L 即桶。K 为 `line_tolerance`
- 没有行号的 finding 单独成桶

合并规则（与输入顺序无关，满足交换律/结合律）：
- severity 取最大；description 取最长（同长取字典序最小）
- contributing_sources 取并集；suggested_fix 取规范顺序下第一个非空值
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections import defaultdict
from collections.abc import Iterable

from codereview.review.models import Category
from codereview.review.models import Finding
from codereview.review.models import MergedFinding

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def title_signature(title: str) -> str:
    lowered = title.casefold()
    stripped = _PUNCTUATION.sub(" ", lowered)
    return _WHITESPACE.sub(" ", stripped).strip()


def normalize_path(path: str) -> str:
    normalized = path.strip().replace("\\", "/")
    while "//" in normalized:
        normalized = normalized.replace("//", "/")
    # `a/` `b/` 前缀只在对照 diff 时去掉（见 `resolve_diff_path`）
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def compute_fingerprint(file_path: str, bucket: int | None, category: Category, signature: str) -> str:
    raw = "\x1f".join([normalize_path(file_path), "-" if bucket is None else str(bucket), category.value, signature])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def normalize_finding(finding: Finding) -> Finding:
    """把各工具的原始输出规整成统一形态（路径、空白、非法行号）。"""
    line = finding.line if finding.line is not None and finding.line > 0 else None
    end_line = finding.end_line
    if line is None or end_line is None or end_line < line:
        end_line = None
    return finding.model_copy(
        update={
            "file_path": normalize_path(finding.file_path),
            "line": line,
            "end_line": end_line,
            "title": _WHITESPACE.sub(" ", finding.title).strip(),
            "description": finding.description.strip(),
            "suggested_fix": (finding.suggested_fix or "").strip() or None,
        }
    )


def _canonical_key(finding: Finding) -> tuple:
    return (
        finding.source,
        -1 if finding.line is None else finding.line,
        finding.description,
        finding.title,
        finding.severity.rank,
        finding.suggested_fix or "",
        finding.references,
        -1 if finding.end_line is None else finding.end_line,
    )


def _cluster_by_line(findings: list[Finding], tolerance: int) -> list[tuple[int | None, list[Finding]]]:
    without_line = [f for f in findings if f.line is None]
    with_line = sorted((f for f in findings if f.line is not None), key=_canonical_line_key)

    clusters: list[tuple[int | None, list[Finding]]] = []
    if without_line:
        clusters.append((None, without_line))

    anchor: int | None = None
    current: list[Finding] = []
    for f in with_line:
        if anchor is not None and f.line <= anchor + tolerance:
            current.append(f)
            continue
        if current:
            clusters.append((anchor, current))
        anchor = f.line
        current = [f]
    if current:
        clusters.append((anchor, current))
    return clusters


def _canonical_line_key(finding: Finding) -> tuple:
    return (finding.line, _canonical_key(finding))


def _merge(anchor: int | None, group: list[Finding], signature: str) -> MergedFinding:
    ordered = sorted(group, key=_canonical_key)
    head = ordered[0]

    severity = max((f.severity for f in ordered), key=lambda s: s.rank)
    description = min((f.description for f in ordered), key=lambda d: (-len(d), d))
    suggested_fix = next((f.suggested_fix for f in ordered if f.suggested_fix), None)

    references: list[str] = []
    for f in ordered:
        for ref in f.references:
            if ref not in references:
                references.append(ref)

    ends = [f.end_line or f.line for f in ordered if f.line is not None]
    end_line = max(ends) if ends else None
    if end_line is not None and anchor is not None and end_line <= anchor:
        end_line = None

    return MergedFinding(
        source=head.source,
        file_path=head.file_path,
        line=anchor,
        end_line=end_line,
        severity=severity,
        category=head.category,
        title=head.title,
        description=description,
        suggested_fix=suggested_fix,
        references=tuple(references),
        fingerprint=compute_fingerprint(head.file_path, anchor, head.category, signature),
        contributing_sources=tuple(sorted({f.source for f in ordered})),
        merge_count=len(ordered),
    )


def deduplicate(findings: Iterable[Finding], line_tolerance: int = 3) -> list[MergedFinding]:
    """
    合并同一 fingerprint 的 findings。

    - 空输入 -> 空输出
    - 输出按 (path, 行号桶, category, 签名) 排序，保证输入顺序不同结果也一致
    """
    if line_tolerance < 0:
        raise ValueError("line_tolerance must be >= 0")

    groups: dict[tuple[str, Category, str], list[Finding]] = defaultdict(list)
    raw_count = 0
    for raw in findings:
        raw_count += 1
        finding = normalize_finding(raw)
        groups[(finding.file_path, finding.category, title_signature(finding.title))].append(finding)

    merged: list[tuple[tuple, MergedFinding]] = []
    for (path, category, signature), group in groups.items():
        for anchor, cluster in _cluster_by_line(group, tolerance=line_tolerance):
            sort_key = (path, -1 if anchor is None else anchor, category.value, signature)
            merged.append((sort_key, _merge(anchor=anchor, group=cluster, signature=signature)))

    merged.sort(key=lambda item: item[0])
    result = [m for _, m in merged]
    logger.info(f"Deduplicated {raw_count} raw finding(s) into {len(result)}")
    return result
