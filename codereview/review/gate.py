"""
Quality Gate（确定性，非 AI）。

policy 是最终 MergedFinding 集合的纯函数，并且必须单调：
往一个 PASS 的集合里加入严重度 >= 阈值的 finding，只可能变成 BLOCK，不可能反过来。
这里的两个触发条件（“存在 >= 阈值的 finding”、“HIGH 及以上数量超过上限”）都只会随 finding 增加而触发。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from codereview.review.models import GateVerdict
from codereview.review.models import MergedFinding
from codereview.review.models import Severity

logger = logging.getLogger(__name__)


class GatePolicy(BaseModel):
    """
    gate 配置。

    - block_severity：任一 finding 严重度 >= 该值即 BLOCK（默认 CRITICAL）
    - max_high_findings：HIGH 及以上的数量超过该值即 BLOCK（None 表示不启用）
    """

    model_config = ConfigDict(frozen=True)

    block_severity: Severity = Severity.CRITICAL
    max_high_findings: int | None = Field(default=None, ge=0)


class GateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    verdict: GateVerdict
    reasons: tuple[str, ...] = ()


def evaluate_gate(findings: Sequence[MergedFinding], policy: GatePolicy) -> GateDecision:
    """
    评估 gate。

    每条 BLOCK 原因都带上触发它的 finding fingerprint，保证 verdict 可追溯。
    """
    reasons: list[str] = []

    blocking = [f for f in findings if f.severity.rank >= policy.block_severity.rank]
    if blocking:
        refs = ", ".join(_ref(f) for f in blocking)
        reasons.append(f"{len(blocking)} finding(s) at or above {policy.block_severity.value}: {refs}")

    if policy.max_high_findings is not None:
        high = [f for f in findings if f.severity.rank >= Severity.HIGH.rank]
        if len(high) > policy.max_high_findings:
            refs = ", ".join(_ref(f) for f in high)
            reasons.append(
                f"{len(high)} HIGH-or-worse finding(s) exceed the limit of {policy.max_high_findings}: {refs}"
            )

    verdict = GateVerdict.BLOCK if reasons else GateVerdict.PASS
    logger.info(f"Quality gate: verdict={verdict.value}, findings={len(findings)}")
    return GateDecision(verdict=verdict, reasons=tuple(reasons))


def _ref(finding: MergedFinding) -> str:
    location = finding.file_path if finding.line is None else f"{finding.file_path}:{finding.line}"
    return f"[{finding.fingerprint}] {location} {finding.title}"
