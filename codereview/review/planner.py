"""
Diff Triager（确定性，不调用 LLM）。

目标：
- 根据 diff 规模、是否触及安全敏感路径、外部给出的覆盖率缺口，决定本次 review 深度
- 深度 -> 启用哪些 adapter 用一张显式的表（`TIER_ADAPTERS`）表达，而不是散落的 if

为什么不用 LLM 做规划：
- 规划决定成本上限，必须可复现、可测试
- 同一个 diff + 同一份配置，永远得到同一个 `ReviewPlan`
"""

from __future__ import annotations

import logging
from fnmatch import fnmatchcase

from codereview.config import ReviewSettings
from codereview.review.models import DepthTier
from codereview.review.models import Diff
from codereview.review.models import ReviewPlan

logger = logging.getLogger(__name__)

SECURITY_ADAPTER = "security-patterns"
COMPLEXITY_ADAPTER = "complexity"
COVERAGE_ADAPTER = "test-coverage"

TIER_ADAPTERS: dict[DepthTier, tuple[str, ...]] = {
    DepthTier.SHALLOW: (SECURITY_ADAPTER,),
    DepthTier.STANDARD: (SECURITY_ADAPTER, COMPLEXITY_ADAPTER),
    DepthTier.DEEP: (SECURITY_ADAPTER, COMPLEXITY_ADAPTER),
    DepthTier.HUMAN_REQUIRED: (),
}

# 外部命令类 adapter 只在 standard/deep 启用
COMMAND_ADAPTER_TIERS: frozenset[DepthTier] = frozenset({DepthTier.STANDARD, DepthTier.DEEP})

# run 级超时预算 = run_timeout_seconds * factor
TIER_TIMEOUT_FACTOR: dict[DepthTier, float] = {
    DepthTier.SHALLOW: 0.5,
    DepthTier.STANDARD: 1.0,
    DepthTier.DEEP: 2.0,
    DepthTier.HUMAN_REQUIRED: 0.0,
}


def decide_depth_tier(
    lines_changed: int,
    files_changed: int,
    security_sensitive: bool,
    coverage_gap: float,
    settings: ReviewSettings,
) -> tuple[DepthTier, bool]:
    """
    深度决策（固定顺序，先命中先返回）。

    返回 (tier, focus_coverage)；focus_coverage 表示是否因覆盖率缺口进入 deep。
    """
    if files_changed > settings.max_files or lines_changed > settings.max_lines:
        return DepthTier.HUMAN_REQUIRED, False
    if security_sensitive:
        return DepthTier.DEEP, False
    if coverage_gap > settings.coverage_gap_threshold:
        return DepthTier.DEEP, True
    if lines_changed < settings.min_lines:
        return DepthTier.SHALLOW, False
    return DepthTier.STANDARD, False


def match_sensitive_paths(paths: list[str], patterns: tuple[str, ...]) -> list[str]:
    """返回命中任一安全敏感 pattern 的 path（大小写不敏感，保持原顺序）。"""
    lowered = [p.lower() for p in patterns]
    return [path for path in paths if any(fnmatchcase(path.lower(), pattern) for pattern in lowered)]


def adapters_for_tier(tier: DepthTier, focus_coverage: bool, settings: ReviewSettings) -> tuple[str, ...]:
    names = list(TIER_ADAPTERS[tier])
    if focus_coverage:
        names.append(COVERAGE_ADAPTER)
    if tier in COMMAND_ADAPTER_TIERS:
        names.extend(c.name for c in settings.command_adapters)
    return tuple(names)


def build_review_plan(diff: Diff, settings: ReviewSettings, coverage_gap: float | None = None) -> ReviewPlan:
    """
    计算 `ReviewPlan`（纯函数，无副作用）。

    - coverage_gap：外部给出的覆盖率缺口估计（0~100），拿不到时传 None 视为 0
    """
    gap = 0.0 if coverage_gap is None else float(coverage_gap)
    if gap < 0 or gap > 100:
        raise ValueError(f"coverage_gap must be within 0..100, got {coverage_gap}")

    paths: list[str] = []
    for f in diff.files:
        paths.append(f.path)
        if f.old_path:
            paths.append(f.old_path)
    sensitive = match_sensitive_paths(paths=paths, patterns=settings.security_path_patterns)

    tier, focus_coverage = decide_depth_tier(
        lines_changed=diff.total_lines_changed,
        files_changed=diff.total_files_changed,
        security_sensitive=bool(sensitive),
        coverage_gap=gap,
        settings=settings,
    )
    plan = ReviewPlan(
        total_lines_changed=diff.total_lines_changed,
        total_files_changed=diff.total_files_changed,
        security_sensitive=bool(sensitive),
        coverage_gap=gap,
        depth_tier=tier,
        enabled_adapters=adapters_for_tier(tier=tier, focus_coverage=focus_coverage, settings=settings),
        focus_coverage=focus_coverage,
        matched_sensitive_paths=tuple(sensitive),
    )
    logger.info(
        f"Review plan: tier={plan.depth_tier.value}, lines={plan.total_lines_changed}, "
        f"files={plan.total_files_changed}, security_sensitive={plan.security_sensitive}, "
        f"coverage_gap={plan.coverage_gap}"
    )
    return plan
