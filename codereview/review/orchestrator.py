"""
Review Orchestrator（核心流程编排）。

关键思想：
- **流程由工程代码控制**：parse -> triage -> chunk -> {adapters 并行, model reviewer 顺序} -> dedup -> prioritize -> gate
- **LLM 只负责“思考/生成结构化输出”**：chunk review 与 synthesis 都是 JSON-only
- **状态只属于一次 run**：plan / chunks / context window / 结果表都在 `run_review` 内创建，不跨 run 复用

取消：
- 同一个变更来了新的 revision，旧 run 立即取消、结果丢弃（`ReviewSupervisor`）
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

import anyio

from codereview.adapters.base import AdapterRequest
from codereview.adapters.base import ToolAdapter
from codereview.adapters.registry import build_default_adapters
from codereview.adapters.registry import select_adapters
from codereview.config import ReviewSettings
from codereview.review.chunking import plan_chunks
from codereview.review.dedup import deduplicate
from codereview.review.diff_parser import parse_unified_diff
from codereview.review.errors import NoAnalysisAvailableError
from codereview.review.errors import RunSupersededError
from codereview.review.executor import RUN_LEVEL_SUBJECT
from codereview.review.executor import AdapterOutcome
from codereview.review.executor import adapter_failure_diagnostic
from codereview.review.executor import adapter_failure_finding
from codereview.review.executor import run_adapters
from codereview.review.gate import evaluate_gate
from codereview.review.model_service import ModelService
from codereview.review.models import DepthTier
from codereview.review.models import Diagnostic
from codereview.review.models import DiagnosticKind
from codereview.review.models import Finding
from codereview.review.models import GateVerdict
from codereview.review.models import ReviewPlan
from codereview.review.models import ReviewResult
from codereview.review.planner import TIER_TIMEOUT_FACTOR
from codereview.review.planner import build_review_plan
from codereview.review.prioritizer import prioritize
from codereview.review.reviewer import ReviewerOutcome
from codereview.review.reviewer import review_chunks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOrchestrator:
    """Orchestrator 运行时依赖集合：配置 + adapter 注册表 + 可选的 model service。"""

    settings: ReviewSettings
    adapters: Mapping[str, ToolAdapter] = field(default_factory=dict)
    model_service: ModelService | None = None


def build_review_orchestrator(
    settings: ReviewSettings,
    model_service: ModelService | None = None,
    adapters: Mapping[str, ToolAdapter] | None = None,
) -> ReviewOrchestrator:
    """创建 orchestrator；不传 adapters 时使用内置规则 adapter + 配置的命令 adapter。"""
    registry = build_default_adapters(settings) if adapters is None else dict(adapters)
    return ReviewOrchestrator(settings=settings, adapters=registry, model_service=model_service)


def run_budget_seconds(plan: ReviewPlan, settings: ReviewSettings) -> float:
    return settings.run_timeout_seconds * TIER_TIMEOUT_FACTOR[plan.depth_tier]


async def run_review(
    orchestrator: ReviewOrchestrator,
    diff_text: str,
    coverage_gap: float | None = None,
) -> ReviewResult:
    """
    跑一次完整 review，返回 `ReviewResult`。

    - **致命错误**：diff 非法 -> `MalformedDiffError`；没有任何分析成功 -> `NoAnalysisAvailableError`
    - **其余失败**：局部恢复，体现为 INFO finding + diagnostic，`degraded=True`
    """
    settings = orchestrator.settings

    # Step 1: parse + triage（纯函数）
    diff = parse_unified_diff(diff_text)
    plan = build_review_plan(diff=diff, settings=settings, coverage_gap=coverage_gap)
    if plan.depth_tier is DepthTier.HUMAN_REQUIRED:
        return _human_required_result(plan=plan, settings=settings)

    adapters = select_adapters(plan=plan, available=orchestrator.adapters)
    model_service = orchestrator.model_service
    chunks = plan_chunks(diff=diff, max_chunk_lines=settings.max_chunk_lines) if model_service is not None else []
    if not adapters and model_service is None:
        raise NoAnalysisAvailableError(f"No analysis engine is enabled for tier {plan.depth_tier.value}")

    # Step 2: adapters 并行 + reviewer 顺序，共用一个 run 级 deadline
    request = AdapterRequest(diff=diff, diff_text=diff_text, plan=plan)
    adapter_results: dict[str, AdapterOutcome] = {}
    reviewer_outcome = ReviewerOutcome()
    budget = run_budget_seconds(plan=plan, settings=settings)

    with anyio.move_on_after(budget) as deadline:
        async with anyio.create_task_group() as tg:
            if adapters:
                tg.start_soon(run_adapters, adapters, request, settings.adapter_timeout_seconds, adapter_results)
            if model_service is not None and chunks:
                tg.start_soon(review_chunks, model_service, diff, chunks, settings, reviewer_outcome)
    if deadline.cancelled_caught:
        logger.warning(f"Run deadline of {budget}s reached; cancelling unfinished work")

    for adapter in adapters:
        if adapter.name not in adapter_results:
            adapter_results[adapter.name] = AdapterOutcome(
                name=adapter.name, error=f"cancelled at run deadline ({budget}s)", timed_out=True
            )
    if model_service is not None:
        reviewer_outcome.mark_unfinished(diff=diff, chunks=chunks, reason=f"cancelled at run deadline ({budget}s)")

    adapters_ok = any(o.succeeded for o in adapter_results.values())
    reviewer_ok = model_service is not None and (reviewer_outcome.succeeded or not chunks)
    if not adapters_ok and not reviewer_ok:
        raise NoAnalysisAvailableError("All tool adapters and the model reviewer failed")

    # Step 3: 汇总 raw findings + 失败占位
    placeholder_path = diff.files[0].path if diff.files else RUN_LEVEL_SUBJECT
    raw: list[Finding] = []
    diagnostics: list[Diagnostic] = []
    failed_adapters: list[str] = []
    for adapter in adapters:
        outcome = adapter_results[adapter.name]
        if outcome.succeeded:
            raw.extend(outcome.findings)
            continue
        failed_adapters.append(outcome.name)
        raw.append(adapter_failure_finding(outcome=outcome, file_path=placeholder_path))
        diagnostics.append(adapter_failure_diagnostic(outcome))
    raw.extend(reviewer_outcome.findings)
    diagnostics.extend(reviewer_outcome.diagnostics)

    # Step 4: dedup -> prioritize -> gate
    merged = prioritize(deduplicate(raw, line_tolerance=settings.line_tolerance))
    decision = evaluate_gate(merged, policy=settings.gate)

    result = ReviewResult(
        findings=tuple(merged),
        verdict=decision.verdict,
        blocking_reasons=decision.reasons,
        plan=plan,
        diagnostics=tuple(diagnostics),
        degraded=bool(diagnostics),
        analyzed_chunks=tuple(sorted(reviewer_outcome.analyzed_chunks)),
        failed_chunks=tuple(sorted(reviewer_outcome.failed_chunks)),
        failed_adapters=tuple(sorted(failed_adapters)),
    )
    logger.info(
        f"Review finished: verdict={result.verdict.value}, findings={len(result.findings)}, "
        f"failed_adapters={list(result.failed_adapters)}, failed_chunks={list(result.failed_chunks)}"
    )
    return result


def _human_required_result(plan: ReviewPlan, settings: ReviewSettings) -> ReviewResult:
    """超大变更：不做自动分析，直接返回不阻塞的 advisory（绝不静默 BLOCK）。"""
    advisory = (
        f"Change too large for automated review ({plan.total_files_changed} files, "
        f"{plan.total_lines_changed} lines; limits {settings.max_files} files / {settings.max_lines} lines). "
        "Human review is required."
    )
    logger.info(f"Skipping automated analysis: {advisory}")
    return ReviewResult(
        verdict=GateVerdict.PASS,
        plan=plan,
        advisory=advisory,
        diagnostics=(Diagnostic(kind=DiagnosticKind.ADVISORY, subject="triage", message=advisory),),
    )


class ReviewSupervisor:
    """
    按变更 id 管理 in-flight run。

    同一个 change_id 提交新的 revision 时，旧 run 被取消，旧调用抛 `RunSupersededError`，
    它的部分结果直接丢弃，不会和新 run 的结果合并（最新提交者胜）。
    """

    def __init__(self, orchestrator: ReviewOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._in_flight: dict[str, tuple[str, anyio.CancelScope]] = {}

    def in_flight_revision(self, change_id: str) -> str | None:
        current = self._in_flight.get(change_id)
        return None if current is None else current[0]

    def cancel(self, change_id: str) -> bool:
        current = self._in_flight.get(change_id)
        if current is None:
            return False
        logger.info(f"Cancelling in-flight review of {change_id}@{current[0]}")
        current[1].cancel()
        return True

    async def submit(
        self,
        change_id: str,
        revision: str,
        diff_text: str,
        coverage_gap: float | None = None,
    ) -> ReviewResult:
        if not change_id:
            raise ValueError("change_id must be non-empty")
        previous = self._in_flight.get(change_id)
        if previous is not None:
            logger.info(f"Revision {revision} supersedes in-flight {previous[0]} of {change_id}")
            previous[1].cancel()

        scope = anyio.CancelScope()
        self._in_flight[change_id] = (revision, scope)
        result: ReviewResult | None = None
        try:
            with scope:
                result = await run_review(self._orchestrator, diff_text=diff_text, coverage_gap=coverage_gap)
        finally:
            current = self._in_flight.get(change_id)
            if current is not None and current[1] is scope:
                del self._in_flight[change_id]

        if scope.cancel_called or result is None:
            raise RunSupersededError(f"Review of {change_id}@{revision} was superseded and discarded")
        return result
