"""
Context-Carrying Reviewer（模型 review，逐 chunk 顺序执行）。

为什么必须顺序：
- 每个 chunk 都依赖上一个 chunk 更新后的 context window
- 这是整个 pipeline 里唯一不能并行的环节（顺序是正确性要求，不是性能选择）

失败策略：
- 单个 chunk 调用失败/输出不合规：带退避重试 R 次
- 仍失败：补一条 INFO finding + 一条空摘要，继续下一个 chunk（不中止 run）
- 最后的 synthesis pass 是 best-effort，失败只记录 diagnostic
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import anyio

from codereview.config import ReviewSettings
from codereview.review.chunking import render_chunk
from codereview.review.context_window import ContextWindow
from codereview.review.diff_parser import resolve_diff_path
from codereview.review.errors import ChunkAnalysisFailure
from codereview.review.errors import ModelServiceError
from codereview.review.model_service import ModelService
from codereview.review.models import Category
from codereview.review.models import Chunk
from codereview.review.models import ChunkReview
from codereview.review.models import ChunkSummary
from codereview.review.models import Diagnostic
from codereview.review.models import DiagnosticKind
from codereview.review.models import Diff
from codereview.review.models import Finding
from codereview.review.models import ModelFinding
from codereview.review.models import Severity

logger = logging.getLogger(__name__)

MODEL_REVIEWER_SOURCE = "model-reviewer"


@dataclass
class ReviewerOutcome:
    """
    reviewer 的 per-run 结果槽。

    由 orchestrator 创建并传入：即使 run 级 deadline 把 reviewer 取消，
    已完成 chunk 的结果也保留在这里，未完成的 chunk 由 `mark_unfinished` 记为失败。
    """

    findings: list[Finding] = field(default_factory=list)
    summaries: list[ChunkSummary] = field(default_factory=list)
    analyzed_chunks: list[int] = field(default_factory=list)
    failed_chunks: list[int] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.analyzed_chunks)

    def mark_unfinished(self, diff: Diff, chunks: list[Chunk], reason: str) -> None:
        done = set(self.analyzed_chunks) | set(self.failed_chunks)
        for chunk in chunks:
            if chunk.index in done:
                continue
            self.failed_chunks.append(chunk.index)
            self.findings.append(chunk_failure_finding(diff=diff, chunk=chunk, reason=reason))
            self.diagnostics.append(
                Diagnostic(kind=DiagnosticKind.CHUNK_CANCELLED, subject=f"chunk:{chunk.index}", message=reason)
            )


async def review_chunks(
    model_service: ModelService,
    diff: Diff,
    chunks: list[Chunk],
    settings: ReviewSettings,
    outcome: ReviewerOutcome,
) -> ReviewerOutcome:
    """按 chunk.index 升序逐个 review，结果写入 `outcome`（同时返回它）。"""
    window = ContextWindow(cap=settings.context_window_cap)

    for chunk in sorted(chunks, key=lambda c: c.index):
        chunk_text = render_chunk(diff=diff, chunk=chunk)
        try:
            review = await _review_chunk_with_retry(
                model_service=model_service,
                chunk=chunk,
                chunk_text=chunk_text,
                context_text=window.render(),
                settings=settings,
            )
        except ChunkAnalysisFailure as exc:
            logger.warning(str(exc))
            summary = ChunkSummary(chunk_index=chunk.index)
            outcome.failed_chunks.append(chunk.index)
            outcome.findings.append(chunk_failure_finding(diff=diff, chunk=chunk, reason=exc.reason))
            outcome.diagnostics.append(
                Diagnostic(kind=DiagnosticKind.CHUNK_FAILURE, subject=f"chunk:{chunk.index}", message=exc.reason)
            )
        else:
            findings = _to_findings(items=review.findings, allowed_paths=set(chunk.paths(diff)))
            summary = ChunkSummary(
                chunk_index=chunk.index,
                summary=truncate_summary(review.summary, max_chars=settings.summary_max_chars),
                finding_count=len(findings),
            )
            outcome.analyzed_chunks.append(chunk.index)
            outcome.findings.extend(findings)
            logger.info(f"Chunk {chunk.index} reviewed: findings={len(findings)}")

        window.append(summary)
        outcome.summaries.append(summary)

    if settings.enable_synthesis and len(outcome.analyzed_chunks) > 1:
        await _run_synthesis(model_service=model_service, diff=diff, settings=settings, outcome=outcome)
    return outcome


async def _review_chunk_with_retry(
    model_service: ModelService,
    chunk: Chunk,
    chunk_text: str,
    context_text: str,
    settings: ReviewSettings,
) -> ChunkReview:
    last_error = "unknown error"
    for attempt in range(settings.retry_count + 1):
        if attempt > 0:
            await anyio.sleep(backoff_delay(attempt=attempt, base_seconds=settings.retry_backoff_seconds))
        try:
            with anyio.fail_after(settings.model_timeout_seconds):
                return await model_service.review_chunk(chunk_text=chunk_text, context_text=context_text)
        except TimeoutError:
            last_error = f"model call timed out after {settings.model_timeout_seconds}s"
        except ModelServiceError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
        except Exception as exc:
            # model service 实现里的任何异常都只算这一次尝试失败，不能把整次 run 带崩
            logger.exception(f"Chunk {chunk.index} model call raised unexpectedly")
            last_error = f"{type(exc).__name__}: {exc}"
        logger.warning(f"Chunk {chunk.index} attempt {attempt + 1}/{settings.retry_count + 1} failed: {last_error}")
    raise ChunkAnalysisFailure(chunk_index=chunk.index, reason=last_error)


async def _run_synthesis(
    model_service: ModelService,
    diff: Diff,
    settings: ReviewSettings,
    outcome: ReviewerOutcome,
) -> None:
    # 汇总用全部摘要，而不只是窗口里剩下的那几条
    everything = ContextWindow(cap=len(outcome.summaries))
    for summary in outcome.summaries:
        everything.append(summary)
    try:
        with anyio.fail_after(settings.model_timeout_seconds):
            items = await model_service.synthesize(context_text=everything.render())
    except Exception as exc:
        logger.warning(f"Synthesis pass failed, skipped: {exc!r}")
        outcome.diagnostics.append(
            Diagnostic(kind=DiagnosticKind.SYNTHESIS_FAILURE, subject="synthesis", message=repr(exc))
        )
        return
    findings = _to_findings(items=items, allowed_paths={f.path for f in diff.files})
    outcome.findings.extend(findings)
    logger.info(f"Synthesis pass produced {len(findings)} finding(s)")


def _to_findings(items: list[ModelFinding], allowed_paths: set[str]) -> list[Finding]:
    """模型 finding -> `Finding`；路径不在允许集合内的直接丢弃（避免模型“胡写路径”）。"""
    findings: list[Finding] = []
    for item in items:
        path = resolve_diff_path(item.file_path, allowed_paths)
        if path is None:
            logger.warning(f"Dropping model finding for path outside the reviewed scope: {item.file_path}")
            continue
        findings.append(
            Finding(
                source=MODEL_REVIEWER_SOURCE,
                file_path=path,
                line=item.line,
                end_line=item.end_line,
                severity=item.severity,
                category=item.category,
                title=item.title,
                description=item.description,
                suggested_fix=item.suggested_fix or None,
                references=tuple(item.references),
            )
        )
    return findings


def chunk_failure_finding(diff: Diff, chunk: Chunk, reason: str) -> Finding:
    """未分析 chunk 的占位 finding（INFO，绝不影响 gate）。"""
    first = chunk.hunk_refs[0]
    file_change = diff.files[first.file_index]
    hunk = file_change.hunks[first.hunk_index]
    paths = ", ".join(chunk.paths(diff))
    return Finding(
        source=MODEL_REVIEWER_SOURCE,
        file_path=file_change.path,
        line=hunk.new_start,
        severity=Severity.INFO,
        category=Category.MAINTAINABILITY,
        title=f"Chunk {chunk.index} was not analyzed",
        description=f"Model review skipped {chunk.line_count} changed line(s) in {paths}: {reason}",
    )


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """第 attempt 次重试前的等待时间（attempt 从 1 开始）：base, 2*base, 4*base ..."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return base_seconds * 2 ** (attempt - 1)


def truncate_summary(text: str, max_chars: int) -> str:
    """控制单条摘要长度，保证 context window 渲染出的 prompt 有上界。"""
    if max_chars <= 0:
        raise ValueError("max_chars must be > 0")
    text = text.strip()
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "...TRUNCATED"
