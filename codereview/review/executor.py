"""
Parallel Executor：并发运行当前 tier 启用的全部 tool adapter。

- adapter 之间互相独立（看不到彼此输出），所以完全可并行
- 每个 adapter 有独立超时；一个失败/超时不会取消其它 adapter
- 结果按 adapter 名写入 per-run 结果表，每个槽位只写一次，join 之后再读，无需加锁
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import anyio

from codereview.adapters.base import AdapterRequest
from codereview.adapters.base import ToolAdapter
from codereview.review.models import Category
from codereview.review.models import Diagnostic
from codereview.review.models import DiagnosticKind
from codereview.review.models import Finding
from codereview.review.models import Severity

logger = logging.getLogger(__name__)

RUN_LEVEL_SUBJECT = "(review run)"


@dataclass(frozen=True)
class AdapterOutcome:
    """单个 adapter 的结果：findings，或一个显式的失败原因。"""

    name: str
    findings: tuple[Finding, ...] = ()
    error: str | None = None
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


async def run_adapters(
    adapters: Sequence[ToolAdapter],
    request: AdapterRequest,
    timeout_seconds: float,
    results: dict[str, AdapterOutcome] | None = None,
) -> dict[str, AdapterOutcome]:
    """
    并发执行 adapters，等全部结束（成功/失败/超时）后返回结果表。

    - results：可选的外部结果表（orchestrator 传入，run 级 deadline 取消时已完成的槽位仍然保留）
    """
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")
    slots: dict[str, AdapterOutcome] = {} if results is None else results

    async def run_one(adapter: ToolAdapter) -> None:
        try:
            with anyio.fail_after(timeout_seconds):
                findings = await adapter.analyze(request)
        except TimeoutError:
            logger.error(f"Adapter {adapter.name} timed out after {timeout_seconds}s")
            slots[adapter.name] = AdapterOutcome(
                name=adapter.name, error=f"timed out after {timeout_seconds}s", timed_out=True
            )
            return
        except Exception as exc:
            # 任何 adapter 自身的异常都只影响它自己的槽位
            logger.exception(f"Adapter {adapter.name} failed")
            slots[adapter.name] = AdapterOutcome(name=adapter.name, error=f"{type(exc).__name__}: {exc}")
            return
        slots[adapter.name] = AdapterOutcome(name=adapter.name, findings=tuple(findings))
        logger.info(f"Adapter {adapter.name} finished: findings={len(findings)}")

    async with anyio.create_task_group() as tg:
        for adapter in adapters:
            tg.start_soon(run_one, adapter)
    return slots


def adapter_failure_finding(outcome: AdapterOutcome, file_path: str) -> Finding:
    """失败 adapter 的占位 finding（INFO，让 verdict 的覆盖范围可审计）。"""
    return Finding(
        source=outcome.name,
        file_path=file_path,
        severity=Severity.INFO,
        category=Category.MAINTAINABILITY,
        title=f"Adapter {outcome.name} did not complete",
        description=f"Findings from {outcome.name} are missing from this review: {outcome.error}",
    )


def adapter_failure_diagnostic(outcome: AdapterOutcome) -> Diagnostic:
    kind = DiagnosticKind.ADAPTER_TIMEOUT if outcome.timed_out else DiagnosticKind.ADAPTER_FAILURE
    return Diagnostic(kind=kind, subject=f"adapter:{outcome.name}", message=outcome.error or "")
