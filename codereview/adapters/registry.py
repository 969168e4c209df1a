"""
Adapter 注册/选择。

为什么需要 registry：
- 把 plan 里的 adapter 名字映射到具体实例
- 统一处理“plan 要求了但没注册”的情况
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from codereview.adapters.base import ToolAdapter
from codereview.adapters.command import CommandToolAdapter
from codereview.adapters.complexity import ComplexityAdapter
from codereview.adapters.coverage import TestCoverageAdapter
from codereview.adapters.security import SecurityPatternAdapter
from codereview.config import ReviewSettings
from codereview.review.models import ReviewPlan

logger = logging.getLogger(__name__)


def build_default_adapters(settings: ReviewSettings) -> dict[str, ToolAdapter]:
    """内置规则 adapter + 配置里声明的外部命令 adapter。"""
    adapters: list[ToolAdapter] = [SecurityPatternAdapter(), ComplexityAdapter(), TestCoverageAdapter()]
    adapters.extend(CommandToolAdapter(config=c) for c in settings.command_adapters)

    registry: dict[str, ToolAdapter] = {}
    for adapter in adapters:
        if adapter.name in registry:
            raise ValueError(f"Duplicate adapter name: {adapter.name}")
        registry[adapter.name] = adapter
    return registry


def select_adapters(plan: ReviewPlan, available: Mapping[str, ToolAdapter]) -> list[ToolAdapter]:
    """按 plan.enabled_adapters 的顺序挑出可用 adapter。"""
    selected: list[ToolAdapter] = []
    for name in plan.enabled_adapters:
        adapter = available.get(name)
        if adapter is None:
            logger.warning(f"Adapter {name} is enabled for tier {plan.depth_tier.value} but not registered")
            continue
        selected.append(adapter)
    return selected
