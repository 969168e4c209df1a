from __future__ import annotations

import anyio
import pytest

from codereview.adapters.base import AdapterRequest
from codereview.config import ReviewSettings
from codereview.review.diff_parser import parse_unified_diff
from codereview.review.executor import adapter_failure_finding
from codereview.review.executor import run_adapters
from codereview.review.models import Category
from codereview.review.models import Finding
from codereview.review.models import Severity
from codereview.review.planner import build_review_plan


class FixedAdapter:
    def __init__(self, name: str, delay: float = 0.0) -> None:
        self.name = name
        self._delay = delay

    async def analyze(self, request: AdapterRequest) -> list[Finding]:
        await anyio.sleep(self._delay)
        return [
            Finding(
                source=self.name,
                file_path=request.diff.files[0].path,
                line=1,
                severity=Severity.LOW,
                category=Category.STYLE,
                title=f"{self.name} nit",
            )
        ]


class BrokenAdapter:
    name = "broken"

    async def analyze(self, request: AdapterRequest) -> list[Finding]:
        raise RuntimeError("tool crashed")


def _request(make_diff_text) -> AdapterRequest:
    text = make_diff_text({"a.py": [30]})
    diff = parse_unified_diff(text)
    return AdapterRequest(diff=diff, diff_text=text, plan=build_review_plan(diff=diff, settings=ReviewSettings()))


@pytest.mark.anyio
async def test_one_timeout_does_not_block_the_others(make_diff_text) -> None:
    adapters = [FixedAdapter("fast"), FixedAdapter("slow", delay=10), FixedAdapter("also-fast", delay=0.01)]
    with anyio.fail_after(5):
        results = await run_adapters(adapters, _request(make_diff_text), timeout_seconds=0.2)

    assert set(results) == {"fast", "slow", "also-fast"}
    assert results["fast"].succeeded and results["also-fast"].succeeded
    assert results["slow"].timed_out is True
    assert results["slow"].findings == ()


@pytest.mark.anyio
async def test_adapter_exception_is_recorded_not_raised(make_diff_text) -> None:
    results = await run_adapters([BrokenAdapter(), FixedAdapter("ok")], _request(make_diff_text), timeout_seconds=1)
    assert results["ok"].succeeded
    assert results["broken"].succeeded is False
    assert "tool crashed" in (results["broken"].error or "")

    placeholder = adapter_failure_finding(results["broken"], file_path="a.py")
    assert placeholder.severity is Severity.INFO
    assert placeholder.source == "broken"


@pytest.mark.anyio
async def test_no_adapters_gives_empty_results(make_diff_text) -> None:
    assert await run_adapters([], _request(make_diff_text), timeout_seconds=1) == {}


@pytest.mark.anyio
async def test_invalid_timeout_raises(make_diff_text) -> None:
    with pytest.raises(ValueError):
        await run_adapters([FixedAdapter("x")], _request(make_diff_text), timeout_seconds=0)
