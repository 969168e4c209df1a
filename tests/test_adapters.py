from __future__ import annotations

import json
import logging
import sys

import pytest

from codereview.adapters.base import AdapterRequest
from codereview.adapters.command import CommandToolAdapter
from codereview.adapters.complexity import ComplexityAdapter
from codereview.adapters.complexity import calc_python_complexity
from codereview.adapters.coverage import TestCoverageAdapter
from codereview.adapters.coverage import is_test_path
from codereview.adapters.registry import build_default_adapters
from codereview.adapters.registry import select_adapters
from codereview.adapters.security import SecurityPatternAdapter
from codereview.config import CommandAdapterConfig
from codereview.config import ReviewSettings
from codereview.review.errors import AdapterFailure
from codereview.review.diff_parser import parse_unified_diff
from codereview.review.models import Category
from codereview.review.models import Severity
from codereview.review.planner import build_review_plan


def _request(text: str, coverage_gap: float | None = None) -> AdapterRequest:
    diff = parse_unified_diff(text)
    plan = build_review_plan(diff=diff, settings=ReviewSettings(), coverage_gap=coverage_gap)
    return AdapterRequest(diff=diff, diff_text=text, plan=plan)


def _branchy_function(name: str, branches: int) -> list[str]:
    body = [f"def {name}(x):"]
    for i in range(branches):
        body.append(f"    if x == {i}:")
        body.append(f"        return {i}")
    body.append("    return -1")
    return body


def _command(payload: object, exit_code: int = 0) -> tuple[str, ...]:
    literal = json.dumps(json.dumps(payload))
    script = f"import sys; sys.stdin.read(); print({literal}); sys.exit({exit_code})"
    return (sys.executable, "-c", script)


def test_calc_python_complexity_empty_code_is_zero() -> None:
    assert calc_python_complexity("") == 0


def test_calc_python_complexity_counts_branches() -> None:
    code = "\n".join(
        [
            "def f(x):",
            "    if x:",
            "        return 1",
            "    for i in range(3):",
            "        pass",
        ]
    )
    assert calc_python_complexity(code) == 3


def test_calc_python_complexity_invalid_python_raises() -> None:
    with pytest.raises(SyntaxError):
        calc_python_complexity("def f(:\n    pass")


def test_security_adapter_flags_added_lines_only(make_diff_text) -> None:
    added = [
        "def load(cur, uid):",
        '    cur.execute(f"SELECT * FROM users WHERE id = {uid}")',
        '    password = "hunter22"',
    ]
    findings = SecurityPatternAdapter().run(_request(make_diff_text({"app/db.py": [added]})))

    by_title = {f.title: f for f in findings}
    assert set(by_title) == {"SQL built from string formatting", "Hardcoded credential"}
    assert by_title["SQL built from string formatting"].line == 2
    assert by_title["Hardcoded credential"].line == 3
    assert by_title["Hardcoded credential"].references == ("CWE-798",)
    assert all(f.category is Category.SECURITY and f.source == "security-patterns" for f in findings)


def test_security_adapter_ignores_removed_lines() -> None:
    text = "\n".join(
        [
            "diff --git a/run.py b/run.py",
            "--- a/run.py",
            "+++ b/run.py",
            "@@ -1,2 +1,1 @@",
            "-subprocess.run(cmd, shell=True)",
            " print('done')",
            "",
        ]
    )
    assert SecurityPatternAdapter().run(_request(text)) == []


def test_security_adapter_requires_rules() -> None:
    with pytest.raises(ValueError):
        SecurityPatternAdapter(rules=())


def test_complexity_adapter_reports_branchy_function(make_diff_text) -> None:
    request = _request(make_diff_text({"svc/handlers.py": [_branchy_function("dispatch", 12)]}))
    findings = ComplexityAdapter(medium_threshold=10, high_threshold=20).run(request)

    assert len(findings) == 1
    assert findings[0].title == "High cyclomatic complexity in dispatch"
    assert findings[0].severity is Severity.MEDIUM
    assert findings[0].line == 1


def test_complexity_adapter_severity_escalates(make_diff_text) -> None:
    request = _request(make_diff_text({"svc/handlers.py": [_branchy_function("dispatch", 25)]}))
    findings = ComplexityAdapter(medium_threshold=10, high_threshold=20).run(request)
    assert [f.severity for f in findings] == [Severity.HIGH]


def test_complexity_adapter_skips_unparsable_fragment(make_diff_text) -> None:
    request = _request(make_diff_text({"svc/handlers.py": [["    if x:", "        return (1,"]]}))
    assert ComplexityAdapter().run(request) == []


def test_complexity_adapter_flags_large_hunks_in_any_language(make_diff_text) -> None:
    findings = ComplexityAdapter(large_hunk_lines=20).run(_request(make_diff_text({"web/app.ts": [30]})))
    assert [f.title for f in findings] == ["Large change block"]
    assert findings[0].severity is Severity.LOW


def test_complexity_adapter_rejects_bad_thresholds() -> None:
    with pytest.raises(ValueError):
        ComplexityAdapter(medium_threshold=20, high_threshold=10)


def test_is_test_path() -> None:
    assert is_test_path("tests/test_api.py")
    assert is_test_path("pkg/test_util.py")
    assert is_test_path("web/button.spec.ts")
    assert not is_test_path("pkg/contest.py")


def test_coverage_adapter_flags_untested_source_files(make_diff_text) -> None:
    request = _request(make_diff_text({"pkg/core.py": [5], "README.md": [2]}), coverage_gap=60)
    findings = TestCoverageAdapter().run(request)

    assert [f.file_path for f in findings] == ["pkg/core.py"]
    assert findings[0].severity is Severity.MEDIUM
    assert "60%" in findings[0].description


def test_coverage_adapter_quiet_when_tests_change(make_diff_text) -> None:
    request = _request(make_diff_text({"pkg/core.py": [5], "tests/test_core.py": [5]}), coverage_gap=60)
    assert TestCoverageAdapter().run(request) == []


@pytest.mark.anyio
async def test_command_adapter_parses_findings(make_diff_text, caplog: pytest.LogCaptureFixture) -> None:
    payload = {
        "findings": [
            {"file_path": "pkg/core.py", "line": 2, "severity": "HIGH", "category": "Bug", "title": "Off by one"},
            {"file_path": "./pkg/core.py", "line": 4, "severity": "LOW", "category": "Style", "title": "dot path"},
            {"file_path": "b/pkg/core.py", "line": 5, "severity": "LOW", "category": "Style", "title": "b path"},
            {"file_path": "elsewhere.py", "line": 1, "severity": "LOW", "category": "Style", "title": "nit"},
        ]
    }
    adapter = CommandToolAdapter(CommandAdapterConfig(name="lint", command=_command(payload, exit_code=1)))
    with caplog.at_level(logging.WARNING):
        findings = await adapter.analyze(_request(make_diff_text({"pkg/core.py": [5]})))

    assert [(f.source, f.file_path, f.title) for f in findings] == [
        ("lint", "pkg/core.py", "Off by one"),
        ("lint", "pkg/core.py", "dot path"),
        ("lint", "pkg/core.py", "b path"),
    ]
    assert "elsewhere.py" in caplog.text
    assert findings[0].severity is Severity.HIGH


@pytest.mark.anyio
async def test_command_adapter_fails_without_output(make_diff_text) -> None:
    script = "import sys; sys.stdin.read(); sys.exit(3)"
    adapter = CommandToolAdapter(CommandAdapterConfig(name="lint", command=(sys.executable, "-c", script)))
    with pytest.raises(AdapterFailure):
        await adapter.analyze(_request(make_diff_text({"pkg/core.py": [5]})))


@pytest.mark.anyio
async def test_command_adapter_rejects_non_json_output(make_diff_text) -> None:
    script = "import sys; sys.stdin.read(); print('all good!')"
    adapter = CommandToolAdapter(CommandAdapterConfig(name="lint", command=(sys.executable, "-c", script)))
    with pytest.raises(AdapterFailure):
        await adapter.analyze(_request(make_diff_text({"pkg/core.py": [5]})))


def test_registry_selects_in_plan_order(make_diff_text) -> None:
    settings = ReviewSettings(command_adapters=(CommandAdapterConfig(name="lint", command=("true",)),))
    registry = build_default_adapters(settings)
    assert set(registry) == {"security-patterns", "complexity", "test-coverage", "lint"}

    diff = parse_unified_diff(make_diff_text({"pkg/core.py": [30]}))
    plan = build_review_plan(diff=diff, settings=settings)
    assert [a.name for a in select_adapters(plan=plan, available=registry)] == ["security-patterns", "complexity", "lint"]


def test_registry_rejects_duplicate_names() -> None:
    settings = ReviewSettings(command_adapters=(CommandAdapterConfig(name="complexity", command=("true",)),))
    with pytest.raises(ValueError):
        build_default_adapters(settings)
