from __future__ import annotations

import random

from codereview.review.models import Category
from codereview.review.models import MergedFinding
from codereview.review.models import Severity
from codereview.review.prioritizer import prioritize
from codereview.review.prioritizer import priority_key


def _merged(severity: Severity, category: Category, path: str, line: int | None, title: str = "t") -> MergedFinding:
    return MergedFinding(
        source="tool",
        file_path=path,
        line=line,
        severity=severity,
        category=category,
        title=title,
        fingerprint=f"{severity.value}-{category.value}-{path}-{line}-{title}",
    )


def test_orders_by_severity_then_category_then_path_then_line() -> None:
    expected = [
        _merged(Severity.CRITICAL, Category.STYLE, "z.py", 1),
        _merged(Severity.HIGH, Category.SECURITY, "b.py", 5),
        _merged(Severity.HIGH, Category.BUG, "a.py", 1),
        _merged(Severity.HIGH, Category.PERFORMANCE, "a.py", 1),
        _merged(Severity.HIGH, Category.ARCHITECTURE, "a.py", 1),
        _merged(Severity.HIGH, Category.MAINTAINABILITY, "a.py", None),
        _merged(Severity.HIGH, Category.MAINTAINABILITY, "a.py", 3),
        _merged(Severity.HIGH, Category.MAINTAINABILITY, "a.py", 20),
        _merged(Severity.HIGH, Category.MAINTAINABILITY, "b.py", 1),
        _merged(Severity.HIGH, Category.STYLE, "a.py", 1),
        _merged(Severity.MEDIUM, Category.SECURITY, "a.py", 1),
        _merged(Severity.LOW, Category.SECURITY, "a.py", 1),
        _merged(Severity.INFO, Category.SECURITY, "a.py", 1),
    ]
    shuffled = list(expected)
    random.Random(7).shuffle(shuffled)
    assert prioritize(shuffled) == expected


def test_equal_keys_keep_input_order() -> None:
    first = _merged(Severity.HIGH, Category.BUG, "a.py", 4, title="first")
    second = _merged(Severity.HIGH, Category.BUG, "a.py", 4, title="second")
    assert priority_key(first) == priority_key(second)
    assert prioritize([first, second]) == [first, second]
    assert prioritize([second, first]) == [second, first]


def test_repeated_runs_are_identical() -> None:
    findings = [_merged(s, c, "x.py", 1) for s in Severity for c in Category]
    assert prioritize(findings) == prioritize(list(findings)) == prioritize(prioritize(findings))
