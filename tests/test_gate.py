from __future__ import annotations

from codereview.review.gate import GatePolicy
from codereview.review.gate import evaluate_gate
from codereview.review.models import Category
from codereview.review.models import GateVerdict
from codereview.review.models import MergedFinding
from codereview.review.models import Severity


def _merged(severity: Severity, line: int) -> MergedFinding:
    return MergedFinding(
        source="tool",
        file_path="a.py",
        line=line,
        severity=severity,
        category=Category.BUG,
        title=f"issue {line}",
        fingerprint=f"fp{line}",
    )


def test_default_policy_passes_without_critical() -> None:
    findings = [_merged(Severity.HIGH, 1), _merged(Severity.INFO, 2)]
    decision = evaluate_gate(findings, GatePolicy())
    assert decision.verdict is GateVerdict.PASS
    assert decision.reasons == ()


def test_empty_set_passes() -> None:
    assert evaluate_gate([], GatePolicy()).verdict is GateVerdict.PASS


def test_adding_a_critical_finding_blocks() -> None:
    base = [_merged(s, i) for i, s in enumerate([Severity.HIGH, Severity.MEDIUM, Severity.LOW, Severity.INFO])]
    for size in range(len(base) + 1):
        subset = base[:size]
        assert evaluate_gate(subset, GatePolicy()).verdict is GateVerdict.PASS
        decision = evaluate_gate([*subset, _merged(Severity.CRITICAL, 99)], GatePolicy())
        assert decision.verdict is GateVerdict.BLOCK
        assert any("fp99" in reason for reason in decision.reasons)


def test_high_count_trigger() -> None:
    policy = GatePolicy(max_high_findings=1)
    assert evaluate_gate([_merged(Severity.HIGH, 1)], policy).verdict is GateVerdict.PASS
    decision = evaluate_gate([_merged(Severity.HIGH, 1), _merged(Severity.HIGH, 2)], policy)
    assert decision.verdict is GateVerdict.BLOCK
    assert "fp1" in decision.reasons[0] and "fp2" in decision.reasons[0]


def test_custom_threshold_stays_monotonic() -> None:
    policy = GatePolicy(block_severity=Severity.HIGH)
    passing = [_merged(Severity.MEDIUM, 1)]
    assert evaluate_gate(passing, policy).verdict is GateVerdict.PASS
    for severity in (Severity.HIGH, Severity.CRITICAL):
        assert evaluate_gate([*passing, _merged(severity, 2)], policy).verdict is GateVerdict.BLOCK
