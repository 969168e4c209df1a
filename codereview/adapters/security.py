"""
安全/风险模式扫描 adapter（规则类）。

特点：
- 确定性：只对 diff 新增行做正则匹配
- 可测试：输入 diff，输出命中的 finding（带 CWE 引用）

这是“提示风险”的浅层扫描，不理解语言语义，误报由后续人工/模型 review 兜底。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from codereview.adapters.base import AdapterRequest
from codereview.adapters.base import ThreadedToolAdapter
from codereview.review.diff_parser import iter_added_lines
from codereview.review.models import Category
from codereview.review.models import Finding
from codereview.review.models import Severity
from codereview.review.planner import SECURITY_ADAPTER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskRule:
    rule_id: str
    pattern: re.Pattern[str]
    severity: Severity
    title: str
    description: str
    suggested_fix: str
    reference: str


DEFAULT_RULES: tuple[RiskRule, ...] = (
    RiskRule(
        rule_id="private-key",
        pattern=re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"),
        severity=Severity.CRITICAL,
        title="Private key committed to source",
        description="A private key block was added to the repository.",
        suggested_fix="Remove the key, rotate it, and load it from a secret store.",
        reference="CWE-321",
    ),
    RiskRule(
        rule_id="hardcoded-secret",
        pattern=re.compile(r"""(?i)\b(password|passwd|secret|api_?key|access_?token)\b\s*[:=]\s*["'][^"']{4,}["']"""),
        severity=Severity.HIGH,
        title="Hardcoded credential",
        description="A credential-like value is assigned from a string literal.",
        suggested_fix="Read the value from configuration or a secret manager.",
        reference="CWE-798",
    ),
    RiskRule(
        rule_id="sql-string-build",
        pattern=re.compile(r"""(?i)\bexecute(?:many)?\s*\(\s*(?:f["']|["'].*["']\s*(?:%|\+|\.format\())"""),
        severity=Severity.HIGH,
        title="SQL built from string formatting",
        description="A SQL statement is assembled with string formatting before execution.",
        suggested_fix="Use parameterized queries.",
        reference="CWE-89",
    ),
    RiskRule(
        rule_id="dynamic-eval",
        pattern=re.compile(r"(?<![\w.])(?:eval|exec)\s*\("),
        severity=Severity.HIGH,
        title="Dynamic code evaluation",
        description="eval/exec executes dynamically constructed code.",
        suggested_fix="Replace with explicit parsing or a dispatch table.",
        reference="CWE-95",
    ),
    RiskRule(
        rule_id="shell-true",
        pattern=re.compile(r"\bshell\s*=\s*True\b"),
        severity=Severity.HIGH,
        title="Subprocess invoked through the shell",
        description="shell=True passes the command through a shell and enables injection.",
        suggested_fix="Pass an argument list and drop shell=True.",
        reference="CWE-78",
    ),
    RiskRule(
        rule_id="os-system",
        pattern=re.compile(r"\bos\.(?:system|popen)\s*\("),
        severity=Severity.MEDIUM,
        title="Shell command execution",
        description="os.system/os.popen run a command string through the shell.",
        suggested_fix="Use subprocess.run with an argument list.",
        reference="CWE-78",
    ),
    RiskRule(
        rule_id="unsafe-deserialization",
        pattern=re.compile(r"\b(?:pickle\.loads?|marshal\.loads?|yaml\.load)\s*\("),
        severity=Severity.MEDIUM,
        title="Unsafe deserialization",
        description="Deserializing untrusted data with pickle/marshal/yaml.load can execute code.",
        suggested_fix="Use a safe format (JSON) or yaml.safe_load.",
        reference="CWE-502",
    ),
    RiskRule(
        rule_id="tls-verify-disabled",
        pattern=re.compile(r"\bverify\s*=\s*False\b"),
        severity=Severity.MEDIUM,
        title="TLS certificate verification disabled",
        description="HTTPS requests are made without certificate verification.",
        suggested_fix="Keep verification on; configure a CA bundle if needed.",
        reference="CWE-295",
    ),
    RiskRule(
        rule_id="weak-hash",
        pattern=re.compile(r"\bhashlib\.(?:md5|sha1)\s*\("),
        severity=Severity.LOW,
        title="Weak hash algorithm",
        description="MD5/SHA1 are not collision resistant.",
        suggested_fix="Use hashlib.sha256 or a password hashing function.",
        reference="CWE-327",
    ),
)


class SecurityPatternAdapter(ThreadedToolAdapter):
    """对新增行逐条应用 `RiskRule`。"""

    def __init__(self, rules: tuple[RiskRule, ...] = DEFAULT_RULES, name: str = SECURITY_ADAPTER) -> None:
        if not rules:
            raise ValueError("rules must be non-empty")
        self.name = name
        self._rules = rules

    def run(self, request: AdapterRequest) -> list[Finding]:
        findings: list[Finding] = []
        for file_change in request.diff.files:
            for hunk in file_change.hunks:
                for line_no, text in iter_added_lines(hunk):
                    for rule in self._rules:
                        if rule.pattern.search(text):
                            findings.append(
                                Finding(
                                    source=self.name,
                                    file_path=file_change.path,
                                    line=line_no,
                                    severity=rule.severity,
                                    category=Category.SECURITY,
                                    title=rule.title,
                                    description=f"{rule.description} Matched: `{text.strip()[:120]}`",
                                    suggested_fix=rule.suggested_fix,
                                    references=(rule.reference,),
                                )
                            )
        logger.info(f"Security pattern scan: {len(findings)} hit(s)")
        return findings
