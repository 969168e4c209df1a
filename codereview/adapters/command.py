"""
外部命令行分析工具 adapter。

约定：
- diff 文本从 stdin 传入
- 工具在 stdout 输出 JSON：finding 列表，或 `{"findings": [...]}`
- 退出码非 0 且没有 stdout -> `AdapterFailure`（很多 linter 在“有发现”时也返回 1，所以只看 stdout）
"""

from __future__ import annotations

import json
import logging

import anyio
from pydantic import TypeAdapter, ValidationError

from codereview.adapters.base import AdapterRequest
from codereview.config import CommandAdapterConfig
from codereview.review.diff_parser import resolve_diff_path
from codereview.review.errors import AdapterFailure
from codereview.review.models import Finding
from codereview.review.models import ModelFinding

logger = logging.getLogger(__name__)

_FINDINGS = TypeAdapter(list[ModelFinding])


class CommandToolAdapter:
    def __init__(self, config: CommandAdapterConfig) -> None:
        self.name = config.name
        self._command = list(config.command)

    async def analyze(self, request: AdapterRequest) -> list[Finding]:
        result = await anyio.run_process(self._command, input=request.diff_text.encode("utf-8"), check=False)
        stdout = result.stdout.decode("utf-8", errors="replace").strip()
        if result.returncode != 0 and not stdout:
            stderr = result.stderr.decode("utf-8", errors="replace")
            logger.error(f"Tool failed: {' '.join(self._command)}\nexit={result.returncode}\nstderr={stderr}")
            raise AdapterFailure(adapter=self.name, reason=f"exited with {result.returncode}")
        if not stdout:
            return []
        return self._parse(stdout=stdout, allowed_paths={f.path for f in request.diff.files})

    def _parse(self, stdout: str, allowed_paths: set[str]) -> list[Finding]:
        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise AdapterFailure(adapter=self.name, reason="stdout is not valid JSON") from exc
        if isinstance(payload, dict):
            payload = payload.get("findings", [])
        try:
            items = _FINDINGS.validate_python(payload)
        except ValidationError as exc:
            raise AdapterFailure(adapter=self.name, reason=f"stdout does not match the finding schema: {exc}") from exc

        findings: list[Finding] = []
        for item in items:
            path = resolve_diff_path(item.file_path, allowed_paths)
            if path is None:
                logger.warning(f"Tool {self.name}: dropping finding for path not in the diff: {item.file_path}")
                continue
            findings.append(
                Finding(
                    source=self.name,
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
        logger.info(f"Tool {self.name}: {len(findings)} finding(s)")
        return findings
