"""
应用配置加载。

设计目标：
- **严格**：LLM 配置要么完整、要么不配；非法数值直接报错
- **类型安全**：使用 Pydantic 校验 URL/数值范围等，减少运行时踩坑
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试

所有选项在 run 开始时一次性给定，run 中途不会被修改。
"""

from __future__ import annotations

import json
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from codereview.review.gate import GatePolicy

DEFAULT_SECURITY_PATH_PATTERNS: tuple[str, ...] = (
    "*auth*",
    "*login*",
    "*oauth*",
    "*session*",
    "*crypto*",
    "*cipher*",
    "*secret*",
    "*password*",
    "*token*",
    "*permission*",
    "*acl*",
    "*access_control*",
    "*access-control*",
    "*security*",
)


class LLMConfig(BaseModel):
    """OpenAI-compatible LLM 网关配置。"""

    base_url: HttpUrl
    api_key: str
    model: str


class CommandAdapterConfig(BaseModel):
    """
    外部静态分析工具（命令行）adapter 配置。

    约定：diff 文本从 stdin 传入，工具在 stdout 输出 JSON（finding 列表）。
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    command: tuple[str, ...] = Field(min_length=1)


class ReviewSettings(BaseModel):
    """review pipeline 的全部可调参数（对应 triage / chunk / 超时 / 重试 / gate）。"""

    model_config = ConfigDict(frozen=True)

    max_lines: int = Field(default=3000, gt=0)
    max_files: int = Field(default=60, gt=0)
    min_lines: int = Field(default=20, ge=0)
    coverage_gap_threshold: float = Field(default=30.0, ge=0, le=100)
    max_chunk_lines: int = Field(default=400, gt=0)
    context_window_cap: int = Field(default=5, gt=0)
    summary_max_chars: int = Field(default=600, gt=0)
    adapter_timeout_seconds: float = Field(default=30.0, gt=0)
    run_timeout_seconds: float = Field(default=300.0, gt=0)
    model_timeout_seconds: float = Field(default=90.0, gt=0)
    retry_count: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    line_tolerance: int = Field(default=3, ge=0)
    security_path_patterns: tuple[str, ...] = DEFAULT_SECURITY_PATH_PATTERNS
    enable_synthesis: bool = True
    gate: GatePolicy = Field(default_factory=GatePolicy)
    command_adapters: tuple[CommandAdapterConfig, ...] = ()


class AppConfig(BaseModel):
    """服务运行配置：LLM 可选（不配则只跑规则类 adapter）。"""

    llm: LLMConfig | None = None
    review: ReviewSettings = Field(default_factory=ReviewSettings)


_LLM_KEYS: tuple[str, ...] = ("LLM_BASE_URL", "LLM_API_KEY", "LLM_MODEL")

_REVIEW_ENV_KEYS: dict[str, str] = {
    "REVIEW_MAX_LINES": "max_lines",
    "REVIEW_MAX_FILES": "max_files",
    "REVIEW_MIN_LINES": "min_lines",
    "REVIEW_COVERAGE_GAP_THRESHOLD": "coverage_gap_threshold",
    "REVIEW_MAX_CHUNK_LINES": "max_chunk_lines",
    "REVIEW_CONTEXT_WINDOW_CAP": "context_window_cap",
    "REVIEW_SUMMARY_MAX_CHARS": "summary_max_chars",
    "REVIEW_ADAPTER_TIMEOUT_SECONDS": "adapter_timeout_seconds",
    "REVIEW_RUN_TIMEOUT_SECONDS": "run_timeout_seconds",
    "REVIEW_MODEL_TIMEOUT_SECONDS": "model_timeout_seconds",
    "REVIEW_RETRY_COUNT": "retry_count",
    "REVIEW_RETRY_BACKOFF_SECONDS": "retry_backoff_seconds",
    "REVIEW_LINE_TOLERANCE": "line_tolerance",
    "REVIEW_ENABLE_SYNTHESIS": "enable_synthesis",
}


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：LLM 变量只配了一部分、数值非法、JSON 非法 -> `ValueError`
    """
    return AppConfig(llm=_load_llm_config(environ), review=load_review_settings(environ))


def load_review_settings(environ: Mapping[str, str]) -> ReviewSettings:
    values: dict[str, object] = {}
    for env_key, field_name in _REVIEW_ENV_KEYS.items():
        raw = environ.get(env_key)
        if raw:
            values[field_name] = raw

    patterns = environ.get("REVIEW_SECURITY_PATH_PATTERNS")
    if patterns:
        values["security_path_patterns"] = tuple(p.strip() for p in patterns.split(",") if p.strip())

    gate: dict[str, object] = {}
    if environ.get("REVIEW_GATE_BLOCK_SEVERITY"):
        gate["block_severity"] = environ["REVIEW_GATE_BLOCK_SEVERITY"].upper()
    if environ.get("REVIEW_GATE_MAX_HIGH_FINDINGS"):
        gate["max_high_findings"] = environ["REVIEW_GATE_MAX_HIGH_FINDINGS"]
    if gate:
        values["gate"] = gate

    raw_commands = environ.get("REVIEW_COMMAND_ADAPTERS")
    if raw_commands:
        try:
            values["command_adapters"] = json.loads(raw_commands)
        except json.JSONDecodeError as exc:
            raise ValueError(f"REVIEW_COMMAND_ADAPTERS is not valid JSON: {exc}") from exc

    # 交给 Pydantic 做类型/范围校验（ValidationError 本身就是 ValueError）
    return ReviewSettings.model_validate(values)


def _load_llm_config(environ: Mapping[str, str]) -> LLMConfig | None:
    present = [key for key in _LLM_KEYS if environ.get(key)]
    if not present:
        return None
    missing = [key for key in _LLM_KEYS if key not in present]
    if missing:
        raise ValueError(f"Missing required env vars: {', '.join(missing)}")
    return LLMConfig(
        base_url=environ["LLM_BASE_URL"],
        api_key=environ["LLM_API_KEY"],
        model=environ["LLM_MODEL"],
    )
