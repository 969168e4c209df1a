from __future__ import annotations

import pytest

from codereview.config import DEFAULT_SECURITY_PATH_PATTERNS
from codereview.config import load_config_from_env
from codereview.review.models import Severity


def test_load_config_without_llm_is_ok() -> None:
    cfg = load_config_from_env(environ={})
    assert cfg.llm is None
    assert cfg.review.max_chunk_lines == 400
    assert cfg.review.line_tolerance == 3
    assert cfg.review.security_path_patterns == DEFAULT_SECURITY_PATH_PATTERNS
    assert cfg.review.gate.block_severity is Severity.CRITICAL


def test_load_config_with_llm() -> None:
    environ = {"LLM_BASE_URL": "https://llm.example.com", "LLM_API_KEY": "k", "LLM_MODEL": "m"}
    cfg = load_config_from_env(environ=environ)
    assert cfg.llm is not None
    assert cfg.llm.model == "m"


def test_load_config_rejects_partial_llm() -> None:
    environ = {"LLM_BASE_URL": "https://llm.example.com", "LLM_API_KEY": "k"}
    with pytest.raises(ValueError, match="LLM_MODEL"):
        load_config_from_env(environ=environ)


def test_load_config_rejects_invalid_llm_url() -> None:
    environ = {"LLM_BASE_URL": "not a url", "LLM_API_KEY": "k", "LLM_MODEL": "m"}
    with pytest.raises(ValueError):
        load_config_from_env(environ=environ)


def test_load_config_review_overrides() -> None:
    environ = {
        "REVIEW_MAX_LINES": "500",
        "REVIEW_MAX_CHUNK_LINES": "50",
        "REVIEW_RETRY_BACKOFF_SECONDS": "0.5",
        "REVIEW_ENABLE_SYNTHESIS": "false",
        "REVIEW_SECURITY_PATH_PATTERNS": "*vault*, *keys*",
        "REVIEW_GATE_BLOCK_SEVERITY": "high",
        "REVIEW_GATE_MAX_HIGH_FINDINGS": "2",
        "REVIEW_COMMAND_ADAPTERS": '[{"name": "lint", "command": ["ruff", "check", "-"]}]',
    }
    review = load_config_from_env(environ=environ).review
    assert review.max_lines == 500
    assert review.max_chunk_lines == 50
    assert review.retry_backoff_seconds == 0.5
    assert review.enable_synthesis is False
    assert review.security_path_patterns == ("*vault*", "*keys*")
    assert review.gate.block_severity is Severity.HIGH
    assert review.gate.max_high_findings == 2
    assert [(c.name, c.command) for c in review.command_adapters] == [("lint", ("ruff", "check", "-"))]


@pytest.mark.parametrize(
    "environ",
    [
        {"REVIEW_MAX_CHUNK_LINES": "0"},
        {"REVIEW_LINE_TOLERANCE": "-1"},
        {"REVIEW_COVERAGE_GAP_THRESHOLD": "120"},
        {"REVIEW_RETRY_COUNT": "many"},
        {"REVIEW_GATE_BLOCK_SEVERITY": "urgent"},
        {"REVIEW_COMMAND_ADAPTERS": "[not json"},
        {"REVIEW_COMMAND_ADAPTERS": '[{"name": "lint", "command": []}]'},
    ],
)
def test_load_config_rejects_invalid_review_values(environ: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        load_config_from_env(environ=environ)


def test_load_config_summary_max_chars() -> None:
    assert load_config_from_env(environ={}).review.summary_max_chars == 600
    review = load_config_from_env(environ={"REVIEW_SUMMARY_MAX_CHARS": "120"}).review
    assert review.summary_max_chars == 120
    with pytest.raises(ValueError):
        load_config_from_env(environ={"REVIEW_SUMMARY_MAX_CHARS": "0"})
