"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量）
- 组装外部依赖（HTTP Client / LLM Client / model service / orchestrator）
- 装配路由（health + reviews）

注意：
- 业务流程不写在这里（由 `review/orchestrator.py` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接）
- 同一个 change_id 的请求经过 `ReviewSupervisor`：新 revision 会取消旧的 in-flight run
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi import HTTPException
from pydantic import BaseModel, Field

from codereview.config import load_config_from_env
from codereview.llm.client import OpenAICompatLLMClient
from codereview.review.errors import MalformedDiffError
from codereview.review.errors import NoAnalysisAvailableError
from codereview.review.errors import RunSupersededError
from codereview.review.model_service import LLMModelService
from codereview.review.models import ReviewResult
from codereview.review.orchestrator import ReviewSupervisor
from codereview.review.orchestrator import build_review_orchestrator

logger = logging.getLogger(__name__)


class ReviewRequest(BaseModel):
    """一次 review 请求：变更标识 + revision + unified diff 文本。"""

    change_id: str = Field(min_length=1)
    revision: str = Field(min_length=1)
    diff: str
    coverage_gap: float | None = Field(default=None, ge=0, le=100)


def build_app(environ: Mapping[str, str] | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：非法会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)

    # 2) LLM 可选：不配置时只跑规则类 adapter
    model_service = None
    if config.llm is not None:
        http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.review.model_timeout_seconds))
        llm_client = OpenAICompatLLMClient(
            api_key=config.llm.api_key,
            base_url=str(config.llm.base_url).rstrip("/"),
            http_client=http_client,
            model=config.llm.model,
        )
        model_service = LLMModelService(llm_client=llm_client)

    orchestrator = build_review_orchestrator(settings=config.review, model_service=model_service)
    supervisor = ReviewSupervisor(orchestrator=orchestrator)

    app = FastAPI(title="Code Review Orchestrator", version="0.1.0")

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    @app.post("/reviews")
    async def create_review(req: ReviewRequest) -> ReviewResult:
        try:
            return await supervisor.submit(
                change_id=req.change_id,
                revision=req.revision,
                diff_text=req.diff,
                coverage_gap=req.coverage_gap,
            )
        except MalformedDiffError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RunSupersededError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except NoAnalysisAvailableError as exc:
            logger.error(f"Review of {req.change_id}@{req.revision} produced no analysis: {exc}")
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    @app.delete("/reviews/{change_id}")
    async def cancel_review(change_id: str) -> dict[str, str]:
        cancelled = supervisor.cancel(change_id)
        return {"status": "cancelled" if cancelled else "idle"}

    return app


# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))


if __name__ == "__main__":
    main()
