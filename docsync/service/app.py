"""FastAPI application entrypoint for docsync service mode."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import ConfigError
from ..orchestrator import Orchestrator, RunOptions, RunOutcome, SyncError


class SyncRequest(BaseModel):
    path: str
    commit_range: str = "HEAD~1..HEAD"
    dry_run: bool = False
    budget_override: Optional[int] = None
    file_count_ceiling: Optional[int] = None


class DecisionModel(BaseModel):
    doc_id: str
    action: str
    reason: Optional[str] = None
    kinds: List[str] = []


class SyncResponse(BaseModel):
    status: str
    exit_code: int
    summary: Dict[str, Any]
    decisions: List[DecisionModel] = []
    diffs: Dict[str, str] = {}


class HealthResponse(BaseModel):
    status: str


def _default_orchestrator() -> Orchestrator:
    return Orchestrator()


def create_app(
    orchestrator_factory: Callable[[], Orchestrator] = _default_orchestrator,
) -> FastAPI:
    """Create the FastAPI application exposing docsync operations."""

    app = FastAPI(title="DocSync Service", version="1.0.0")

    async def get_orchestrator() -> Orchestrator:
        # A fresh orchestrator per request keeps run state scoped to that request.
        return orchestrator_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/sync", response_model=SyncResponse)
    async def sync_repo(
        payload: SyncRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> SyncResponse:
        options = RunOptions(
            commit_range=payload.commit_range,
            dry_run=payload.dry_run,
            budget_override=payload.budget_override,
            file_count_ceiling=payload.file_count_ceiling,
        )

        def _run_sync() -> RunOutcome:
            return orchestrator.run(payload.path, options)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:  # pragma: no cover
            outcome = _run_sync()
        else:
            outcome = await loop.run_in_executor(None, _run_sync)
        return SyncResponse(**outcome.to_dict())

    @app.exception_handler(ConfigError)
    async def config_error_handler(_: Any, exc: ConfigError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(SyncError)
    async def sync_error_handler(_: Any, exc: SyncError) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={"detail": str(exc), "summary": exc.summary.to_dict()},
        )

    return app


def run_service(
    host: str = "127.0.0.1", port: int = 8000
) -> None:  # pragma: no cover - integration path
    import uvicorn

    app = create_app()
    uvicorn.run(app, host=host, port=port)
