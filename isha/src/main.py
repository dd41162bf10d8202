"""
Isha - Application Entry Point
===============================
FastAPI application factory.

``create_app()`` wires the components explicitly: LLM client, embedder,
vector store, RAG orchestrator and task orchestrator are built in the
lifespan handler (or injected by the caller) and stored on ``app.state``.
Route handlers reach them through the dependencies in
``isha.src.api.routes``; there are no module-level client singletons.

If a collaborator is down at startup the app still starts; the RAG
orchestrator retries initialisation on the next request.

Usage:
    uvicorn isha.src.main:app --reload
    python -m isha.src.main
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from isha.config.settings import Settings, settings as default_settings
from isha.src.api.routes import router
from isha.src.core.embedder import HashFeatureEmbedder
from isha.src.core.errors import (
    ConfigError,
    DimensionMismatchError,
    EmptyBatchError,
    EmptyInputError,
    IshaError,
    MissingInputError,
    NotFoundError,
    TaskTimeoutError,
    TriggerError,
    UnsupportedFileTypeError,
    ValidationError,
)
from isha.src.core.llm_client import LLMClient
from isha.src.core.rag_engine import RAGOrchestrator
from isha.src.core.task_orchestrator import TaskOrchestrator
from isha.src.database.vector_store import IshaVectorStore
from isha.src.utils.logger import get_logger, quiet_third_party

logger = get_logger(__name__)

# ── Error kind → HTTP status ──────────────────────────────────────────
_STATUS_BY_ERROR: list[tuple[type[IshaError], int]] = [
    (NotFoundError, 404),
    (UnsupportedFileTypeError, 400),
    (EmptyInputError, 400),
    (EmptyBatchError, 400),
    (ValidationError, 400),
    (MissingInputError, 400),
    (DimensionMismatchError, 400),
    (ConfigError, 400),
    (TriggerError, 502),
    (TaskTimeoutError, 504),
]


def _status_for(exc: IshaError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status
    return 500


async def _isha_error_handler(request: Request, exc: IshaError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"success": False, **exc.to_dict()})


def create_app(settings: Settings | None = None, *, llm: LLMClient | None = None, embedder: HashFeatureEmbedder | None = None, vector_store: IshaVectorStore | None = None, tasks: TaskOrchestrator | None = None) -> FastAPI:
    """Build the FastAPI app.  Any component not given is built from *settings*."""
    cfg = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        quiet_third_party()
        logger.info("Starting Isha (env=%s, provider=%s, model=%s) ...", cfg.ENV, cfg.LLM_PROVIDER, cfg.LLM_MODEL)

        http_client: httpx.AsyncClient | None = None
        task_orchestrator = tasks
        if task_orchestrator is None:
            http_client = httpx.AsyncClient(timeout=cfg.WEBHOOK_TIMEOUT_SECONDS)
            task_orchestrator = TaskOrchestrator(settings=cfg, http_client=http_client)

        app.state.settings = cfg
        app.state.llm = llm or LLMClient(settings=cfg)
        app.state.embedder = embedder or HashFeatureEmbedder(settings=cfg)
        app.state.vector_store = vector_store or IshaVectorStore(settings=cfg)
        app.state.rag = RAGOrchestrator(llm=app.state.llm, embedder=app.state.embedder, vector_store=app.state.vector_store, settings=cfg)
        app.state.tasks = task_orchestrator

        try:
            await app.state.rag.initialize()
        except IshaError as exc:
            logger.warning("RAG components not ready at startup; will retry on first request. (%s)", exc)

        yield

        logger.info("Shutting down background tasks ...")
        await task_orchestrator.shutdown()
        if http_client is not None:
            await http_client.aclose()
        logger.info("Application shutdown complete")

    app = FastAPI(title="Isha", description="Local RAG chatbot with workflow-engine task offloading.", lifespan=lifespan)
    app.add_exception_handler(IshaError, _isha_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("isha.src.main:app", host="0.0.0.0", port=8000, log_level="info")
