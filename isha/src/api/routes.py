"""
Isha - API Routes
==================
Thin controllers over the two orchestrators.  Each handler validates the
request, delegates to ``RAGOrchestrator`` / ``TaskOrchestrator`` (found
on ``app.state``), and shapes the JSON response.  ``IshaError`` raised
anywhere below is turned into ``{"success": false, "error", "kind"}`` by
the exception handler registered in ``isha.src.main``.

Endpoints
---------
    GET    /health
    POST   /chat                 (stream → SSE; taskType "long-running" → background task)
    GET    /upload     POST /upload
    GET    /ingest     POST /ingest
    GET    /documents  DELETE /documents  PUT /documents
    GET    /trigger-task   POST /trigger-task
    GET    /task-complete  POST /task-complete
    GET    /tasks/{task_id}   DELETE /tasks/{task_id}
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import StreamingResponse

from isha.config.settings import Settings
from isha.src.api.schemas import ChatRequest, CompletionReport, DeleteDocumentRequest, IngestRequest, UpdateDocumentRequest
from isha.src.core.errors import EmptyInputError, IshaError, NotFoundError, ValidationError
from isha.src.core.models import TaskProgress, TextChunk
from isha.src.core.rag_engine import RAGOrchestrator
from isha.src.core.task_orchestrator import TaskOrchestrator
from isha.src.utils.logger import get_logger
from isha.src.utils.text_utils import detect_source_type, extract_text, get_supported_file_types

logger = get_logger(__name__)

router = APIRouter()

_INGEST_ACTIONS = ["add_documents", "clear_knowledge_base", "get_stats"]


# ── Dependencies ───────────────────────────────────────────────────────

def get_rag(request: Request) -> RAGOrchestrator:
    return request.app.state.rag


def get_tasks(request: Request) -> TaskOrchestrator:
    return request.app.state.tasks


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _dump(model: Any) -> Any:
    return model.model_dump(by_alias=True, mode="json")


# ══════════════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════════════

@router.get("/health")
async def health(request: Request, rag: RAGOrchestrator = Depends(get_rag), tasks: TaskOrchestrator = Depends(get_tasks)) -> dict[str, Any]:
    llm = request.app.state.llm
    llm_ok, store_ok, models = await asyncio.gather(llm.check_health(), asyncio.to_thread(request.app.state.vector_store.check_health), llm.list_models())
    return {
        "status": "ok" if llm_ok and store_ok else "degraded",
        "state": rag.state.value,
        "llm": llm_ok,
        "model": llm.model,
        "availableModels": models,
        "vectorStore": store_ok,
        "webhooks": tasks.get_webhook_config(),
    }


# ══════════════════════════════════════════════════════════════════════
#  CHAT
# ══════════════════════════════════════════════════════════════════════

@router.post("/chat")
async def chat(body: ChatRequest, rag: RAGOrchestrator = Depends(get_rag), tasks: TaskOrchestrator = Depends(get_tasks)) -> Any:
    if not body.message or not body.message.strip():
        raise EmptyInputError("Message is required and must be a string")

    if body.task_type == "long-running":
        return await _start_long_running_task(body.message, tasks)

    if body.stream:
        return StreamingResponse(
            _chat_events(rag, body.message, body.k),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    answer = await rag.process_query(body.message, k=body.k)
    return {"success": True, **_dump(answer)}


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def _chat_events(rag: RAGOrchestrator, message: str, k: int | None) -> AsyncIterator[str]:
    """Run the streamed query in its own task and relay increments as SSE ``data:`` frames."""
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def _produce() -> Any:
        try:
            return await rag.process_query_stream(message, queue.put_nowait, k=k)
        finally:
            queue.put_nowait(None)

    job = asyncio.create_task(_produce())
    try:
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield _sse({"chunk": chunk, "type": "chunk"})

        try:
            result = await job
        except IshaError as exc:
            logger.error("Streaming chat failed: %s", exc)
            yield _sse({"type": "error", **exc.to_dict()})
            return

        payload = _dump(result)
        yield _sse({"type": "complete", "sources": payload["sources"], "metadata": payload["metadata"]})
    finally:
        if not job.done():
            job.cancel()


async def _start_long_running_task(message: str, tasks: TaskOrchestrator) -> dict[str, Any]:
    payload = {"message": message, "timestamp": datetime.now(timezone.utc).isoformat(), "type": "long-running-task"}

    def _log_progress(progress: TaskProgress) -> None:
        logger.info("Task %s progress: %s %.0f%%", progress.task_id, progress.status.value, progress.progress_percent)

    handle = await tasks.process_long_running_task(payload, on_progress=_log_progress)
    return {"success": True, "message": "Processing started...", "taskId": handle.task_id, "status": "processing"}


# ══════════════════════════════════════════════════════════════════════
#  UPLOAD
# ══════════════════════════════════════════════════════════════════════

@router.post("/upload")
async def upload(file: UploadFile | None = File(default=None), rag: RAGOrchestrator = Depends(get_rag), cfg: Settings = Depends(get_settings)) -> dict[str, Any]:
    if file is None or not file.filename:
        raise ValidationError("No file provided")

    source_type = detect_source_type(file.filename)
    data = await file.read()
    if len(data) > cfg.MAX_FILE_SIZE:
        raise ValidationError(f"File too large: {len(data)} bytes exceeds the {cfg.MAX_FILE_SIZE} byte limit")

    text = await asyncio.to_thread(extract_text, data, source_type)
    chunks, result = await rag.ingest_text(text, source_file=file.filename, source_type=source_type, size_bytes=len(data))

    return {
        "success": True,
        "message": "Document uploaded and processed successfully",
        "filename": file.filename,
        "fileType": source_type.value,
        "fileSize": len(data),
        "chunksProcessed": result.chunks_added,
        "totalChunks": result.total_chunks,
        "metadata": {"textLength": len(text), "uploadDate": chunks[0].uploaded_at.isoformat()},
    }


@router.get("/upload")
async def upload_config(cfg: Settings = Depends(get_settings)) -> dict[str, Any]:
    return {
        "supportedTypes": get_supported_file_types(),
        "maxFileSize": cfg.MAX_FILE_SIZE,
        "maxFileSizeMB": round(cfg.MAX_FILE_SIZE / 1024 / 1024),
    }


# ══════════════════════════════════════════════════════════════════════
#  INGEST
# ══════════════════════════════════════════════════════════════════════

@router.post("/ingest")
async def ingest(body: IngestRequest, rag: RAGOrchestrator = Depends(get_rag)) -> dict[str, Any]:
    if body.action == "add_documents":
        documents = body.data.documents
        if not documents:
            raise ValidationError("Documents array is required and must not be empty")
        if any(not doc.id or not doc.text for doc in documents):
            raise ValidationError("Each document must have id and text fields")

        chunks = [
            TextChunk(id=doc.id, text=doc.text, length=len(doc.text), chunk_index=doc.chunk_index, source_file=doc.source_file, source_type=doc.source_type, size_bytes=doc.size_bytes)
            for doc in documents
        ]
        result = await rag.add_document_to_knowledge_base(chunks)
        return {"success": True, "message": "Documents added successfully", **_dump(result)}

    if body.action == "clear_knowledge_base":
        await rag.clear_knowledge_base()
        return {"success": True, "message": "Knowledge base cleared successfully"}

    if body.action == "get_stats":
        return {"success": True, "stats": _dump(await rag.get_knowledge_base_stats())}

    raise ValidationError(f"Invalid action; valid actions: {', '.join(_INGEST_ACTIONS)}")


@router.get("/ingest")
async def ingest_stats(rag: RAGOrchestrator = Depends(get_rag)) -> dict[str, Any]:
    return {"success": True, "stats": _dump(await rag.get_knowledge_base_stats())}


# ══════════════════════════════════════════════════════════════════════
#  DOCUMENTS
# ══════════════════════════════════════════════════════════════════════

@router.get("/documents")
async def list_documents(rag: RAGOrchestrator = Depends(get_rag)) -> dict[str, Any]:
    stats = await rag.get_knowledge_base_stats()
    documents = await rag.list_documents()
    return {
        "success": True,
        "collection": {"name": stats.collection_name, "count": stats.document_count, "url": stats.vector_store_url},
        "documents": [_dump(doc) for doc in documents],
        "total": len(documents),
    }


@router.delete("/documents")
async def delete_document(body: DeleteDocumentRequest, rag: RAGOrchestrator = Depends(get_rag)) -> dict[str, Any]:
    if not body.filename:
        raise ValidationError("Filename is required")

    deleted = await rag.delete_document(body.filename)
    if not deleted:
        raise NotFoundError("No documents found with that filename")

    return {
        "success": True,
        "message": f'Deleted {deleted} document chunks for "{body.filename}"',
        "deletedCount": deleted,
        "filename": body.filename,
    }


@router.put("/documents")
async def update_document(body: UpdateDocumentRequest, rag: RAGOrchestrator = Depends(get_rag)) -> dict[str, Any]:
    if not body.filename or not body.new_text:
        raise ValidationError("Filename and new text are required")

    deleted, result = await rag.replace_document(body.filename, body.new_text, body.new_filename)
    return {
        "success": True,
        "message": "Document updated successfully",
        "filename": body.new_filename or body.filename,
        "deletedCount": deleted,
        "chunksAdded": result.chunks_added,
    }


# ══════════════════════════════════════════════════════════════════════
#  WORKFLOW WEBHOOKS
# ══════════════════════════════════════════════════════════════════════

@router.post("/trigger-task")
async def trigger_task(body: dict[str, Any], tasks: TaskOrchestrator = Depends(get_tasks)) -> dict[str, Any]:
    if not body.get("message"):
        raise ValidationError("Task data with message is required")

    result = await tasks.trigger_task(body)
    return {"success": True, "message": "Task triggered successfully", "taskId": result.task_id, "response": result.response}


@router.get("/trigger-task")
async def trigger_task_config(tasks: TaskOrchestrator = Depends(get_tasks)) -> dict[str, Any]:
    return {"success": True, "config": tasks.get_webhook_config(), "health": await tasks.check_webhook_health()}


@router.post("/task-complete")
async def task_complete(body: CompletionReport, tasks: TaskOrchestrator = Depends(get_tasks)) -> dict[str, Any]:
    if not body.task_id:
        raise ValidationError("Task result with taskId is required")

    tasks.registry.report(body.task_id, status=body.status, data=body.data, metadata=body.metadata, progress_percent=body.progress_percent)
    return {"success": True, "message": "Task completion received successfully", "taskId": body.task_id}


@router.get("/task-complete")
async def task_complete_info() -> dict[str, Any]:
    return {
        "success": True,
        "endpoint": "/task-complete",
        "description": "Webhook endpoint for receiving task completion notifications",
        "expectedPayload": {
            "taskId": "string",
            "status": "string (completed|failed|processing)",
            "data": "object",
            "metadata": "object (optional)",
            "progressPercent": "number (optional)",
            "timestamp": "string (ISO date)",
        },
    }


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, tasks: TaskOrchestrator = Depends(get_tasks)) -> dict[str, Any]:
    handle = tasks.get_task(task_id)
    if handle is None:
        raise NotFoundError(f"Unknown task: {task_id}")

    outcome = handle.outcome()
    return {
        "success": True,
        "taskId": task_id,
        "status": handle.task.status.value,
        "createdAt": handle.task.created_at.isoformat(),
        "error": handle.task.error,
        "outcome": _dump(outcome) if outcome is not None else None,
    }


@router.delete("/tasks/{task_id}")
async def cancel_task(task_id: str, tasks: TaskOrchestrator = Depends(get_tasks)) -> dict[str, Any]:
    if tasks.get_task(task_id) is None:
        raise NotFoundError(f"Unknown task: {task_id}")
    return {"success": True, "taskId": task_id, "cancelled": tasks.cancel_task(task_id)}
