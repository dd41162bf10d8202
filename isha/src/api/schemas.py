"""Request bodies accepted by the HTTP routes."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from isha.src.core.models import SourceType, TaskStatus, WireModel


class ChatRequest(WireModel):
    message: str | None = None
    task_type: str | None = None
    stream: bool = False
    k: int | None = Field(default=None, gt=0)


class IngestDocument(WireModel):
    """A pre-chunked document posted to ``/ingest``."""

    id: str | None = None
    text: str | None = None
    source_file: str = "unknown"
    source_type: SourceType = SourceType.TEXT
    chunk_index: int = 0
    size_bytes: int = 0


class IngestData(WireModel):
    documents: list[IngestDocument] = Field(default_factory=list)


class IngestRequest(WireModel):
    action: str | None = None
    data: IngestData = Field(default_factory=IngestData)


class DeleteDocumentRequest(WireModel):
    filename: str | None = None


class UpdateDocumentRequest(WireModel):
    filename: str | None = None
    new_text: str | None = None
    new_filename: str | None = None


class CompletionReport(WireModel):
    """Body the workflow engine posts to ``/task-complete``."""

    task_id: str | None = None
    status: TaskStatus = TaskStatus.COMPLETED
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    progress_percent: float | None = None
    timestamp: str | None = None
