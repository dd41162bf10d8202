"""
Isha - Domain Models
=====================
Typed records passed between the chunker, embedder, vector store and
orchestrators.  Wire-facing models serialise with camelCase aliases
(``chunkIndex``, ``documentsRetrieved`` …) so HTTP payloads keep the
shape existing clients expect, while Python code uses snake_case.

``Task`` is a plain dataclass: it is the only mutable record and its
status may change only through ``Task.transition``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from isha.src.core.errors import TaskStateError

EmbeddingVector = list[float]
ChatMessage = dict[str, str]


class WireModel(BaseModel):
    """Base for models that cross the HTTP boundary."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceType(str, Enum):
    PDF = "pdf"
    MARKDOWN = "markdown"
    TEXT = "text"


# ══════════════════════════════════════════════════════════════════════
#  CHUNKS
# ══════════════════════════════════════════════════════════════════════


class ChunkSpan(WireModel):
    """A chunk as produced by the chunker, before ids/source metadata exist."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    text: str
    start_index: int
    length: int


class TextChunk(WireModel):
    """A stored unit of retrieval.  Immutable once created."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    text: str
    start_index: int = 0
    length: int = 0
    chunk_index: int = 0
    source_file: str = "unknown"
    source_type: SourceType = SourceType.TEXT
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    size_bytes: int = 0
    embedding: EmbeddingVector | None = None

    def to_metadata(self) -> dict[str, str | int]:
        """Metadata columns stored next to the vector."""
        return {
            "source_file": self.source_file,
            "source_type": self.source_type.value,
            "chunk_index": self.chunk_index,
            "uploaded_at": self.uploaded_at.isoformat(),
            "size_bytes": self.size_bytes,
        }


# ══════════════════════════════════════════════════════════════════════
#  RETRIEVAL
# ══════════════════════════════════════════════════════════════════════


class SearchResult(WireModel):
    id: str
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    distance: float

    @property
    def relevance(self) -> int:
        """Relevance percentage shown in the prompt context."""
        return round((1 - self.distance) * 100)


class CollectionInfo(WireModel):
    name: str
    count: int
    url: str


class DocumentSummary(WireModel):
    """All chunks of one source file, as listed by the documents endpoint."""

    filename: str
    file_type: str
    upload_date: str
    file_size: int
    chunk_count: int
    total_text_length: int
    chunk_ids: list[str] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════
#  ANSWERS
# ══════════════════════════════════════════════════════════════════════


class AnswerMetadata(WireModel):
    query: str
    documents_retrieved: int
    model: str


class RAGAnswer(WireModel):
    response: str
    context: str
    sources: list[SearchResult]
    metadata: AnswerMetadata


class RAGStreamResult(RAGAnswer):
    """Delivered once, after the last streamed increment."""


class LLMResponse(WireModel):
    text: str
    model: str


class IngestResult(WireModel):
    success: bool = True
    chunks_added: int
    total_chunks: int


class KnowledgeBaseStats(WireModel):
    document_count: int
    collection_name: str
    vector_store_url: str
    embedding_model: dict[str, Any]
    llm_model: str


# ══════════════════════════════════════════════════════════════════════
#  LONG-RUNNING TASKS
# ══════════════════════════════════════════════════════════════════════


class TaskStatus(str, Enum):
    TRIGGERED = "triggered"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.TIMED_OUT}


@dataclass
class Task:
    task_id: str
    payload: dict[str, Any]
    status: TaskStatus = TaskStatus.TRIGGERED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: str | None = None

    def transition(self, status: TaskStatus, error: str | None = None) -> None:
        if self.status.is_terminal:
            raise TaskStateError(f"Task {self.task_id} is already {self.status.value}; cannot move to {status.value}.")
        self.status = status
        if error is not None:
            self.error = error


class TaskProgress(WireModel):
    task_id: str
    status: TaskStatus
    progress_percent: float


class TriggerResult(WireModel):
    task_id: str
    response: Any = None


class CompletionCheck(WireModel):
    """What a completion source reports for one check of a task."""

    completed: bool = False
    status: TaskStatus = TaskStatus.PROCESSING
    progress_percent: float = 0.0
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskResult(WireModel):
    task_id: str
    status: TaskStatus = TaskStatus.COMPLETED
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskOutcome(WireModel):
    task_id: str
    status: TaskStatus
    result: TaskResult | None = None
    notified: bool = False
    error: str | None = None
