"""
Isha - Error Taxonomy
======================
Every failure a pipeline stage can report has its own exception class
with a stable ``kind`` string.  Components raise; the orchestrators let
a failed stage abort only the current request; the HTTP layer turns an
``IshaError`` into ``{"success": false, "error": ..., "kind": ...}``.
"""

from __future__ import annotations


class IshaError(Exception):
    """Base class for all Isha errors."""

    kind: str = "isha_error"

    def __init__(self, message: str, *, query: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.query = query

    def to_dict(self) -> dict[str, str]:
        payload = {"error": self.message, "kind": self.kind}
        if self.query is not None:
            payload["query"] = self.query
        return payload


# ── Input / configuration ──────────────────────────────────────────────

class ConfigError(IshaError):
    kind = "config_error"


class EmptyInputError(IshaError):
    kind = "empty_input"


class EmptyBatchError(IshaError):
    kind = "empty_batch"


class ValidationError(IshaError):
    kind = "validation_error"


class MissingInputError(IshaError):
    kind = "missing_input"


class DimensionMismatchError(IshaError):
    kind = "dimension_mismatch"


class UnsupportedFileTypeError(IshaError):
    kind = "unsupported_file_type"


class NotFoundError(IshaError):
    kind = "not_found"


# ── Bring-up ───────────────────────────────────────────────────────────

class InitializationError(IshaError):
    kind = "initialization_error"


# ── Pipeline stages ────────────────────────────────────────────────────

class EmbeddingError(IshaError):
    kind = "embedding_error"


class QueryError(IshaError):
    kind = "query_error"


class RetrievalError(IshaError):
    kind = "retrieval_error"


class GenerationError(IshaError):
    """LLM call failed.  ``partial_text`` holds text already streamed to the sink."""

    kind = "generation_error"

    def __init__(self, message: str, *, query: str | None = None, partial_text: str = "") -> None:
        super().__init__(message, query=query)
        self.partial_text = partial_text

    def to_dict(self) -> dict[str, str]:
        payload = super().to_dict()
        if self.partial_text:
            payload["partialText"] = self.partial_text
        return payload


# ── Long-running tasks ─────────────────────────────────────────────────

class TriggerError(IshaError):
    kind = "trigger_error"


class TaskTimeoutError(IshaError):
    kind = "timeout"


class TaskFailedError(IshaError):
    kind = "task_failed"


class TaskStateError(IshaError):
    kind = "task_state_error"
