"""Shared fixtures: isolated settings, a real LanceDB on tmp_path, fake chat models."""

from __future__ import annotations

from typing import Any, AsyncIterator

import httpx
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessageChunk

from isha.config.settings import Settings
from isha.src.core.chunker import TextChunker
from isha.src.core.embedder import HashFeatureEmbedder
from isha.src.core.errors import EmbeddingError
from isha.src.core.llm_client import LLMClient
from isha.src.core.rag_engine import RAGOrchestrator
from isha.src.database.vector_store import IshaVectorStore

FAKE_ANSWER = "Paris is the capital of France."

TRIGGER_URL = "http://n8n.local/webhook/trigger"
COMPLETE_URL = "http://flowise.local/webhook/complete"


class BrokenStreamModel:
    """Chat-model stand-in whose stream dies after two increments."""

    model = "broken-model"

    async def ainvoke(self, messages: Any) -> Any:
        raise RuntimeError("model crashed")

    async def astream(self, messages: Any) -> AsyncIterator[AIMessageChunk]:
        yield AIMessageChunk(content="Hel")
        yield AIMessageChunk(content="lo")
        raise RuntimeError("connection reset")


class FlakyEmbedder(HashFeatureEmbedder):
    """Fails on any text containing ``FAIL``."""

    def embed(self, text: str) -> list[float]:
        if isinstance(text, str) and "FAIL" in text:
            raise EmbeddingError("simulated embedding failure")
        return super().embed(text)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        LANCEDB_URI=str(tmp_path / "lancedb"),
        LANCEDB_TABLE_NAME="test_documents",
        DATA_RAW_DIR=tmp_path / "raw",
        DATA_PROCESSED_DIR=tmp_path / "processed",
        CHUNK_SIZE=200,
        CHUNK_OVERLAP=40,
        N8N_WEBHOOK_URL=TRIGGER_URL,
        FLOWISE_WEBHOOK_URL=COMPLETE_URL,
        TASK_POLL_INTERVAL_MS=20,
        TASK_TIMEOUT_MS=2_000,
    )


@pytest.fixture
def embedder(test_settings) -> HashFeatureEmbedder:
    return HashFeatureEmbedder(settings=test_settings)


@pytest.fixture
def store(test_settings) -> IshaVectorStore:
    return IshaVectorStore(settings=test_settings)


@pytest.fixture
def llm(test_settings) -> LLMClient:
    return LLMClient(settings=test_settings, chat_model=FakeListChatModel(responses=[FAKE_ANSWER]))


@pytest.fixture
def rag(llm, embedder, store, test_settings) -> RAGOrchestrator:
    return RAGOrchestrator(llm=llm, embedder=embedder, vector_store=store, chunker=TextChunker(settings=test_settings), settings=test_settings)


@pytest.fixture
def webhook_log() -> list[httpx.Request]:
    return []


@pytest.fixture
def mock_http(webhook_log) -> httpx.AsyncClient:
    """Accepts every webhook call and records it."""

    def handler(request: httpx.Request) -> httpx.Response:
        webhook_log.append(request)
        return httpx.Response(200, json={"ok": True})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
