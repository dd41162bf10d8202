"""
Isha - RAG Engine
==================
Orchestrates the Retrieval-Augmented Generation pipeline over three
injected collaborators: an embedder, a vector store and an LLM client.

Architecture (OOP)
------------------
``RAGOrchestrator``
    Per-instance lifecycle ``uninitialized → initializing → ready``.
    ``initialize()`` brings the three collaborators up concurrently; if
    any of them fails the orchestrator drops back to ``uninitialized``
    and the next call retries.

    Query flow:
        1. Embed the query          → ``EmbeddingError``
        2. Vector search (top-k)    → ``RetrievalError``
        3. Assemble numbered context with relevance percentages
        4. Build prompt → system + single user message
        5. Call the LLM (batch or streaming) → ``GenerationError``
        6. Return answer + ranked sources + metadata

    Ingest flow:
        1. Batch-embed chunk texts (per-item failures → ``None``)
        2. Drop chunks without an embedding
        3. Add survivors to the vector store
        4. Report ``chunks_added`` vs ``total_chunks``

Concurrency
-----------
No request-scoped state lives on the orchestrator, so one instance
serves any number of concurrent queries and ingests.  Blocking LanceDB
calls run in worker threads via ``asyncio.to_thread``.

Usage:
    rag = RAGOrchestrator(llm=LLMClient(), embedder=HashFeatureEmbedder(), vector_store=IshaVectorStore())
    answer = await rag.process_query("What does the handbook say about leave?")
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum

from isha.config.prompt_templates import CONTEXT_ENTRY_TEMPLATE, CONTEXT_HEADER, NO_CONTEXT_SENTINEL, RAG_PROMPT_TEMPLATE, SYSTEM_PROMPT
from isha.config.settings import Settings, settings as default_settings
from isha.src.core.chunker import TextChunker
from isha.src.core.embedder import HashFeatureEmbedder
from isha.src.core.errors import EmbeddingError, EmptyInputError, GenerationError, InitializationError, IshaError, NotFoundError, RetrievalError
from isha.src.core.llm_client import LLMClient
from isha.src.core.models import AnswerMetadata, ChatMessage, DocumentSummary, IngestResult, KnowledgeBaseStats, RAGAnswer, RAGStreamResult, SearchResult, SourceType, TextChunk
from isha.src.database.vector_store import IshaVectorStore
from isha.src.utils.callbacks import Sink
from isha.src.utils.logger import get_logger

logger = get_logger(__name__)


class OrchestratorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class RAGOrchestrator:
    """
    Parameters
    ----------
    llm
        ``LLMClient`` used for generation.
    embedder
        Embedder exposing ``initialize``, ``embed`` and ``embed_batch``.
    vector_store
        ``IshaVectorStore`` (or compatible) holding the chunks.
    chunker
        Optional ``TextChunker`` used by ``ingest_text``/``replace_document``.
    system_prompt
        Overrides the default system instruction.
    """

    __slots__ = ("_llm", "_embedder", "_store", "_chunker", "_settings", "_system_prompt", "state", "_init_lock")

    def __init__(self, llm: LLMClient, embedder: HashFeatureEmbedder, vector_store: IshaVectorStore, chunker: TextChunker | None = None, settings: Settings | None = None, system_prompt: str = SYSTEM_PROMPT) -> None:
        self._llm = llm
        self._embedder = embedder
        self._store = vector_store
        self._settings = settings or default_settings
        self._chunker = chunker or TextChunker(settings=self._settings)
        self._system_prompt = system_prompt
        self.state = OrchestratorState.UNINITIALIZED
        self._init_lock = asyncio.Lock()

    # ══════════════════════════════════════════════════════════════════
    #  LIFECYCLE
    # ══════════════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """
        Bring up LLM, embedder and vector store concurrently.

        Raises
        ------
        InitializationError
            If any collaborator fails; state returns to ``uninitialized``.
        """
        async with self._init_lock:
            if self.state is OrchestratorState.READY:
                return

            self.state = OrchestratorState.INITIALIZING
            t_start = time.perf_counter()
            logger.info("[RAG] Initializing components ...")

            results = await asyncio.gather(
                self._llm.initialize(),
                asyncio.to_thread(self._embedder.initialize),
                asyncio.to_thread(self._store.initialize),
                return_exceptions=True,
            )
            failures = [(name, exc) for name, exc in zip(("llm", "embedder", "vector_store"), results) if isinstance(exc, BaseException)]

            if failures:
                self.state = OrchestratorState.UNINITIALIZED
                details = "; ".join(f"{name}: {exc}" for name, exc in failures)
                logger.error("[RAG] Initialization failed — %s", details)
                raise InitializationError(f"Failed to initialize one or more RAG components ({details}).") from failures[0][1]

            self.state = OrchestratorState.READY
            logger.info("[RAG] Initialized in %.1fms", (time.perf_counter() - t_start) * 1000)


    async def _ensure_ready(self) -> None:
        if self.state is not OrchestratorState.READY:
            await self.initialize()


    async def _ensure_storage(self) -> None:
        """Bring up only the embedder and store; ingest and management never need the LLM."""
        if self.state is OrchestratorState.READY:
            return
        try:
            await asyncio.to_thread(self._embedder.initialize)
            await asyncio.to_thread(self._store.initialize)
        except Exception as exc:
            raise InitializationError(f"Failed to initialize storage components: {exc}") from exc

    # ══════════════════════════════════════════════════════════════════
    #  QUERY
    # ══════════════════════════════════════════════════════════════════

    async def _retrieve(self, query: str, k: int) -> list[SearchResult]:
        """Steps 1–2: embed the query and search the store."""
        if not isinstance(query, str) or not query.strip():
            raise EmptyInputError("Invalid query provided.", query=query if isinstance(query, str) else None)

        await self._ensure_ready()

        try:
            embedding = self._embedder.embed(query)
        except IshaError as exc:
            raise EmbeddingError(f"Failed to generate query embedding: {exc}", query=query) from exc

        t_search = time.perf_counter()
        try:
            results = await asyncio.to_thread(self._store.search, embedding, k)
        except Exception as exc:
            logger.error("[RAG] Search failed: %s", exc)
            raise RetrievalError(f"Failed to search documents: {exc}", query=query) from exc

        logger.info("[RAG] Retrieved %d document(s) in %.1fms", len(results), (time.perf_counter() - t_search) * 1000)
        return results


    async def process_query(self, query: str, k: int | None = None) -> RAGAnswer:
        """Answer *query* from the top-*k* retrieved chunks (non-streamed)."""
        t_start = time.perf_counter()
        k = k or self._settings.SEARCH_RESULTS_LIMIT
        logger.info("[RAG] Processing query: '%s'", query[:80] if isinstance(query, str) else query)

        results = await self._retrieve(query, k)
        context = self.prepare_context(results)
        messages = self._build_messages(query, context)

        try:
            response = await self._llm.generate(messages, self._system_prompt)
        except GenerationError as exc:
            exc.query = query
            raise

        logger.info("[RAG] Pipeline total: %.1fms", (time.perf_counter() - t_start) * 1000)
        return RAGAnswer(
            response=response.text,
            context=context,
            sources=results,
            metadata=AnswerMetadata(query=query, documents_retrieved=len(results), model=response.model),
        )


    async def process_query_stream(self, query: str, on_chunk: Sink[str], k: int | None = None) -> RAGStreamResult:
        """
        Streamed variant of ``process_query``.

        Text increments go to *on_chunk* as they arrive; the returned
        ``RAGStreamResult`` (sources + metadata) is the completion signal.
        A mid-stream failure raises ``GenerationError`` after the partial
        text has already reached the sink.
        """
        k = k or self._settings.SEARCH_RESULTS_LIMIT
        logger.info("[RAG] Processing streaming query: '%s'", query[:80] if isinstance(query, str) else query)

        results = await self._retrieve(query, k)
        context = self.prepare_context(results)
        messages = self._build_messages(query, context)

        try:
            response = await self._llm.stream_generate(messages, self._system_prompt, on_chunk)
        except GenerationError as exc:
            exc.query = query
            raise

        return RAGStreamResult(
            response=response.text,
            context=context,
            sources=results,
            metadata=AnswerMetadata(query=query, documents_retrieved=len(results), model=response.model),
        )

    # ══════════════════════════════════════════════════════════════════
    #  PROMPT FORMATTING
    # ══════════════════════════════════════════════════════════════════

    @staticmethod
    def prepare_context(results: list[SearchResult]) -> str:
        """Format search results into a numbered context block with relevance and source."""
        if not results:
            return NO_CONTEXT_SENTINEL

        blocks: list[str] = [CONTEXT_HEADER]
        for i, result in enumerate(results, 1):
            filename = result.metadata.get("source_file")
            source = f", from: {filename}" if filename else ""
            blocks.append(CONTEXT_ENTRY_TEMPLATE.format(index=i, relevance=result.relevance, source=source, text=result.text))
        return "".join(blocks)


    @staticmethod
    def build_prompt(query: str, context: str) -> str:
        return RAG_PROMPT_TEMPLATE.format(context=context, question=query)


    def _build_messages(self, query: str, context: str) -> list[ChatMessage]:
        return [{"role": "user", "content": self.build_prompt(query, context)}]

    # ══════════════════════════════════════════════════════════════════
    #  INGEST
    # ══════════════════════════════════════════════════════════════════

    async def add_document_to_knowledge_base(self, chunks: list[TextChunk]) -> IngestResult:
        """
        Embed and store *chunks*.  Chunks whose embedding fails are
        dropped; the loss shows up as ``chunks_added < total_chunks``.
        """
        if not chunks:
            raise EmptyInputError("Invalid document chunks provided.")

        await self._ensure_storage()
        t_start = time.perf_counter()
        logger.info("[RAG] Adding %d document chunk(s) to knowledge base ...", len(chunks))

        try:
            embeddings = self._embedder.embed_batch([chunk.text for chunk in chunks])
        except IshaError as exc:
            raise EmbeddingError(f"Failed to generate embeddings: {exc}") from exc

        items = [
            {"id": chunk.id, "text": chunk.text, "embedding": embedding, "metadata": chunk.to_metadata()}
            for chunk, embedding in zip(chunks, embeddings)
            if embedding is not None
        ]
        dropped = len(chunks) - len(items)
        if dropped:
            logger.warning("[RAG] %d chunk(s) dropped after embedding failure.", dropped)

        added = await asyncio.to_thread(self._store.add_documents, items)

        logger.info("[RAG] Added %d/%d chunk(s) in %.1fms", added, len(chunks), (time.perf_counter() - t_start) * 1000)
        return IngestResult(success=True, chunks_added=added, total_chunks=len(chunks))


    async def ingest_text(self, text: str, source_file: str, source_type: SourceType = SourceType.TEXT, size_bytes: int | None = None) -> tuple[list[TextChunk], IngestResult]:
        """Chunk *text* as one document and add it to the knowledge base."""
        chunks = self._chunker.chunk_document(text, source_file=source_file, source_type=source_type, size_bytes=size_bytes)
        result = await self.add_document_to_knowledge_base(chunks)
        return chunks, result

    # ══════════════════════════════════════════════════════════════════
    #  KNOWLEDGE BASE MANAGEMENT
    # ══════════════════════════════════════════════════════════════════

    async def get_knowledge_base_stats(self) -> KnowledgeBaseStats:
        await self._ensure_storage()
        info = await asyncio.to_thread(self._store.get_collection_info)
        return KnowledgeBaseStats(
            document_count=info.count,
            collection_name=info.name,
            vector_store_url=info.url,
            embedding_model=self._embedder.get_model_info(),
            llm_model=self._llm.model,
        )


    async def clear_knowledge_base(self) -> None:
        await self._ensure_storage()
        await asyncio.to_thread(self._store.reset_collection)
        logger.warning("[RAG] Knowledge base cleared.")


    async def list_documents(self) -> list[DocumentSummary]:
        await self._ensure_storage()
        return await asyncio.to_thread(self._store.list_documents)


    async def delete_document(self, source_file: str) -> int:
        """Delete every chunk of *source_file*.  Returns the number removed."""
        await self._ensure_storage()
        return await asyncio.to_thread(self._store.delete_by_source, source_file)


    async def replace_document(self, source_file: str, new_text: str, new_source_file: str | None = None) -> tuple[int, IngestResult]:
        """
        Replace a stored document's text: delete its chunks, then chunk
        and ingest *new_text* (optionally under a new name).

        Returns
        -------
        tuple[int, IngestResult]
            Chunks deleted, and the ingest result for the new text.

        Raises
        ------
        NotFoundError
            If no chunk of *source_file* is stored.
        """
        target = new_source_file or source_file
        chunks = self._chunker.chunk_document(new_text, source_file=target, source_type=SourceType.TEXT)

        deleted = await self.delete_document(source_file)
        if not deleted:
            raise NotFoundError(f"No documents found with filename '{source_file}'.")
        result = await self.add_document_to_knowledge_base(chunks)
        logger.info("[RAG] Replaced '%s' → '%s' (%d deleted, %d added).", source_file, target, deleted, result.chunks_added)
        return deleted, result


    def __repr__(self) -> str:
        return f"RAGOrchestrator(state='{self.state.value}', llm={self._llm!r}, store={self._store!r})"
