"""
Isha - LLMClient
=================
Typed wrapper over a LangChain chat model.

``LLM_PROVIDER`` selects the backend:
  • ``"ollama"`` → ``ChatOllama`` against ``OLLAMA_BASE_URL`` (default).
  • ``"gemini"`` → ``ChatGoogleGenerativeAI`` with ``GOOGLE_API_KEY``.

Any other ``BaseChatModel`` can be injected directly, which is how the
tests run without a model server.  Messages are plain
``{"role", "content"}`` dicts; the optional system prompt is prepended
as a ``SystemMessage``.

Streaming pushes every text increment to the caller's sink as soon as it
arrives.  If the stream breaks, ``GenerationError.partial_text`` carries
everything that was already delivered.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from isha.config.settings import Settings, settings as default_settings
from isha.src.core.errors import GenerationError, InitializationError
from isha.src.core.models import ChatMessage, LLMResponse
from isha.src.utils.callbacks import Sink, maybe_await
from isha.src.utils.logger import get_logger

logger = get_logger(__name__)

_ROLE_TO_MESSAGE = {"system": SystemMessage, "user": HumanMessage, "human": HumanMessage, "assistant": AIMessage, "ai": AIMessage}
_HEALTH_TIMEOUT_SECONDS = 5.0


def _content_text(content: Any) -> str:
    """Flatten LangChain message content (str or list of parts) into text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(part if isinstance(part, str) else str(part.get("text", "")) for part in content)
    return str(content or "")


def to_langchain_messages(messages: list[ChatMessage], system_prompt: str | None = None) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    if system_prompt:
        converted.append(SystemMessage(content=system_prompt))
    for msg in messages:
        role = msg.get("role", "user")
        message_cls = _ROLE_TO_MESSAGE.get(role)
        if message_cls is None:
            raise ValueError(f"Unsupported message role: {role!r}")
        converted.append(message_cls(content=msg.get("content", "")))
    return converted


class LLMClient:
    """
    Parameters
    ----------
    settings
        Configuration; defaults to the module-level ``settings``.
    chat_model
        Pre-built LangChain chat model.  When given, no provider model is
        built and no server health probe is made on ``initialize()``.
    """

    __slots__ = ("_settings", "_llm", "model", "_health_url", "is_initialized")

    def __init__(self, settings: Settings | None = None, chat_model: BaseChatModel | None = None) -> None:
        self._settings = settings or default_settings
        self.model: str = getattr(chat_model, "model", None) or self._settings.LLM_MODEL
        self._llm = chat_model
        self._health_url: str | None = None
        if chat_model is None and self._settings.LLM_PROVIDER == "ollama":
            self._health_url = f"{self._settings.OLLAMA_BASE_URL.rstrip('/')}/api/tags"
        self.is_initialized = False


    @staticmethod
    def _build_chat_model(cfg: Settings) -> BaseChatModel:
        """Initialise the provider's chat model via LangChain."""
        if cfg.LLM_PROVIDER == "gemini":
            if cfg.GOOGLE_API_KEY is None:
                raise InitializationError("GOOGLE_API_KEY is required when LLM_PROVIDER='gemini'.")
            from langchain_google_genai import ChatGoogleGenerativeAI

            llm = ChatGoogleGenerativeAI(model=cfg.LLM_MODEL, temperature=cfg.LLM_TEMPERATURE, google_api_key=cfg.GOOGLE_API_KEY.get_secret_value())
        else:
            from langchain_ollama import ChatOllama

            llm = ChatOllama(model=cfg.LLM_MODEL, base_url=cfg.OLLAMA_BASE_URL, temperature=cfg.LLM_TEMPERATURE)

        logger.info("LLM initialised: %s/%s (temperature=%.1f)", cfg.LLM_PROVIDER, cfg.LLM_MODEL, cfg.LLM_TEMPERATURE)
        return llm


    async def initialize(self) -> None:
        """Build the chat model and, for Ollama, confirm the server answers."""
        if self.is_initialized:
            return

        if self._health_url is not None and not await self.check_health():
            raise InitializationError(f"Ollama is not reachable at {self._settings.OLLAMA_BASE_URL}.")

        if self._llm is None:
            self._llm = self._build_chat_model(self._settings)

        self.is_initialized = True
        logger.info("LLM client ready with model: %s", self.model)


    async def check_health(self) -> bool:
        if self._health_url is None:
            return self._llm is not None or self._settings.LLM_PROVIDER != "ollama"
        try:
            async with httpx.AsyncClient(timeout=_HEALTH_TIMEOUT_SECONDS) as client:
                response = await client.get(self._health_url)
            return response.is_success
        except httpx.HTTPError as exc:
            logger.warning("LLM health check failed: %s", exc)
            return False


    async def list_models(self) -> list[str]:
        """Model names the Ollama server has pulled (empty for other providers)."""
        if self._health_url is None:
            return [self.model]
        try:
            async with httpx.AsyncClient(timeout=_HEALTH_TIMEOUT_SECONDS) as client:
                response = await client.get(self._health_url)
                response.raise_for_status()
            return [m.get("name", "") for m in response.json().get("models", [])]
        except httpx.HTTPError as exc:
            logger.warning("Failed to list Ollama models: %s", exc)
            return []

    # ══════════════════════════════════════════════════════════════════
    #  GENERATION
    # ══════════════════════════════════════════════════════════════════

    async def generate(self, messages: list[ChatMessage], system_prompt: str | None = None) -> LLMResponse:
        """Non-streamed completion."""
        await self.initialize()
        lc_messages = to_langchain_messages(messages, system_prompt)

        t_llm = time.perf_counter()
        try:
            response_obj = await self._llm.ainvoke(lc_messages)
        except Exception as exc:
            logger.exception("LLM call failed.")
            raise GenerationError(f"LLM generation failed: {exc}") from exc

        text = _content_text(response_obj.content if hasattr(response_obj, "content") else response_obj)
        logger.info("LLM response: %.1fms (%d chars)", (time.perf_counter() - t_llm) * 1000, len(text))
        return LLMResponse(text=text, model=self.model)


    async def stream_generate(self, messages: list[ChatMessage], system_prompt: str | None, on_chunk: Sink[str]) -> LLMResponse:
        """
        Streamed completion.  Each non-empty increment is delivered to
        *on_chunk* (sync or async) in arrival order before the next one
        is read.

        Raises
        ------
        GenerationError
            If the stream fails; ``partial_text`` holds what was delivered.
        """
        await self.initialize()
        lc_messages = to_langchain_messages(messages, system_prompt)

        parts: list[str] = []
        t_llm = time.perf_counter()
        try:
            async for chunk in self._llm.astream(lc_messages):
                text = _content_text(getattr(chunk, "content", chunk))
                if not text:
                    continue
                parts.append(text)
                await maybe_await(on_chunk(text))
        except Exception as exc:
            logger.error("LLM streaming failed after %d chunk(s): %s", len(parts), exc)
            raise GenerationError(f"Streaming generation failed: {exc}", partial_text="".join(parts)) from exc

        full_text = "".join(parts)
        logger.info("LLM stream complete: %.1fms (%d chunks, %d chars)", (time.perf_counter() - t_llm) * 1000, len(parts), len(full_text))
        return LLMResponse(text=full_text, model=self.model)


    def __repr__(self) -> str:
        return f"LLMClient(provider='{self._settings.LLM_PROVIDER}', model='{self.model}')"
