"""
Isha - HashFeatureEmbedder
===========================
Deterministic, dependency-light text embeddings.

The vector is hand-built rather than learned, so the whole pipeline runs
without an ML runtime and identical text always yields a bit-identical
vector.  Layout of a D-dimensional vector:

    [0, 26)     per-letter frequency  (count / text length)
    [26, 29)    shape: normalised length, word count, sentence count
    [29, 41)    stop-word frequency   (count / word count)
    [41, D)     filler: sin(hash(text) + i) * 0.5 + 0.5

The result is L2-normalised.  The class implements LangChain's
``Embeddings`` interface, so a real embedding model can be swapped in
anywhere an ``HashFeatureEmbedder`` is injected.
"""

from __future__ import annotations

import re

import numpy as np
from langchain_core.embeddings import Embeddings

from isha.config.settings import Settings, settings as default_settings
from isha.src.core.errors import DimensionMismatchError, EmbeddingError, EmptyBatchError, MissingInputError
from isha.src.core.models import EmbeddingVector
from isha.src.utils.logger import get_logger

logger = get_logger(__name__)

_LETTERS = "abcdefghijklmnopqrstuvwxyz"
_STOP_WORDS = ("the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by")
_STOP_WORD_RES = tuple(re.compile(rf"\b{w}\b") for w in _STOP_WORDS)
_FEATURE_DIMS = len(_LETTERS) + 3 + len(_STOP_WORDS)

_RE_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_RE_WHITESPACE = re.compile(r"\s+")
_RE_SENTENCE_END = re.compile(r"[.!?]+")


def string_hash(text: str) -> int:
    """Absolute value of the 32-bit ``h = 31*h + c`` string hash."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


class HashFeatureEmbedder(Embeddings):
    """
    Parameters
    ----------
    dimension
        Vector length D.  Defaults to ``settings.EMBEDDING_DIMENSION``.
    """

    def __init__(self, dimension: int | None = None, settings: Settings | None = None) -> None:
        cfg = settings or default_settings
        self.dimension = dimension if dimension is not None else cfg.EMBEDDING_DIMENSION
        self.model = cfg.EMBEDDING_MODEL
        if self.dimension < _FEATURE_DIMS:
            raise ValueError(f"dimension must be ≥ {_FEATURE_DIMS}, got {self.dimension}")
        self.is_initialized = False


    def initialize(self) -> None:
        if not self.is_initialized:
            self.is_initialized = True
            logger.info("Embedding model '%s' ready (dimension=%d).", self.model, self.dimension)

    # ══════════════════════════════════════════════════════════════════
    #  CORE API
    # ══════════════════════════════════════════════════════════════════

    def embed(self, text: str) -> EmbeddingVector:
        """Embed one string.  Raises ``EmbeddingError`` for non-string or blank input."""
        if not isinstance(text, str) or not text.strip():
            raise EmbeddingError("Invalid text input for embedding.")
        return self._build_vector(text).tolist()


    def embed_batch(self, texts: list[str]) -> list[EmbeddingVector | None]:
        """
        Embed many strings.  A failing item yields ``None`` at its position
        instead of failing the whole batch.
        """
        if not texts:
            raise EmptyBatchError("Cannot embed an empty batch.")

        vectors: list[EmbeddingVector | None] = []
        for idx, text in enumerate(texts):
            try:
                vectors.append(self.embed(text))
            except EmbeddingError as exc:
                logger.warning("Failed to embed item %d in batch: %s", idx, exc)
                vectors.append(None)
        return vectors


    @staticmethod
    def similarity(a: EmbeddingVector | None, b: EmbeddingVector | None) -> float:
        """Cosine similarity clamped to [0, 1]."""
        if a is None or b is None or len(a) == 0 or len(b) == 0:
            raise MissingInputError("Both embeddings are required for similarity calculation.")
        if len(a) != len(b):
            raise DimensionMismatchError(f"Embeddings must have the same dimensions ({len(a)} vs {len(b)}).")

        va = np.asarray(a, dtype=np.float64)
        vb = np.asarray(b, dtype=np.float64)
        denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if denom == 0.0:
            return 0.0
        return max(0.0, min(1.0, float(np.dot(va, vb)) / denom))


    def get_model_info(self) -> dict[str, str | int | bool]:
        return {"model": self.model, "is_initialized": self.is_initialized, "dimensions": self.dimension}

    # ══════════════════════════════════════════════════════════════════
    #  LANGCHAIN EMBEDDINGS INTERFACE
    # ══════════════════════════════════════════════════════════════════

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)

    # ══════════════════════════════════════════════════════════════════
    #  FEATURE CONSTRUCTION
    # ══════════════════════════════════════════════════════════════════

    def _build_vector(self, text: str) -> np.ndarray:
        lowered = text.lower()
        # Counted before punctuation is stripped, so multi-sentence text scores > 1.
        sentence_count = len(_RE_SENTENCE_END.split(lowered))
        normalized = _RE_NON_ALNUM.sub("", lowered)

        vec = np.zeros(self.dimension, dtype=np.float64)
        n_chars = max(1, len(normalized))
        words = _RE_WHITESPACE.split(normalized)
        n_words = max(1, len(words))

        idx = 0
        for letter in _LETTERS:
            vec[idx] = normalized.count(letter) / n_chars
            idx += 1

        vec[idx] = min(1.0, len(normalized) / 1000)
        vec[idx + 1] = len(words) / 100
        vec[idx + 2] = sentence_count / 10
        idx += 3

        for pattern in _STOP_WORD_RES:
            vec[idx] = len(pattern.findall(normalized)) / n_words
            idx += 1

        h = string_hash(normalized)
        filler = np.arange(idx, self.dimension, dtype=np.float64)
        vec[idx:] = np.sin(h + filler) * 0.5 + 0.5

        magnitude = float(np.linalg.norm(vec))
        if magnitude == 0.0:
            return vec
        return vec / magnitude

    def __repr__(self) -> str:
        return f"HashFeatureEmbedder(model='{self.model}', dimension={self.dimension})"
