"""
Remi - Embedding Provider Client
=================================
Turns text into a fixed-width vector with Gemini's embedding endpoint
(``google-genai`` async client).

Contract
--------
``await embed(text) -> list[float]`` of exactly ``dimension`` floats.
Any remote error, timeout, or malformed / wrong-width response raises
``EmbeddingFailure``.  There is no local fallback vector and no cache:
every call goes to the provider.

Usage:
    from remi.src.core.embedder import GeminiEmbedder
    embedder = GeminiEmbedder()
    vector = await embedder.embed("User said: hi\\nAI replied: hello")
"""

from __future__ import annotations

import asyncio
import math
from typing import Protocol, runtime_checkable

from google import genai
from google.genai import types

from remi.config.settings import settings
from remi.src.core.errors import EmbeddingFailure
from remi.src.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Embedder(Protocol):
    """Anything that can turn one text into one embedding vector."""

    dimension: int

    async def embed(self, text: str) -> list[float]: ...


class GeminiEmbedder:
    """
    ``Embedder`` backed by the Gemini embeddings API.

    Parameters
    ----------
    client
        Optional pre-built ``genai.Client`` (injected in tests).
    model
        Embedding model id.  Defaults to ``settings.EMBEDDING_MODEL``.
    dimension
        Requested output width.  Defaults to ``settings.EMBEDDING_DIM``.
    timeout
        Seconds before a call is abandoned.  Defaults to ``settings.EMBEDDING_TIMEOUT_S``.
    """

    __slots__ = ("_client", "_model", "dimension", "_timeout")

    def __init__(self, client: genai.Client | None = None, model: str | None = None, dimension: int | None = None, timeout: float | None = None) -> None:
        self._client = client or genai.Client(api_key=settings.GOOGLE_API_KEY.get_secret_value())
        self._model: str = model or settings.EMBEDDING_MODEL
        self.dimension: int = dimension or settings.EMBEDDING_DIM
        self._timeout: float = timeout if timeout is not None else settings.EMBEDDING_TIMEOUT_S


    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise EmbeddingFailure("Refusing to embed empty text.")

        config = types.EmbedContentConfig(output_dimensionality=self.dimension, task_type="SEMANTIC_SIMILARITY")
        try:
            response = await asyncio.wait_for(self._client.aio.models.embed_content(model=self._model, contents=text, config=config), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise EmbeddingFailure(f"Embedding call timed out after {self._timeout:.1f}s.") from exc
        except Exception as exc:
            raise EmbeddingFailure(f"Embedding call failed: {exc}") from exc

        vector = self._extract_vector(response)
        logger.debug("[EMBED] %d chars → %d-d vector (%s)", len(text), len(vector), self._model)
        return vector


    def _extract_vector(self, response: object) -> list[float]:
        """Pull the first embedding out of the response and validate its shape."""
        embeddings = getattr(response, "embeddings", None)
        if not embeddings:
            raise EmbeddingFailure("Embedding response contained no embeddings.")

        values = getattr(embeddings[0], "values", None)
        if not values:
            raise EmbeddingFailure("Embedding response contained an empty vector.")

        try:
            vector = [float(v) for v in values]
        except (TypeError, ValueError) as exc:
            raise EmbeddingFailure("Embedding response contained non-numeric values.") from exc

        if len(vector) != self.dimension:
            raise EmbeddingFailure(f"Expected a {self.dimension}-d embedding, provider returned {len(vector)}.")
        if not all(math.isfinite(v) for v in vector):
            raise EmbeddingFailure("Embedding response contained NaN or infinite values.")
        return vector


    def __repr__(self) -> str:
        return f"GeminiEmbedder(model='{self._model}', dim={self.dimension})"
