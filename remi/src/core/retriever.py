"""
Remi - Retriever
=================
Fetches the sender's most similar past exchanges for a new message:
embed the message, then ask the history store for its ``top_k``
nearest rows belonging to that sender only.

Failures from either step propagate unchanged.  An outage must surface
as an error for the orchestrator to handle; it is never disguised as
"no history".
"""

from __future__ import annotations

import time

from remi.config.settings import settings
from remi.src.core.embedder import Embedder
from remi.src.database.history_store import Exchange, HistoryStore
from remi.src.utils.logger import get_logger
from remi.src.utils.text_utils import preview

logger = get_logger(__name__)


class Retriever:
    """Per-user nearest-neighbour history lookup."""

    __slots__ = ("_embedder", "_store", "top_k")

    def __init__(self, embedder: Embedder, store: HistoryStore, top_k: int | None = None) -> None:
        self._embedder = embedder
        self._store = store
        self.top_k: int = top_k or settings.RETRIEVAL_TOP_K


    async def retrieve_context(self, user_id: str, new_message: str) -> list[Exchange]:
        """
        Return up to ``top_k`` of *user_id*'s exchanges, nearest first.

        Raises
        ------
        EmbeddingFailure
            The message could not be embedded.
        StoreQueryFailure
            The history lookup failed.
        """
        t_start = time.perf_counter()
        query_vector = await self._embedder.embed(new_message)
        t_embed = time.perf_counter()

        history = await self._store.query_nearest(user_id, query_vector, self.top_k)
        t_done = time.perf_counter()

        logger.info("[RETRIEVER] user=%s query='%s' → %d exchange(s) (embed=%.1fms, search=%.1fms)", user_id, preview(new_message, 50), len(history), (t_embed - t_start) * 1000, (t_done - t_embed) * 1000)
        return history
