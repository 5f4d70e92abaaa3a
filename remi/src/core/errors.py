"""
Remi - Error Taxonomy
======================
One exception type per pipeline stage.  Each carries the ``stage`` it
was raised in and, when known, the ``user_id`` of the turn, so the
orchestrator can log failures with context without parsing messages.

Only ``InitializationFailure`` is fatal (startup bootstrap).  Everything
else is recoverable per message: the orchestrator catches it and the
dispatcher answers the sender with a fixed apology.
"""

from __future__ import annotations


class RemiError(Exception):
    """Base class for every failure raised by Remi's own code."""

    stage: str = "unknown"

    def __init__(self, message: str, *, user_id: str | None = None) -> None:
        super().__init__(message)
        self.user_id = user_id


    def __str__(self) -> str:
        base = super().__str__()
        return f"[{self.stage}] {base}" if self.user_id is None else f"[{self.stage}] {base} (user={self.user_id})"


class EmbeddingFailure(RemiError):
    """Remote embedding call errored, timed out, or returned malformed data."""

    stage = "embedding"


class StoreQueryFailure(RemiError):
    """Nearest-neighbour lookup against the history store failed."""

    stage = "store_query"


class PersistenceFailure(RemiError):
    """An exchange could not be written; nothing was persisted."""

    stage = "persistence"


class GenerationFailure(RemiError):
    """The text-generation API errored, timed out, or returned nothing."""

    stage = "generation"


class DeliveryFailure(RemiError):
    """The outbound message could not be handed to WhatsApp."""

    stage = "delivery"


class InitializationFailure(RemiError):
    """Schema bootstrap never succeeded.  Fatal: the process exits."""

    stage = "initialization"


class UpstreamFailure(RemiError):
    """Retrieval-stage failure (embedding or store query) seen by the orchestrator."""

    stage = "retrieval"
