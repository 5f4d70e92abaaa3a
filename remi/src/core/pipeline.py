"""
Remi - Pipeline Orchestrator
=============================
Runs one inbound message through the memory loop as a small state
machine::

    RECEIVED → RETRIEVING → GENERATING → DELIVERING → PERSISTING → DONE
        ╰──────────────┴────────────┴──────────────────────────────→ FAILED

Rules
-----
1. **Retrieving** — a retriever error ends the turn in ``FAILED`` with an
   ``UpstreamFailure``.  Zero rows is a success and continues with an
   empty context.
2. **Generating** — compose the prompt and call the generator.  Any
   error ends the turn in ``FAILED``.
3. **Delivering** — hand the reply to WhatsApp.  A failed send is logged
   and the turn still moves on to persistence.
4. **Persisting** — embed the combined turn and append it.  A failure is
   logged, not retried, and the turn still ends ``DONE``.

``run`` never raises for per-message failures and never talks to the
sender on failure; its caller (the dispatcher) owns the apology.

Usage:
    orchestrator = PipelineOrchestrator(retriever, composer, generator, delivery, store, embedder)
    result = await orchestrator.run("919235527628", "What is my friend's name?")
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from remi.src.clients.whatsapp import DeliveryClient
from remi.src.core.embedder import Embedder
from remi.src.core.errors import DeliveryFailure, GenerationFailure, RemiError, UpstreamFailure
from remi.src.core.generator import Generator
from remi.src.core.prompt_composer import PromptComposer
from remi.src.core.retriever import Retriever
from remi.src.database.history_store import Exchange, HistoryStore
from remi.src.utils.logger import get_logger
from remi.src.utils.text_utils import format_turn_for_embedding

logger = get_logger(__name__)


class TurnState(str, Enum):
    RECEIVED = "received"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    DELIVERING = "delivering"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TurnState.DONE, TurnState.FAILED})


@dataclass(slots=True)
class TurnResult:
    """Outcome of one turn.  ``failed_stage`` and ``error`` are set only when ``state`` is ``FAILED``."""

    user_id: str
    message: str
    state: TurnState = TurnState.RECEIVED
    visited: list[TurnState] = field(default_factory=lambda: [TurnState.RECEIVED])
    retrieved: list[Exchange] = field(default_factory=list)
    reply: str | None = None
    delivered: bool = False
    persisted: bool = False
    failed_stage: TurnState | None = None
    error: RemiError | None = None

    @property
    def failed(self) -> bool:
        return self.state is TurnState.FAILED


class PipelineOrchestrator:
    """
    Sequences retriever → composer → generator → delivery → persistence.

    Parameters
    ----------
    retriever
        Per-user history lookup.
    composer
        Prompt builder holding the static user table.
    generator
        Text-generation client.
    delivery
        Outbound WhatsApp client.
    store
        History store used for the final append.
    embedder
        Embeds the combined turn text for persistence.
    """

    __slots__ = ("_retriever", "_composer", "_generator", "_delivery", "_store", "_embedder")

    def __init__(self, retriever: Retriever, composer: PromptComposer, generator: Generator, delivery: DeliveryClient, store: HistoryStore, embedder: Embedder) -> None:
        self._retriever = retriever
        self._composer = composer
        self._generator = generator
        self._delivery = delivery
        self._store = store
        self._embedder = embedder


    async def run(self, user_id: str, message_text: str) -> TurnResult:
        result = TurnResult(user_id=user_id, message=message_text)
        t_start = time.perf_counter()

        # ── 1. Retrieving ─────────────────────────────────────────────
        self._advance(result, TurnState.RETRIEVING)
        try:
            result.retrieved = await self._retriever.retrieve_context(user_id, message_text)
        except Exception as exc:
            return self._fail(result, UpstreamFailure(f"History retrieval failed: {exc}", user_id=user_id), exc)

        # ── 2. Generating ─────────────────────────────────────────────
        self._advance(result, TurnState.GENERATING)
        try:
            profile = self._composer.resolve_profile(user_id)
            prompt = self._composer.compose(profile, result.retrieved, message_text)
            result.reply = await self._generator.generate(prompt.system_instruction, prompt.user_prompt)
        except GenerationFailure as exc:
            return self._fail(result, exc, exc)
        except Exception as exc:
            return self._fail(result, GenerationFailure(f"Unexpected generation error: {exc}", user_id=user_id), exc)

        # ── 3. Delivering ─────────────────────────────────────────────
        self._advance(result, TurnState.DELIVERING)
        result.delivered = await self._deliver(user_id, result.reply)

        # ── 4. Persisting ─────────────────────────────────────────────
        self._advance(result, TurnState.PERSISTING)
        result.persisted = await self._persist(user_id, profile.name, message_text, result.reply)

        # ── 5. Done ───────────────────────────────────────────────────
        self._advance(result, TurnState.DONE)
        logger.info("[PIPELINE] user=%s done in %.1fms (history=%d, delivered=%s, persisted=%s)", user_id, (time.perf_counter() - t_start) * 1000, len(result.retrieved), result.delivered, result.persisted)
        return result


    async def _deliver(self, user_id: str, reply: str) -> bool:
        try:
            sent = await self._delivery.send(user_id, reply)
        except Exception as exc:
            failure = DeliveryFailure(f"Delivery client raised: {exc}", user_id=user_id)
            logger.error("[PIPELINE] %s — persisting the turn anyway.", failure)
            return False
        if not sent:
            logger.error("[PIPELINE] %s — persisting the turn anyway.", DeliveryFailure("WhatsApp did not accept the reply.", user_id=user_id))
        return sent


    async def _persist(self, user_id: str, display_name: str, user_message: str, agent_message: str) -> bool:
        try:
            vector = await self._embedder.embed(format_turn_for_embedding(user_message, agent_message))
            await self._store.append(user_id, display_name, user_message, agent_message, vector)
        except RemiError as exc:
            logger.error("[PIPELINE] Could not persist turn for user %s: %s", user_id, exc)
            return False
        except Exception:
            logger.exception("[PIPELINE] Unexpected error persisting turn for user %s.", user_id)
            return False
        return True


    @staticmethod
    def _advance(result: TurnResult, state: TurnState) -> None:
        if result.state in TERMINAL_STATES:
            raise RuntimeError(f"Turn already terminal ({result.state.value}); cannot enter {state.value}.")
        result.state = state
        result.visited.append(state)
        logger.debug("[PIPELINE] user=%s → %s", result.user_id, state.value)


    @staticmethod
    def _fail(result: TurnResult, error: RemiError, cause: BaseException) -> TurnResult:
        result.failed_stage = result.state
        result.error = error
        if error is not cause:
            error.__cause__ = cause
        if error.user_id is None:
            error.user_id = result.user_id
        result.state = TurnState.FAILED
        result.visited.append(TurnState.FAILED)

        if isinstance(cause, RemiError):
            logger.error("[PIPELINE] user=%s failed at %s: %s", result.user_id, result.failed_stage.value, cause)
        else:
            logger.error("[PIPELINE] user=%s failed at %s with unexpected %s", result.user_id, result.failed_stage.value, type(cause).__name__, exc_info=cause)
        return result
