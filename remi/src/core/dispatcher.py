"""
Remi - Turn Dispatcher
=======================
Fire-and-forget execution of pipeline turns for the webhook.

``submit`` schedules a turn as an asyncio task and returns at once, so
the webhook can acknowledge WhatsApp before any model call happens.

Guarantees
----------
- At most ``max_concurrent`` turns run at the same time; the rest wait
  for a slot.
- With ``serialize_per_user`` (default), turns of the same sender run
  one after another, so a turn always sees the previous turn's stored
  exchange.  Turns of different senders still run in parallel.
- A turn that ends ``FAILED`` gets exactly one reply: the fixed apology.
  Upstream error text is only logged.
"""

from __future__ import annotations

import asyncio

from remi.config.prompt_templates import APOLOGY_MESSAGE
from remi.config.settings import settings
from remi.src.clients.whatsapp import DeliveryClient
from remi.src.core.pipeline import PipelineOrchestrator, TurnResult
from remi.src.utils.concurrency import KeyedLock
from remi.src.utils.logger import get_logger

logger = get_logger(__name__)


class TurnDispatcher:
    """
    Parameters
    ----------
    orchestrator
        Runs one turn.
    delivery
        Used only for the apology on failed turns.
    max_concurrent
        Defaults to ``settings.MAX_CONCURRENT_TURNS``.
    serialize_per_user
        Defaults to ``settings.SERIALIZE_PER_USER``.
    """

    __slots__ = ("_orchestrator", "_delivery", "_slots", "_user_locks", "_serialize", "_tasks")

    def __init__(self, orchestrator: PipelineOrchestrator, delivery: DeliveryClient, max_concurrent: int | None = None, serialize_per_user: bool | None = None) -> None:
        self._orchestrator = orchestrator
        self._delivery = delivery
        self._slots = asyncio.Semaphore(max_concurrent or settings.MAX_CONCURRENT_TURNS)
        self._user_locks = KeyedLock()
        self._serialize: bool = settings.SERIALIZE_PER_USER if serialize_per_user is None else serialize_per_user
        self._tasks: set[asyncio.Task[TurnResult]] = set()


    def submit(self, user_id: str, message_text: str) -> asyncio.Task[TurnResult]:
        """Schedule one turn.  Must be called from a running event loop."""
        task = asyncio.create_task(self._handle(user_id, message_text), name=f"turn:{user_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("[DISPATCH] Submitted turn for %s (%d in flight).", user_id, len(self._tasks))
        return task


    async def drain(self) -> None:
        """Wait for every in-flight turn to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


    @property
    def in_flight(self) -> int:
        return len(self._tasks)


    async def _handle(self, user_id: str, message_text: str) -> TurnResult:
        if self._serialize:
            async with self._user_locks.hold(user_id):
                return await self._run_in_slot(user_id, message_text)
        return await self._run_in_slot(user_id, message_text)


    async def _run_in_slot(self, user_id: str, message_text: str) -> TurnResult:
        async with self._slots:
            result = await self._orchestrator.run(user_id, message_text)

            if result.failed:
                stage = result.failed_stage.value if result.failed_stage else "unknown"
                logger.error("[DISPATCH] Turn for %s failed at %s (%s); sending apology.", user_id, stage, result.error)
                try:
                    sent = await self._delivery.send(user_id, APOLOGY_MESSAGE)
                except Exception:
                    logger.exception("[DISPATCH] Apology to %s raised.", user_id)
                    sent = False
                if not sent:
                    logger.error("[DISPATCH] Apology to %s was not delivered.", user_id)
            return result
