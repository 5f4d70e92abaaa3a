"""
Remi - Application Entry Point
===============================
FastAPI application factory.  The lifespan hook wires the pipeline once
per process:

    1. Bootstrap the LanceDB history table (bounded fixed-delay retry).
       If it never succeeds the process exits — the only fatal path.
    2. Build embedder, generator, WhatsApp client, composer, retriever,
       orchestrator and dispatcher.
    3. On shutdown, drain in-flight turns and close the HTTP client.

Every collaborator can be injected through ``create_app`` so tests can
run the real wiring against fakes.

Run:
    uvicorn remi.src.main:app --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from remi.config.settings import settings
from remi.src.api.routes import router
from remi.src.clients.whatsapp import DeliveryClient, WhatsAppClient
from remi.src.core.dispatcher import TurnDispatcher
from remi.src.core.embedder import Embedder, GeminiEmbedder
from remi.src.core.errors import InitializationFailure
from remi.src.core.generator import GeminiGenerator, Generator
from remi.src.core.pipeline import PipelineOrchestrator
from remi.src.core.prompt_composer import PromptComposer, profiles_from_settings
from remi.src.core.retriever import Retriever
from remi.src.database.history_store import HistoryStore, initialize_with_retry
from remi.src.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(store: HistoryStore | None = None, embedder: Embedder | None = None, generator: Generator | None = None, delivery: DeliveryClient | None = None) -> FastAPI:
    """Build the FastAPI app; omitted collaborators are created from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        history = store or HistoryStore()
        try:
            await asyncio.to_thread(initialize_with_retry, history)
        except InitializationFailure:
            logger.critical("[STARTUP] History store could not be initialised — terminating.")
            raise SystemExit(1)

        owned_delivery: WhatsAppClient | None = None
        if delivery is None:
            owned_delivery = WhatsAppClient()
        outbound: DeliveryClient = delivery or owned_delivery  # type: ignore[assignment]

        turn_embedder = embedder or GeminiEmbedder()
        composer = PromptComposer(profiles_from_settings(settings.USER_PROFILES))
        orchestrator = PipelineOrchestrator(retriever=Retriever(turn_embedder, history), composer=composer, generator=generator or GeminiGenerator(), delivery=outbound, store=history, embedder=turn_embedder)
        app.state.dispatcher = TurnDispatcher(orchestrator, outbound)
        logger.info("[STARTUP] Remi ready (env=%s, top_k=%d, known users=%d).", settings.ENV, settings.RETRIEVAL_TOP_K, len(settings.USER_PROFILES))

        try:
            yield
        finally:
            await app.state.dispatcher.drain()
            if owned_delivery is not None:
                await owned_delivery.aclose()
            logger.info("[SHUTDOWN] Remi stopped.")

    app = FastAPI(title="Remi WhatsApp Relay", version="0.1.0", lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()
