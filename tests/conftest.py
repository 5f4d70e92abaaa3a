import asyncio
import hashlib
import os

# Required secrets must exist before remi.config.settings is imported.
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("WHATSAPP_TOKEN", "test-whatsapp-token")
os.environ.setdefault("VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("PHONE_NUMBER_ID", "1234567890")
os.environ.setdefault("ENV", "dev")

import pytest

from remi.src.core.pipeline import PipelineOrchestrator
from remi.src.core.prompt_composer import PromptComposer, UserProfile
from remi.src.core.retriever import Retriever
from remi.src.database.history_store import HistoryStore

TEST_DIM = 4


class FakeEmbedder:
    """Deterministic 4-d vectors derived from a SHA-256 of the text."""

    def __init__(self, dimension: int = TEST_DIM) -> None:
        self.dimension = dimension
        self.calls: list[str] = []
        self.fail_with: Exception | None = None

    def vector_for(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 for b in digest[: self.dimension]]

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        return self.vector_for(text)


class FakeGenerator:
    def __init__(self, reply: str = "Hello from Remi!") -> None:
        self.reply = reply
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.delay: float = 0.0

    async def generate(self, system_instruction: str, user_prompt: str) -> str:
        self.calls.append((system_instruction, user_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return self.reply


class FakeDelivery:
    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient_id: str, text: str) -> bool:
        self.sent.append((recipient_id, text))
        return self.succeed


@pytest.fixture()
def store(tmp_path) -> HistoryStore:
    history = HistoryStore(db_path=str(tmp_path / "lancedb"), table_name="exchanges", dimension=TEST_DIM, max_concurrency=4, acquire_timeout=5.0, op_timeout=10.0)
    history.initialize()
    return history


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture()
def composer() -> PromptComposer:
    return PromptComposer({"919235527628": UserProfile(name="Prakhar", role="the Creator/Admin")})


@pytest.fixture()
def orchestrator(store, embedder, generator, delivery, composer) -> PipelineOrchestrator:
    return PipelineOrchestrator(retriever=Retriever(embedder, store, top_k=3), composer=composer, generator=generator, delivery=delivery, store=store, embedder=embedder)
