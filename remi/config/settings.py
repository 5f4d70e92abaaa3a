"""
Remi - Centralized Configuration
=================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY``, ``WHATSAPP_TOKEN`` and ``VERIFY_TOKEN`` are typed as
  ``SecretStr`` and have **no default value**.  If one is missing at
  startup, Pydantic raises a ``ValidationError`` with a clear message.
  The raw values never appear in repr, logs, or tracebacks.
- ``APP_SECRET`` is optional.  When present, inbound webhook payloads must
  carry a valid ``X-Hub-Signature-256`` header.

User profiles
-------------
``USER_PROFILES`` is a JSON object mapping a WhatsApp number (country code,
no ``+`` or spaces) to ``{"name": ..., "role": ...}``::

    USER_PROFILES='{"919235527628": {"name": "Prakhar", "role": "the Creator/Admin"}}'

The mapping is read once and injected, read-only, into the prompt composer.

Timeouts & concurrency
----------------------
Every remote stage has its own timeout (seconds).  ``STORE_MAX_CONCURRENCY``
bounds the number of simultaneous LanceDB operations and
``MAX_CONCURRENT_TURNS`` bounds the number of pipeline turns in flight.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProfileEntry(BaseModel):
    """One row of the static user table."""

    name: str
    role: str = ""


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).
    Fields *without* a default are **required** — the app will refuse
    to start until they are provided.

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr
        API key for Google AI Studio (Gemini).  **Required.**
    WHATSAPP_TOKEN : SecretStr
        Bearer token for the WhatsApp Cloud API.  **Required.**
    VERIFY_TOKEN : SecretStr
        Shared secret echoed back during the webhook handshake.  **Required.**
    EMBEDDING_DIM : int
        Vector width produced by the embedding model and stored in LanceDB.
    RETRIEVAL_TOP_K : int
        Number of past exchanges injected into each prompt.
    INIT_MAX_ATTEMPTS : int
        Bounded attempt count for the startup schema bootstrap.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── API Keys (REQUIRED — no default) ───────────────────────────────
    GOOGLE_API_KEY: SecretStr
    WHATSAPP_TOKEN: SecretStr
    VERIFY_TOKEN: SecretStr
    APP_SECRET: SecretStr | None = None

    # ── WhatsApp Cloud API ─────────────────────────────────────────────
    PHONE_NUMBER_ID: str = ""
    GRAPH_API_URL: str = "https://graph.facebook.com/v18.0"

    # ── Model Configuration ────────────────────────────────────────────
    EMBEDDING_MODEL: str = "text-embedding-004"
    EMBEDDING_DIM: int = 768
    LLM_MODEL: str = "gemini-2.5-flash"
    LLM_TEMPERATURE: float = 0.7

    # ── LanceDB ────────────────────────────────────────────────────────
    HISTORY_TABLE_NAME: str = "exchanges"
    USER_INDEX_MIN_ROWS: int = 5000

    # ── Retrieval ──────────────────────────────────────────────────────
    RETRIEVAL_TOP_K: int = 3

    # ── Per-stage Timeouts (seconds) ───────────────────────────────────
    EMBEDDING_TIMEOUT_S: float = 15.0
    GENERATION_TIMEOUT_S: float = 60.0
    STORE_TIMEOUT_S: float = 10.0
    DELIVERY_TIMEOUT_S: float = 15.0

    # ── Concurrency ────────────────────────────────────────────────────
    STORE_MAX_CONCURRENCY: int = 8
    STORE_ACQUIRE_TIMEOUT_S: float = 5.0
    MAX_CONCURRENT_TURNS: int = 32
    SERIALIZE_PER_USER: bool = True

    # ── Startup Bootstrap ──────────────────────────────────────────────
    INIT_MAX_ATTEMPTS: int = 5
    INIT_RETRY_DELAY_S: float = 5.0

    # ── Static User Table ──────────────────────────────────────────────
    USER_PROFILES: dict[str, ProfileEntry] = {}

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("EMBEDDING_DIM")
    @classmethod
    def _dim_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"EMBEDDING_DIM must be ≥ 1, got {v}")
        return v


    @field_validator("RETRIEVAL_TOP_K")
    @classmethod
    def _top_k_range(cls, v: int) -> int:
        if not 1 <= v <= 20:
            raise ValueError(f"RETRIEVAL_TOP_K must be 1–20, got {v}")
        return v


    @field_validator("INIT_MAX_ATTEMPTS", "STORE_MAX_CONCURRENCY", "MAX_CONCURRENT_TURNS")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be ≥ 1, got {v}")
        return v

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from remi.config.settings import settings
settings = Settings()
