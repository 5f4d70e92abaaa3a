"""
Remi - HistoryStore
====================
LanceDB-backed table of past exchanges, one row per completed turn,
each carrying the raw text and the embedding of the combined turn.

Operations
----------
``append``
    Persist one exchange.  The vector width is checked against the
    table's fixed-size-list schema *before* anything is written, so a
    bad vector never leaves a half-usable row behind.
``query_nearest``
    Top-K rows of **one** user, ascending by L2 distance.  Every query
    is pre-filtered with ``user_id = '…'``; there is no global search.
    Ties are broken by ``(created_at, id)``.  The search always bypasses
    any vector index, so distances are exact L2, never PQ estimates.

Design decisions:
  • **Singleton DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock contention.
  • **Bounded concurrency** — LanceDB calls run in worker threads and at
    most ``max_concurrency`` run at once.  Acquiring a slot is itself
    time-limited, so a saturated store fails fast instead of queueing
    without bound.
  • **Idempotent bootstrap** — ``initialize()`` creates the table only
    when missing and refuses to open a table whose vector width differs
    from the configured one.  ``initialize_with_retry`` wraps it in a
    fixed-delay tenacity loop for startup.

Usage:
    from remi.src.database.history_store import HistoryStore, initialize_with_retry
    store = HistoryStore()
    initialize_with_retry(store)
    rows = await store.query_nearest("919235527628", query_vec, k=3)
"""

from __future__ import annotations

import asyncio
import math
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, TypeVar

import lancedb
import pyarrow as pa
from tenacity import RetryError, Retrying, retry_if_not_exception_type, stop_after_attempt, wait_fixed

from remi.config.settings import settings
from remi.src.core.errors import InitializationFailure, PersistenceFailure, RemiError, StoreQueryFailure
from remi.src.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# ── Constants ──────────────────────────────────────────────────────────
_VECTOR_COLUMN = "vector"
_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


@dataclass(slots=True)
class Exchange:
    """One stored turn.  ``distance`` is only set on query results (squared L2)."""

    id: str
    user_id: str
    user_display_name: str
    user_message: str
    agent_message: str | None
    embedding: list[float] = field(repr=False)
    created_at: datetime
    distance: float | None = None


def history_schema(dimension: int) -> pa.Schema:
    """Arrow schema of the exchanges table for a given vector width."""
    return pa.schema([
        pa.field("id", pa.utf8()),
        pa.field("user_id", pa.utf8()),
        pa.field("user_display_name", pa.utf8()),
        pa.field("user_message", pa.utf8()),
        pa.field("agent_message", pa.utf8()),
        pa.field(_VECTOR_COLUMN, pa.list_(pa.float32(), dimension)),
        pa.field("created_at", pa.timestamp("us")),  # naive UTC
    ])


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """Return a **singleton** ``lancedb.DBConnection`` for *db_path* (thread-safe)."""
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("[STORE] Opening LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to the naive timestamps the table stores."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _sql_literal(value: str) -> str:
    """Quote *value* as a SQL string literal for a LanceDB ``where`` clause."""
    return "'" + value.replace("'", "''") + "'"


class HistoryStore:
    """
    Per-user exchange history on top of a LanceDB table.

    Parameters
    ----------
    db_path
        Database directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Defaults to ``settings.HISTORY_TABLE_NAME``.
    dimension
        Fixed vector width.  Defaults to ``settings.EMBEDDING_DIM``.
    max_concurrency
        Simultaneous LanceDB operations.  Defaults to ``settings.STORE_MAX_CONCURRENCY``.
    acquire_timeout
        Seconds to wait for a free slot.  Defaults to ``settings.STORE_ACQUIRE_TIMEOUT_S``.
    op_timeout
        Seconds a single operation may take.  Defaults to ``settings.STORE_TIMEOUT_S``.
    """

    __slots__ = ("_db_path", "_table_name", "dimension", "_schema", "_acquire_timeout", "_op_timeout", "_slots", "db", "table")

    def __init__(self, db_path: str | None = None, table_name: str | None = None, dimension: int | None = None, max_concurrency: int | None = None, acquire_timeout: float | None = None, op_timeout: float | None = None) -> None:
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name or settings.HISTORY_TABLE_NAME
        self.dimension: int = dimension or settings.EMBEDDING_DIM
        self._schema: pa.Schema = history_schema(self.dimension)
        self._acquire_timeout: float = acquire_timeout if acquire_timeout is not None else settings.STORE_ACQUIRE_TIMEOUT_S
        self._op_timeout: float = op_timeout if op_timeout is not None else settings.STORE_TIMEOUT_S
        self._slots = asyncio.Semaphore(max_concurrency or settings.STORE_MAX_CONCURRENCY)
        self.db: lancedb.DBConnection | None = None
        self.table: lancedb.table.Table | None = None

    # ══════════════════════════════════════════════════════════════════
    #  BOOTSTRAP
    # ══════════════════════════════════════════════════════════════════

    def initialize(self) -> None:
        """
        Open the database and make sure the exchanges table exists.

        Safe to call repeatedly.  Raises ``InitializationFailure`` (not
        retried) when an existing table has a different vector width.
        Any other exception is left to the caller's retry policy.
        """
        self.db = _get_connection(self._db_path)

        if self._table_name in self._table_names():
            table = self.db.open_table(self._table_name)
            self._check_existing_schema(table.schema)
            self.table = table
            logger.info("[STORE] Opened table '%s' (%d rows).", self._table_name, table.count_rows())
        else:
            self.table = self.db.create_table(self._table_name, schema=self._schema)
            logger.info("[STORE] Created table '%s' (dim=%d).", self._table_name, self.dimension)

        self._ensure_indices()


    def _check_existing_schema(self, schema: pa.Schema) -> None:
        if _VECTOR_COLUMN not in schema.names:
            raise InitializationFailure(f"Table '{self._table_name}' has no '{_VECTOR_COLUMN}' column.")
        vector_type = schema.field(_VECTOR_COLUMN).type
        width = getattr(vector_type, "list_size", None)
        if width != self.dimension:
            raise InitializationFailure(f"Table '{self._table_name}' stores {width}-d vectors but EMBEDDING_DIM is {self.dimension}.")


    def _ensure_indices(self) -> None:
        """Build the scalar ``user_id`` index once the table is large enough.

        No vector index: queries are exact flat scans over one user's rows.
        """
        assert self.table is not None
        rows = self.table.count_rows()
        if rows < settings.USER_INDEX_MIN_ROWS:
            logger.debug("[STORE] %d rows < %d, skipping the user_id index.", rows, settings.USER_INDEX_MIN_ROWS)
            return

        indexed_columns = {col for idx in self.table.list_indices() for col in idx.columns}
        if "user_id" not in indexed_columns:
            logger.info("[STORE] Building scalar user_id index on %d rows …", rows)
            self.table.create_scalar_index("user_id")


    def _table_names(self) -> list[str]:
        assert self.db is not None
        listing = self.db.list_tables()
        return list(getattr(listing, "tables", listing))

    # ══════════════════════════════════════════════════════════════════
    #  WRITE
    # ══════════════════════════════════════════════════════════════════

    async def append(self, user_id: str, user_display_name: str, user_message: str, agent_message: str | None, embedding: list[float]) -> Exchange:
        """
        Persist one exchange row.

        Raises
        ------
        PersistenceFailure
            On a vector of the wrong width, non-finite values, or any
            storage error.  Validation happens before the write.
        """
        vector = self._validate_vector(embedding, PersistenceFailure, user_id)
        exchange = Exchange(id=str(uuid.uuid4()), user_id=user_id, user_display_name=user_display_name, user_message=user_message, agent_message=agent_message, embedding=vector, created_at=datetime.now(timezone.utc))
        record = {"id": exchange.id, "user_id": user_id, "user_display_name": user_display_name, "user_message": user_message, "agent_message": agent_message, _VECTOR_COLUMN: vector, "created_at": exchange.created_at.replace(tzinfo=None)}

        def _write() -> None:
            batch = pa.Table.from_pylist([record], schema=self._schema)
            self._require_table().add(batch)

        await self._run(_write, PersistenceFailure, user_id)
        logger.info("[STORE] Appended exchange %s for user %s.", exchange.id, user_id)
        return exchange

    # ══════════════════════════════════════════════════════════════════
    #  READ
    # ══════════════════════════════════════════════════════════════════

    async def query_nearest(self, user_id: str, query_embedding: list[float], k: int) -> list[Exchange]:
        """
        Return up to *k* of *user_id*'s exchanges, nearest first.

        The where clause is applied as a pre-filter, so another user's
        rows are never candidates no matter how similar they are.
        Over-fetches 2× before the deterministic tie-break so equal
        distances at the cut-off resolve by insertion order.
        """
        if k <= 0:
            return []
        vector = self._validate_vector(query_embedding, StoreQueryFailure, user_id)
        where = f"user_id = {_sql_literal(user_id)}"

        def _search() -> list[dict]:
            table = self._require_table()
            available = table.count_rows(where)
            if available == 0:
                return []
            fetch = min(available, k * 2)
            return table.search(vector, vector_column_name=_VECTOR_COLUMN).distance_type("l2").bypass_vector_index().where(where, prefilter=True).limit(fetch).to_list()

        rows = await self._run(_search, StoreQueryFailure, user_id)
        rows.sort(key=lambda r: (float(r["_distance"]), r["created_at"], r["id"]))
        results = [self._row_to_exchange(r) for r in rows[:k]]
        logger.debug("[STORE] query_nearest(user=%s, k=%d) → %d row(s).", user_id, k, len(results))
        return results


    async def count(self, user_id: str | None = None) -> int:
        """Number of stored exchanges, optionally for one user."""
        where = None if user_id is None else f"user_id = {_sql_literal(user_id)}"
        return await self._run(lambda: self._require_table().count_rows(where), StoreQueryFailure, user_id)

    # ══════════════════════════════════════════════════════════════════
    #  MAINTENANCE
    # ══════════════════════════════════════════════════════════════════

    def drop(self) -> None:
        """Drop the exchanges table (maintenance CLI only)."""
        if self.db is None:
            self.db = _get_connection(self._db_path)
        if self._table_name in self._table_names():
            self.db.drop_table(self._table_name)
            logger.warning("[STORE] Dropped table '%s'.", self._table_name)
        else:
            logger.warning("[STORE] Table '%s' does not exist, nothing to drop.", self._table_name)
        self.table = None

    # ══════════════════════════════════════════════════════════════════
    #  INTERNALS
    # ══════════════════════════════════════════════════════════════════

    def _require_table(self) -> lancedb.table.Table:
        if self.table is None:
            raise RuntimeError("History table is not initialised. Call initialize() first.")
        return self.table


    def _validate_vector(self, embedding: list[float], error_cls: type[RemiError], user_id: str) -> list[float]:
        if len(embedding) != self.dimension:
            raise error_cls(f"Embedding has {len(embedding)} dimensions, table expects {self.dimension}.", user_id=user_id)
        vector = [float(v) for v in embedding]
        if not all(math.isfinite(v) for v in vector):
            raise error_cls("Embedding contains NaN or infinite values.", user_id=user_id)
        return vector


    async def _run(self, fn: Callable[[], T], error_cls: type[RemiError], user_id: str | None) -> T:
        """Run a blocking LanceDB call in a worker thread inside a bounded, timed slot."""
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._acquire_timeout)
        except asyncio.TimeoutError as exc:
            raise error_cls(f"No free store slot within {self._acquire_timeout:.1f}s.", user_id=user_id) from exc

        # The slot belongs to the worker thread, which outlives a timed-out await.
        worker = asyncio.ensure_future(asyncio.to_thread(fn))
        worker.add_done_callback(self._release_slot)
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=self._op_timeout)
        except asyncio.TimeoutError as exc:
            raise error_cls(f"Store operation timed out after {self._op_timeout:.1f}s.", user_id=user_id) from exc
        except RemiError:
            raise
        except Exception as exc:
            raise error_cls(f"Store operation failed: {exc}", user_id=user_id) from exc


    def _release_slot(self, worker: asyncio.Future) -> None:
        self._slots.release()
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug("[STORE] Worker finished with %s.", type(worker.exception()).__name__)


    @staticmethod
    def _row_to_exchange(row: dict) -> Exchange:
        return Exchange(id=row["id"], user_id=row["user_id"], user_display_name=row["user_display_name"], user_message=row["user_message"], agent_message=row["agent_message"], embedding=list(row[_VECTOR_COLUMN]), created_at=_as_utc(row["created_at"]), distance=float(row["_distance"]))


    def __repr__(self) -> str:
        return f"HistoryStore(db='{self._db_path}', table='{self._table_name}', dim={self.dimension})"


# ══════════════════════════════════════════════════════════════════════
#  STARTUP BOOTSTRAP
# ══════════════════════════════════════════════════════════════════════


def initialize_with_retry(store: HistoryStore, attempts: int | None = None, delay: float | None = None) -> None:
    """
    Run ``store.initialize()`` with a bounded, fixed-delay retry.

    A schema mismatch (``InitializationFailure``) is not retried.  Once
    the last attempt fails, ``InitializationFailure`` is raised; the
    caller is expected to terminate the process.
    """
    attempts = attempts or settings.INIT_MAX_ATTEMPTS
    delay = settings.INIT_RETRY_DELAY_S if delay is None else delay

    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning("[STORE] Initialization attempt %d/%d failed: %s — retrying in %.1fs", retry_state.attempt_number, attempts, exc, delay)

    try:
        for attempt in Retrying(stop=stop_after_attempt(attempts), wait=wait_fixed(delay), retry=retry_if_not_exception_type(InitializationFailure), before_sleep=_log_retry, reraise=False):
            with attempt:
                store.initialize()
    except RetryError as exc:
        last = exc.last_attempt.exception()
        logger.critical("[STORE] Initialization failed after %d attempts: %s", attempts, last)
        raise InitializationFailure(f"History store unavailable after {attempts} attempts: {last}") from last
