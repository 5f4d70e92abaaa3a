"""
Remi - History Store Setup Script
==================================
CLI entry point that:
    1. Loads settings (fail-fast on missing secrets).
    2. Runs the same bounded-retry schema bootstrap the server runs at
       startup, optionally dropping the table first.
    3. Prints a short summary with timing.

Flags:
    --drop       Drop the exchanges table, then recreate it empty.
    --drop-only  Drop the exchanges table and exit.
    --user ID    Also report the number of stored exchanges for one sender.

Usage:
    python -m remi.scripts.setup_db
    python -m remi.scripts.setup_db --drop
    python -m remi.scripts.setup_db --user 919235527628
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="Remi — initialise the LanceDB exchange history table.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop the exchanges table before re-creating it (deletes all history).")
    parser.add_argument("--drop-only", action="store_true", default=False, help="Drop the exchanges table and exit.")
    parser.add_argument("--user", default=None, help="Report the stored exchange count for this sender id.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    # ── 0. Load settings + .env ────────────────────────────────────────
    try:
        from remi.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        return 1

    from remi.src.core.errors import InitializationFailure
    from remi.src.database.history_store import HistoryStore, initialize_with_retry
    from remi.src.utils.logger import get_logger

    logger = get_logger(__name__)
    _print_header(settings)

    store = HistoryStore()

    # ── 1. Optional drop ───────────────────────────────────────────────
    if args.drop or args.drop_only:
        logger.warning("Dropping table '%s' as requested.", settings.HISTORY_TABLE_NAME)
        store.drop()
        if args.drop_only:
            print(f"  Table '{settings.HISTORY_TABLE_NAME}' dropped.\n")
            return 0

    # ── 2. Bootstrap with bounded retry ────────────────────────────────
    t_init = time.perf_counter()
    try:
        initialize_with_retry(store)
    except InitializationFailure as exc:
        logger.critical("Initialisation failed: %s", exc)
        return 1
    init_ms = (time.perf_counter() - t_init) * 1000

    # ── 3. Summary ─────────────────────────────────────────────────────
    total, user_total = asyncio.run(_counts(store, args.user))
    _print_footer(total, args.user, user_total, init_ms, time.perf_counter() - t_start)
    return 0


async def _counts(store: object, user_id: str | None) -> tuple[int, int | None]:
    total = await store.count()  # type: ignore[attr-defined]
    user_total = await store.count(user_id) if user_id else None  # type: ignore[attr-defined]
    return total, user_total


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object) -> None:
    print()
    print("=" * 60)
    print("  REMI — History Store Setup")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                  # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")         # type: ignore[attr-defined]
    print(f"  Table        : {settings.HISTORY_TABLE_NAME}")   # type: ignore[attr-defined]
    print(f"  Vector dim   : {settings.EMBEDDING_DIM}")        # type: ignore[attr-defined]
    print(f"  Attempts     : {settings.INIT_MAX_ATTEMPTS} × {settings.INIT_RETRY_DELAY_S:.1f}s")  # type: ignore[attr-defined]
    print("=" * 60)
    print()


def _print_footer(total: int, user_id: str | None, user_total: int | None, init_ms: float, elapsed: float) -> None:
    print()
    print("=" * 60)
    print("  SUMMARY")
    print("-" * 60)
    print(f"  Stored exchanges     : {total}")
    if user_id is not None:
        print(f"  Exchanges for {user_id:<7}: {user_total}")
    print(f"  Bootstrap time       : {init_ms:>8.1f}ms")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    sys.exit(main())
