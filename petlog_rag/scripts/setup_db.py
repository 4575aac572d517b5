"""
Petlog RAG - Vector Index Setup & Smoke Query
==============================================
CLI entry point that:
    1. Loads settings (fail-fast on configuration errors).
    2. Opens (or creates) the LanceDB memory table with the configured
       dimension; optionally drops it first.
    3. Optionally runs one retrieval end-to-end and prints the context.
    4. Prints a summary with a timing breakdown.

Flags:
    --drop          Drop the memory table before re-creating it.
    --drop-only     Drop the memory table and exit.
    --query TEXT    Run a retrieval for TEXT after setup.
    --owner-id N    Owner filter for --query.
    --sub-owner-id N  Sub-owner filter for --query.
    --top-k N       Results wanted for --query.
    --min-score F   Blended-score threshold for --query.
    --chat          Also generate a persona chat answer for --query.

Usage:
    python -m petlog_rag.scripts.setup_db
    python -m petlog_rag.scripts.setup_db --drop
    python -m petlog_rag.scripts.setup_db --query "기침" --owner-id 1 --sub-owner-id 5
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="Petlog RAG — initialise the memory vector index and optionally run a test retrieval.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop the memory table before re-creating it.")
    parser.add_argument("--drop-only", action="store_true", default=False, help="Drop the memory table and exit.")
    parser.add_argument("--query", default=None, help="Run one retrieval for this text after setup.")
    parser.add_argument("--owner-id", type=int, default=None, help="Owner filter for --query.")
    parser.add_argument("--sub-owner-id", type=int, default=None, help="Sub-owner filter for --query.")
    parser.add_argument("--top-k", type=int, default=None, help="Results wanted for --query.")
    parser.add_argument("--min-score", type=float, default=None, help="Blended-score threshold for --query.")
    parser.add_argument("--chat", action="store_true", default=False, help="Answer --query as the persona chat (needs GOOGLE_API_KEY).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    # ── 0. Load settings + .env (timed) ────────────────────────────────
    t_settings = time.perf_counter()
    try:
        from petlog_rag.config.settings import RetrievalConfig, settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)
    settings_ms = (time.perf_counter() - t_settings) * 1000

    from petlog_rag.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Settings loaded in %.1fms", settings_ms)

    _print_header(settings)

    # ── 1. Open the vector index (timed) ───────────────────────────────
    from petlog_rag.src.database.vector_store import MemoryVectorIndex

    t_lancedb = time.perf_counter()
    index = MemoryVectorIndex()
    if args.drop or args.drop_only:
        logger.warning("Dropping table '%s' as requested.", settings.LANCEDB_TABLE_NAME)
        index.drop_table()
        if args.drop_only:
            _print_footer(0, None, time.perf_counter() - t_start, settings_ms, (time.perf_counter() - t_lancedb) * 1000)
            return
        index = MemoryVectorIndex()
    lancedb_ms = (time.perf_counter() - t_lancedb) * 1000
    logger.info("Index ready — table '%s' (%d rows) in %.1fms.", settings.LANCEDB_TABLE_NAME, index.count(), lancedb_ms)

    # ── 2. Optional smoke retrieval ────────────────────────────────────
    retrieved_ids: list[int] | None = None
    if args.query:
        from petlog_rag.src.core.embedder import build_embedder
        from petlog_rag.src.core.rag_engine import MemoryRetriever
        from petlog_rag.src.database.record_store import MongoRecordStore

        try:
            embedder = build_embedder(settings)
        except Exception:
            logger.exception("Failed to initialise embedding model.")
            sys.exit(1)

        generate = None
        if args.chat:
            from petlog_rag.src.core.rag_engine import build_text_generator

            try:
                generate = build_text_generator(settings)
            except Exception:
                logger.exception("Failed to initialise chat model.")
                sys.exit(1)

        retriever = MemoryRetriever(embedder, index, MongoRecordStore(), RetrievalConfig.from_settings(settings))
        result, answer = asyncio.run(_smoke_query(retriever, generate, args))
        retrieved_ids = result.record_ids

        print()
        print(f"Query: {args.query}")
        print("-" * 60)
        print(result.context)
        if answer is not None:
            print("-" * 60)
            print(answer)

    _print_footer(index.count(), retrieved_ids, time.perf_counter() - t_start, settings_ms, lancedb_ms)


async def _smoke_query(retriever: object, generate: object, args: argparse.Namespace) -> tuple[object, str | None]:
    """Run the retrieval (and optional chat reply) on one event loop."""
    from petlog_rag.src.core.rag_engine import PersonaChat

    result = await retriever.retrieve(args.query, owner_id=args.owner_id, sub_owner_id=args.sub_owner_id, top_k=args.top_k, min_score=args.min_score)  # type: ignore[attr-defined]
    if generate is None:
        return result, None
    reply = await PersonaChat(retriever, generate).reply(args.owner_id, args.sub_owner_id, args.query)  # type: ignore[arg-type]
    return result, reply.answer


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object) -> None:
    mongo_uri_val = settings.MONGO_URI.get_secret_value()  # type: ignore[attr-defined]
    mongo_masked = mongo_uri_val.split("@")[-1] if "@" in mongo_uri_val else mongo_uri_val

    print()
    print("=" * 60)
    print("  PETLOG RAG — Memory Index Setup")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                          # type: ignore[attr-defined]
    print(f"  Embedding    : {settings.EMBEDDING_PROVIDER} ({settings.EMBEDDING_DIMENSION}-d)")  # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")                 # type: ignore[attr-defined]
    print(f"  Table        : {settings.LANCEDB_TABLE_NAME}")           # type: ignore[attr-defined]
    print(f"  MongoDB      : {mongo_masked} (db: {settings.MONGO_DB_NAME})")  # type: ignore[attr-defined]
    print(f"  Top-K / min  : {settings.SEARCH_TOP_K} / {settings.MIN_SCORE}")  # type: ignore[attr-defined]
    print("=" * 60)
    print()


def _print_footer(rows: int, retrieved_ids: list[int] | None, elapsed: float, settings_ms: float, lancedb_ms: float) -> None:
    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    print(f"  Rows in index        : {rows}")
    if retrieved_ids is not None:
        print(f"  Retrieved record ids : {retrieved_ids or '(none)'}")
    print("-" * 60)
    print("  TIMING BREAKDOWN")
    print("-" * 60)
    print(f"  Settings + .env load : {settings_ms:>8.1f}ms")
    print(f"  LanceDB connection   : {lancedb_ms:>8.1f}ms")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


if __name__ == "__main__":
    main()
