"""
Kirikou - Knowledge Base Setup
===============================
Builds (or refreshes) the LanceDB knowledge base the agent searches.

    python -m kirikou.scripts.setup_db               # incremental: changed dumps only
    python -m kirikou.scripts.setup_db --drop        # rebuild table from every dump
    python -m kirikou.scripts.setup_db --purge       # rebuild table and forget hashes
    python -m kirikou.scripts.setup_db --drop-only   # empty the knowledge base

Installed as the ``kirikou-setup-db`` console script.
"""

from __future__ import annotations

import argparse
import sys
import time

from pydantic import ValidationError


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="kirikou-setup-db", description="Ingest crawled KNUST IDL pages into the Kirikou knowledge base.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--drop", action="store_true", help="drop the table and re-ingest every dump (hash cache is rewritten)")
    mode.add_argument("--purge", action="store_true", help="drop the table and the hash cache, then ingest everything")
    mode.add_argument("--drop-only", action="store_true", help="drop the table and exit")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    try:
        from kirikou.config.settings import settings
    except ValidationError as exc:
        print(f"\n[FATAL] Invalid configuration (check .env):\n\n{exc}\n", file=sys.stderr)
        return 1

    from langchain_google_genai import GoogleGenerativeAIEmbeddings

    from kirikou.src.core.ingestor import IngestionPipeline
    from kirikou.src.database.vector_store import KnowledgeVectorStore
    from kirikou.src.utils.logger import get_logger

    logger = get_logger("kirikou.setup_db")
    _banner(settings)

    embedder = GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
    store = KnowledgeVectorStore(embedder)
    cache_path = settings.DATA_PROCESSED_DIR / "ingestion_hashes.json"

    if args.drop or args.purge or args.drop_only:
        store.drop_table()
        if args.purge and cache_path.exists():
            cache_path.unlink()
            logger.warning("[SETUP] Hash cache removed: %s", cache_path)
        if args.drop_only:
            print("Knowledge base dropped.")
            return 0

    startup_s = time.perf_counter() - t_start
    rebuild = args.drop or args.purge
    summary = IngestionPipeline(store, hash_cache_path=cache_path, force=rebuild).run()
    _report(summary, store.count(), startup_s, time.perf_counter() - t_start)
    return 0 if summary.files_failed == 0 else 2


def _banner(settings) -> None:
    key = settings.GOOGLE_API_KEY.get_secret_value()
    rows = [
        ("Environment", settings.ENV),
        ("Embedding", settings.EMBEDDING_MODEL),
        ("LanceDB", f"{settings.LANCEDB_PATH} :: {settings.LANCEDB_TABLE_NAME}"),
        ("Page dumps", settings.DATA_RAW_DIR),
        ("Chunk size", f"{settings.CHUNK_SIZE} chars"),
        ("Workers", settings.MAX_WORKERS),
        ("API key", f"****{key[-4:]}" if len(key) > 4 else "****"),
    ]
    print("\n" + "=" * 60 + "\n  KIRIKOU knowledge base setup\n" + "=" * 60)
    for label, value in rows:
        print(f"  {label:<12}: {value}")
    print("=" * 60 + "\n")


def _report(summary, rows: int, startup_s: float, total_s: float) -> None:
    print("\n" + "=" * 60)
    print(f"  Dump files      : {summary.total_files}")
    print(f"    ingested      : {summary.files_processed}")
    print(f"    unchanged     : {summary.files_skipped}")
    print(f"    failed        : {summary.files_failed}")
    print(f"  Chunks added    : {summary.total_chunks}")
    print(f"  Chunks in table : {rows}")
    print("-" * 60)
    print(f"  Startup {startup_s:.2f}s | ingestion {summary.elapsed_seconds:.2f}s | total {total_s:.2f}s")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    sys.exit(main())
