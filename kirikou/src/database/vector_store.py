"""
Kirikou - KnowledgeVectorStore
===============================
LanceDB table of embedded IDL page chunks, searched by the agent's
retrieval tool.

Row layout: ``vector`` (fixed-size float32), ``text``, ``url``,
``title``, ``chunk_index``.  The vector width depends on the embedding
model, so the table is created lazily from the first embedded batch.

Search is two-stage: ``fetch_k`` nearest neighbours come back from
LanceDB with their vectors, then ``langchain_core``'s
``maximal_marginal_relevance`` keeps ``k`` of them, trading relevance
against redundancy.  Crawled pages repeat navigation text and notices,
so pure top-k would often hand the model near-identical passages.

Connections are cached per directory (one ``DBConnection`` per path per
process); the embedder is injected.

Usage:
    store = KnowledgeVectorStore(GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL))
    store.add_documents(["IDL admissions open..."], [{"url": "https://idl.knust.edu.gh/admissions", "title": "Admissions", "chunk_index": 0}])
    rows = store.max_marginal_relevance_search("admission requirements", k=6, fetch_k=20, lambda_mult=0.5)
"""

from __future__ import annotations

import threading
from typing import Any, Protocol, runtime_checkable

import lancedb
import numpy as np
import pyarrow as pa
from langchain_core.vectorstores.utils import maximal_marginal_relevance

from kirikou.config.settings import settings
from kirikou.src.utils.logger import get_logger

logger = get_logger(__name__)

ChunkMetadata = dict[str, str | int]
StoreRow = dict[str, Any]

_EMBED_BATCH_SIZE = 64
_CONNECTIONS: dict[str, lancedb.DBConnection] = {}
_CONNECTIONS_LOCK = threading.Lock()


@runtime_checkable
class Embedder(Protocol):
    """What the store needs from an embedding model (LangChain ``Embeddings``)."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


def knowledge_schema(dimension: int) -> pa.Schema:
    """Chunk table schema; the vector column is fixed-size so it can be searched."""
    return pa.schema([
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("text", pa.utf8()),
        pa.field("url", pa.utf8()),
        pa.field("title", pa.utf8()),
        pa.field("chunk_index", pa.int32()),
    ])


def _connection_for(db_path: str) -> lancedb.DBConnection:
    with _CONNECTIONS_LOCK:
        if db_path not in _CONNECTIONS:
            logger.info("[STORE] Connecting to LanceDB at %s", db_path)
            _CONNECTIONS[db_path] = lancedb.connect(db_path)
        return _CONNECTIONS[db_path]


class KnowledgeVectorStore:
    """
    IDL page-chunk store with MMR search.

    Parameters
    ----------
    embedder : Embedder
        Embeds chunks at ingestion and queries at search time.
    db_path
        LanceDB directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Defaults to ``settings.LANCEDB_TABLE_NAME``.
    """

    __slots__ = ("embedder", "_db_path", "_table_name", "db", "table")

    def __init__(self, embedder: Embedder, db_path: str | None = None, table_name: str | None = None) -> None:
        self.embedder = embedder
        self._db_path = str(db_path or settings.LANCEDB_PATH)
        self._table_name = table_name or settings.LANCEDB_TABLE_NAME
        self.db = _connection_for(self._db_path)
        self.table: lancedb.table.Table | None = None

        if self._table_name in self.db.table_names():
            self.table = self.db.open_table(self._table_name)
            logger.info("[STORE] Table '%s' holds %d chunk(s).", self._table_name, self.table.count_rows())
        else:
            logger.info("[STORE] Table '%s' absent; created on first insert.", self._table_name)

    # ══════════════════════════════════════════════════════════════════
    #  WRITE PATH (ingestion)
    # ══════════════════════════════════════════════════════════════════

    def add_documents(self, texts: list[str], metadatas: list[ChunkMetadata]) -> int:
        """
        Embed *texts* in batches and append them with their page metadata.

        Returns
        -------
        int
            Rows written.

        Raises
        ------
        ValueError
            ``texts`` and ``metadatas`` differ in length.
        """
        if len(texts) != len(metadatas):
            raise ValueError(f"{len(texts)} texts but {len(metadatas)} metadata entries.")
        if not texts:
            return 0

        vectors: list[list[float]] = []
        for start in range(0, len(texts), _EMBED_BATCH_SIZE):
            batch = texts[start : start + _EMBED_BATCH_SIZE]
            try:
                vectors.extend(self.embedder.embed_documents(batch))
            except Exception:
                logger.error("[STORE] Embedding failed for chunks %d..%d.", start, start + len(batch) - 1)
                raise

        rows = [
            {"vector": vector, "text": text, "url": str(meta.get("url", "")), "title": str(meta.get("title", "")), "chunk_index": int(meta.get("chunk_index", 0))}
            for text, vector, meta in zip(texts, vectors, metadatas)
        ]

        with _CONNECTIONS_LOCK:
            if self.table is None:
                self.table = self._open_or_create(len(vectors[0]))
        self.table.add(rows)

        logger.info("[STORE] +%d chunk(s) → '%s'.", len(rows), self._table_name)
        return len(rows)


    def _open_or_create(self, dimension: int) -> lancedb.table.Table:
        # Another store on the same directory may have created it meanwhile
        if self._table_name in self.db.table_names():
            return self.db.open_table(self._table_name)
        logger.info("[STORE] Creating table '%s' (dimension %d).", self._table_name, dimension)
        return self.db.create_table(self._table_name, schema=knowledge_schema(dimension))

    # ══════════════════════════════════════════════════════════════════
    #  READ PATH (retrieval tool)
    # ══════════════════════════════════════════════════════════════════

    def max_marginal_relevance_search(self, query_text: str, k: int = 6, fetch_k: int = 20, lambda_mult: float = 0.5) -> list[StoreRow]:
        """
        Diversity-aware retrieval.

        Parameters
        ----------
        query_text
            Search query written by the agent.
        k
            Rows returned.
        fetch_k
            Nearest neighbours re-ranked.
        lambda_mult
            1.0 ranks by relevance only, 0.0 by diversity only.

        Returns
        -------
        list[StoreRow]
            Rows in selection order, without the ``vector`` column.

        Raises
        ------
        RuntimeError
            Nothing has been ingested yet.
        """
        if self.table is None:
            raise RuntimeError(f"Knowledge table '{self._table_name}' does not exist. Run the setup_db ingestion first.")

        query_vector = self.embedder.embed_query(query_text)
        candidates = self.table.search(query_vector).limit(fetch_k).to_list()
        if not candidates:
            logger.info("[STORE] No candidates for query.")
            return []

        picked = maximal_marginal_relevance(
            np.array(query_vector, dtype=np.float32),
            [row["vector"] for row in candidates],
            lambda_mult=lambda_mult,
            k=min(k, len(candidates)),
        )
        results = [{key: value for key, value in candidates[i].items() if key != "vector"} for i in picked]
        logger.debug("[STORE] MMR kept %d of %d candidate(s) (lambda=%.2f).", len(results), len(candidates), lambda_mult)
        return results

    # ══════════════════════════════════════════════════════════════════
    #  MAINTENANCE
    # ══════════════════════════════════════════════════════════════════

    def count(self) -> int:
        return self.table.count_rows() if self.table is not None else 0


    def drop_table(self) -> None:
        """Delete the chunk table, if present (full re-ingestion)."""
        if self._table_name not in self.db.table_names():
            logger.warning("[STORE] Table '%s' not present; nothing to drop.", self._table_name)
            self.table = None
            return
        self.db.drop_table(self._table_name)
        self.table = None
        logger.info("[STORE] Dropped table '%s'.", self._table_name)


    def __repr__(self) -> str:
        return f"KnowledgeVectorStore(db='{self._db_path}', table='{self._table_name}', rows={self.count()})"
