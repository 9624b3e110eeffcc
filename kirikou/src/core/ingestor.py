"""
Kirikou - IngestionPipeline
============================
Offline job that turns crawled KNUST IDL pages into searchable chunks.

Input: ``*.jsonl`` (one page per line) or ``*.json`` (a list of pages)
in ``settings.DATA_RAW_DIR``, each page ``{"url", "content", "title"?}``.

Per page: domain guard (``knust.edu.gh`` only, so the agent can never
cite a foreign link) → ``clean_text`` → ``chunk_text`` → embed + store
with ``{url, title, chunk_index}``.

Dump files are ingested in parallel threads (embedding calls dominate
and release the GIL).  A file whose MD5 matches the previous run is
skipped entirely; a file that fails is logged and left out of the
cache so the next run retries it.
"""

from __future__ import annotations

import hashlib
import json
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Protocol

from kirikou.config.settings import settings
from kirikou.src.utils.logger import get_logger
from kirikou.src.utils.text_utils import clean_text, is_knust_url, title_from_url

logger = get_logger(__name__)

DUMP_SUFFIXES = (".jsonl", ".json")
# Coarsest boundary first: paragraph, line, sentence, word
CHUNK_SEPARATORS = ("\n\n", "\n", ". ", " ")

Page = dict[str, str]


class ChunkSink(Protocol):
    def add_documents(self, texts: list[str], metadatas: list[dict[str, str | int]]) -> int: ...


@dataclass
class IngestionSummary:
    total_files: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    total_chunks: int = 0
    elapsed_seconds: float = 0.0

    def as_dict(self) -> dict[str, int | float]:
        return asdict(self)


# ══════════════════════════════════════════════════════════════════════
#  CHUNKING
# ══════════════════════════════════════════════════════════════════════

def chunk_text(text: str, max_size: int, separators: tuple[str, ...] = CHUNK_SEPARATORS) -> list[str]:
    """
    Pack *text* into chunks of at most *max_size* characters.

    Pieces split on the coarsest separator are greedily re-joined up to
    the limit; a piece that is still too long is split on the next
    separator.  With no separator left the text is cut at the last
    space before the limit (or exactly at the limit).
    """
    if len(text) <= max_size:
        return [text] if text else []
    if not separators:
        return _cut(text, max_size)

    sep, finer = separators[0], separators[1:]
    pieces = [p.strip() for p in text.split(sep)]
    pieces = [p for p in pieces if p]
    if len(pieces) < 2:
        return chunk_text(text, max_size, finer)

    chunks: list[str] = []
    buffer = ""
    for piece in pieces:
        joined = f"{buffer}{sep}{piece}".strip() if buffer else piece
        if len(joined) <= max_size:
            buffer = joined
            continue
        if buffer:
            chunks.append(buffer)
            buffer = ""
        if len(piece) <= max_size:
            buffer = piece
        else:
            chunks.extend(chunk_text(piece, max_size, finer))
    if buffer:
        chunks.append(buffer)
    return chunks


def _cut(text: str, max_size: int) -> list[str]:
    chunks: list[str] = []
    rest = text
    while len(rest) > max_size:
        cut_at = rest.rfind(" ", 0, max_size + 1)
        if cut_at <= 0:
            cut_at = max_size
        chunks.append(rest[:cut_at].strip())
        rest = rest[cut_at:].lstrip()
    chunks.append(rest.strip())
    return [c for c in chunks if c]


# ══════════════════════════════════════════════════════════════════════
#  PAGE DUMPS
# ══════════════════════════════════════════════════════════════════════

def load_pages(path: Path) -> list[Page]:
    """
    Read one page dump.

    Raises
    ------
    ValueError
        Not a list of objects, or a page without ``url`` / ``content``.
    """
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".jsonl":
        records = [json.loads(line) for line in raw.splitlines() if line.strip()]
    else:
        records = json.loads(raw)
        if not isinstance(records, list):
            raise ValueError(f"{path.name}: expected a JSON list of pages.")

    pages: list[Page] = []
    for n, record in enumerate(records, start=1):
        if not isinstance(record, dict) or not record.get("url") or "content" not in record:
            raise ValueError(f"{path.name}: page {n} needs 'url' and 'content'.")
        pages.append({"url": str(record["url"]), "content": str(record["content"]), "title": str(record.get("title") or "")})
    return pages


class FileHashCache:
    """``{file name: md5}`` of dumps already ingested, persisted as JSON."""

    __slots__ = ("_path", "_hashes")

    def __init__(self, path: Path) -> None:
        self._path = path
        self._hashes: dict[str, str] = {}
        if path.exists():
            try:
                self._hashes = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError):
                logger.warning("[INGEST] Unreadable hash cache %s; re-ingesting everything.", path)

    @staticmethod
    def digest(path: Path) -> str:
        md5 = hashlib.md5()
        with open(path, "rb") as fh:
            for block in iter(lambda: fh.read(1 << 16), b""):
                md5.update(block)
        return md5.hexdigest()

    def is_current(self, path: Path, digest: str) -> bool:
        return self._hashes.get(path.name) == digest

    def record(self, path: Path, digest: str) -> None:
        self._hashes[path.name] = digest

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._hashes, indent=2, sort_keys=True), encoding="utf-8")


# ══════════════════════════════════════════════════════════════════════
#  PIPELINE
# ══════════════════════════════════════════════════════════════════════

class IngestionPipeline:
    """
    Load → guard → clean → chunk → store, one worker thread per dump file.

    Parameters
    ----------
    vector_store
        Destination for the chunks (``KnowledgeVectorStore``).
    source_dir
        Defaults to ``settings.DATA_RAW_DIR``.
    chunk_size
        Defaults to ``settings.CHUNK_SIZE``.
    max_workers
        Defaults to ``settings.MAX_WORKERS``.
    hash_cache_path
        Defaults to ``settings.DATA_PROCESSED_DIR / "ingestion_hashes.json"``.
    force
        Ingest every dump even when its hash is cached (table rebuilds).
    """

    __slots__ = ("_store", "_source_dir", "_chunk_size", "_max_workers", "_cache", "_force")

    def __init__(self, vector_store: ChunkSink, source_dir: Path | None = None, chunk_size: int | None = None, max_workers: int | None = None, hash_cache_path: Path | None = None, force: bool = False) -> None:
        self._store = vector_store
        self._source_dir = Path(source_dir or settings.DATA_RAW_DIR)
        self._chunk_size = chunk_size or settings.CHUNK_SIZE
        self._max_workers = max_workers or settings.MAX_WORKERS
        self._cache = FileHashCache(hash_cache_path or settings.DATA_PROCESSED_DIR / "ingestion_hashes.json")
        self._force = force


    def run(self) -> IngestionSummary:
        t_start = time.perf_counter()
        summary = IngestionSummary()

        dumps = sorted(p for p in self._source_dir.glob("*") if p.suffix.lower() in DUMP_SUFFIXES) if self._source_dir.is_dir() else []
        if not dumps:
            logger.warning("[INGEST] No page dumps in %s", self._source_dir)
            return summary

        summary.total_files = len(dumps)
        logger.info("[INGEST] %d dump file(s) in %s", len(dumps), self._source_dir)

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            jobs = {pool.submit(self._ingest_dump, path): path for path in dumps}
            for job in as_completed(jobs):
                path = jobs[job]
                try:
                    added = job.result()
                except Exception:
                    logger.exception("[INGEST] %s failed; it will be retried next run.", path.name)
                    summary.files_failed += 1
                    continue
                if added is None:
                    summary.files_skipped += 1
                else:
                    summary.files_processed += 1
                    summary.total_chunks += added

        self._cache.save()
        summary.elapsed_seconds = round(time.perf_counter() - t_start, 2)
        logger.info("[INGEST] Done: %s", summary.as_dict())
        return summary


    def _ingest_dump(self, path: Path) -> int | None:
        """Chunks stored for *path*, or ``None`` when it is unchanged."""
        digest = FileHashCache.digest(path)
        if not self._force and self._cache.is_current(path, digest):
            logger.info("[INGEST] %s unchanged; skipped.", path.name)
            return None

        texts: list[str] = []
        metadatas: list[dict[str, str | int]] = []
        for page in load_pages(path):
            url = page["url"]
            if not is_knust_url(url):
                logger.warning("[INGEST] Off-domain page dropped: %s", url)
                continue
            body = clean_text(page["content"])
            if not body:
                continue
            title = page["title"] or title_from_url(url)
            for index, chunk in enumerate(chunk_text(body, self._chunk_size)):
                texts.append(chunk)
                metadatas.append({"url": url, "title": title, "chunk_index": index})

        added = self._store.add_documents(texts, metadatas) if texts else 0
        self._cache.record(path, digest)
        logger.info("[INGEST] %s → %d chunk(s).", path.name, added)
        return added
