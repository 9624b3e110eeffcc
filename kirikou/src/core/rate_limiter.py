"""
Kirikou - Sliding-Window Rate Limiter
======================================
Per-identity admission control backed by a shared MongoDB collection.

Algorithm
---------
Time is cut into fixed windows of ``window_seconds``.  The request
count of the *previous* window is weighted by how much of it still
overlaps the sliding window ending now::

    estimate = floor(previous × (1 − elapsed_fraction)) + current

The current-window counter is incremented atomically *first*
(``find_one_and_update`` + ``$inc``).  When the resulting estimate
exceeds ``limit`` the increment is rolled back and the caller is
rejected, so concurrent requests from one identity can never both be
admitted past the limit and rejected attempts never consume budget.

Counter documents expire through a TTL index on ``expires_at``.

Failure policy
--------------
Fail-closed.  Any ``PyMongoError`` is re-raised as ``AdmissionError``;
an unreachable backend never lets a request through.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from kirikou.src.core.exceptions import AdmissionError
from kirikou.src.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_IDENTITY = "127.0.0.1"


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of one ``admit`` call."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float


class SlidingWindowRateLimiter:
    """
    Sliding-window limiter over an async (``motor``) collection.

    Parameters
    ----------
    collection
        ``AsyncIOMotorCollection`` holding one counter document per
        identity and window.
    limit
        Admissions allowed per window.
    window_seconds
        Window length.
    prefix
        Namespace for counter keys, so several limiters can share one
        collection.
    clock
        Returns the current UNIX time in seconds.
    """

    __slots__ = ("_collection", "_limit", "_window", "_prefix", "_clock")

    def __init__(self, collection: Any, limit: int = 1, window_seconds: int = 10, prefix: str = "kirikou", clock: Callable[[], float] = time.time) -> None:
        if limit < 1 or window_seconds < 1:
            raise ValueError(f"limit and window_seconds must be ≥ 1, got {limit} / {window_seconds}")
        self._collection = collection
        self._limit = limit
        self._window = window_seconds
        self._prefix = prefix
        self._clock = clock


    async def ensure_indexes(self) -> None:
        """Create the TTL index that reaps stale window counters."""
        try:
            await self._collection.create_index("expires_at", expireAfterSeconds=0)
        except PyMongoError as exc:
            raise AdmissionError(f"Rate limiter index setup failed: {exc}") from exc
        logger.info("[RATE] TTL index ensured (limit=%d per %ds).", self._limit, self._window)


    async def admit(self, identity: str | None) -> AdmissionResult:
        """
        Try to admit one request for *identity*.

        Raises
        ------
        AdmissionError
            The counter store failed; the request must not proceed.
        """
        identity = identity or DEFAULT_IDENTITY
        now = self._clock()
        window_index = int(now // self._window)
        elapsed_fraction = (now % self._window) / self._window
        current_key = self._key(identity, window_index)
        previous_key = self._key(identity, window_index - 1)
        reset_at = float((window_index + 1) * self._window)

        try:
            current_doc = await self._collection.find_one_and_update(
                {"_id": current_key},
                {"$inc": {"count": 1}, "$setOnInsert": {"expires_at": self._expiry(window_index)}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
            previous_doc = await self._collection.find_one({"_id": previous_key})

            current_count = int(current_doc["count"]) if current_doc else 1
            previous_count = int(previous_doc["count"]) if previous_doc else 0
            weighted_previous = math.floor(previous_count * (1 - elapsed_fraction))
            estimate = weighted_previous + current_count

            if estimate > self._limit:
                await self._collection.update_one({"_id": current_key}, {"$inc": {"count": -1}})
                logger.warning("[RATE] Throttled '%s' (estimate=%d, limit=%d).", identity, estimate, self._limit)
                return AdmissionResult(allowed=False, limit=self._limit, remaining=0, reset_at=reset_at)

        except PyMongoError as exc:
            logger.error("[RATE] Counter store failure for '%s': %s", identity, exc)
            raise AdmissionError(f"Rate limiter backend unavailable: {exc}") from exc

        logger.debug("[RATE] Admitted '%s' (estimate=%d, limit=%d).", identity, estimate, self._limit)
        return AdmissionResult(allowed=True, limit=self._limit, remaining=self._limit - estimate, reset_at=reset_at)


    def _key(self, identity: str, window_index: int) -> str:
        return f"{self._prefix}:{identity}:{window_index}"


    def _expiry(self, window_index: int) -> datetime:
        # Still needed as the "previous" window of the next one
        end = (window_index + 2) * self._window
        return datetime.fromtimestamp(end, tz=timezone.utc) + timedelta(seconds=1)
