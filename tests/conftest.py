"""
Pytest configuration

Seeds the required settings before any ``kirikou`` module is imported
and provides in-memory stand-ins for the Mongo collection, the vector
store, the rate limiter and the agent.
"""

import os
from typing import Any

import pytest

# Settings() is instantiated at import time and needs both secrets
os.environ.setdefault("GOOGLE_API_KEY", "test-google-api-key")
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("ENV", "dev")

from kirikou.src.core.agent import AgentResult  # noqa: E402
from kirikou.src.core.rate_limiter import AdmissionResult  # noqa: E402


class FakeCollection:
    """Dict-backed subset of ``AsyncIOMotorCollection`` used by the limiter."""

    def __init__(self):
        self.docs: dict[str, dict[str, Any]] = {}
        self.indexes: list[tuple[str, dict]] = []

    async def create_index(self, key, **kwargs):
        self.indexes.append((key, kwargs))
        return f"{key}_1"

    async def find_one_and_update(self, filter, update, upsert=False, return_document=None):
        doc = self.docs.get(filter["_id"])
        if doc is None:
            if not upsert:
                return None
            doc = {"_id": filter["_id"], **update.get("$setOnInsert", {})}
            self.docs[filter["_id"]] = doc
        self._inc(doc, update)
        return dict(doc)

    async def find_one(self, filter):
        doc = self.docs.get(filter["_id"])
        return dict(doc) if doc is not None else None

    async def update_one(self, filter, update):
        doc = self.docs.get(filter["_id"])
        if doc is not None:
            self._inc(doc, update)

    @staticmethod
    def _inc(doc, update):
        for field, amount in update.get("$inc", {}).items():
            doc[field] = doc.get(field, 0) + amount


class FakeVectorStore:
    """Returns canned passages and records every MMR call."""

    def __init__(self, results=None):
        self.results = results if results is not None else make_store_rows(6)
        self.calls: list[dict[str, Any]] = []

    def max_marginal_relevance_search(self, query_text, k=6, fetch_k=20, lambda_mult=0.5):
        self.calls.append({"query": query_text, "k": k, "fetch_k": fetch_k, "lambda_mult": lambda_mult})
        return self.results[:k]


class FakeRateLimiter:
    def __init__(self, allowed=True, error=None):
        self.allowed = allowed
        self.error = error
        self.identities: list[str | None] = []

    async def admit(self, identity):
        self.identities.append(identity)
        if self.error is not None:
            raise self.error
        return AdmissionResult(allowed=self.allowed, limit=1, remaining=0 if not self.allowed else 1, reset_at=0.0)


class FakeAgent:
    """
    Scripted agent.

    ``events`` are yielded by ``stream_events`` (an ``Exception`` item is
    raised at that position); ``result`` is returned by ``run``.
    """

    def __init__(self, events=(), result=None):
        self.events = list(events)
        self.result = result if result is not None else AgentResult(output="")
        self.stream_calls: list[tuple[str, tuple]] = []
        self.run_calls: list[tuple[str, tuple]] = []
        self.closed = False

    async def stream_events(self, input_text, history=()):
        self.stream_calls.append((input_text, tuple(history)))
        try:
            for event in self.events:
                if isinstance(event, Exception):
                    raise event
                yield event
        finally:
            self.closed = True

    async def run(self, input_text, history=()):
        self.run_calls.append((input_text, tuple(history)))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def make_store_rows(n):
    return [
        {
            "text": f"Passage {i} about distance learning.",
            "url": f"https://idl.knust.edu.gh/page-{i}",
            "title": f"Page {i}",
            "chunk_index": 0,
            "_distance": 0.1 * i,
        }
        for i in range(n)
    ]


@pytest.fixture
def fake_collection():
    return FakeCollection()


@pytest.fixture
def fake_store():
    return FakeVectorStore()


@pytest.fixture
def fake_limiter_cls():
    return FakeRateLimiter


@pytest.fixture
def fake_agent_cls():
    return FakeAgent
