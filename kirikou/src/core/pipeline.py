"""
Kirikou - Chat Pipeline
========================
Stateless request orchestrator.  Flow:
    1. Rate-limit gate → throttled reply, no agent work
    2. Normalise messages → history + current input
    3a. Streaming mode  → agent run-log events → stream filter
    3b. Structured mode → agent result → source extraction

The pipeline never recovers from a failure; every exception travels
up to the HTTP route.

Dependency injection
--------------------
The limiter and agent (and through them the Mongo, LanceDB, embedding
and model clients) are built once per process and passed in.  Nothing
here is constructed per request.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable, Iterable, Protocol, Sequence, Union

from langchain_core.messages import BaseMessage

from kirikou.config.prompt_templates import RATE_LIMIT_MESSAGE
from kirikou.src.core.agent import AgentResult
from kirikou.src.core.events import ExecutionEvent
from kirikou.src.core.messages import ChatMessage, normalize_messages
from kirikou.src.core.rate_limiter import AdmissionResult
from kirikou.src.core.sources import extract_sources
from kirikou.src.core.stream_filter import filter_answer_tokens
from kirikou.src.utils.logger import get_logger

logger = get_logger(__name__)


class RateLimiter(Protocol):
    async def admit(self, identity: str | None) -> AdmissionResult: ...


class Agent(Protocol):
    def stream_events(self, input_text: str, history: Sequence[BaseMessage] = ()) -> AsyncGenerator[ExecutionEvent, None]: ...

    async def run(self, input_text: str, history: Sequence[BaseMessage] = ()) -> AgentResult: ...


# ── Outcomes ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ThrottledReply:
    message: str = RATE_LIMIT_MESSAGE


@dataclass(frozen=True)
class StreamingReply:
    fragments: AsyncIterator[str]
    # Closes the underlying agent run; safe to call after the stream is done
    close: Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class StructuredReply:
    output: str
    sources: list[str]


PipelineOutcome = Union[ThrottledReply, StreamingReply, StructuredReply]


async def _prepend(first: str, rest: AsyncGenerator[str, None]) -> AsyncIterator[str]:
    try:
        yield first
        async for fragment in rest:
            yield fragment
    finally:
        await rest.aclose()


async def _empty() -> AsyncIterator[str]:
    return
    yield


def _closer(fragments: AsyncGenerator[str, None]) -> Callable[[], Awaitable[None]]:
    # A coroutine function, so Starlette awaits it as a background task
    async def close() -> None:
        await fragments.aclose()

    return close


class ChatPipeline:
    """
    Orchestrates one chat request: gate → normalise → agent → output.

    The gate runs on the bare identity (``admit``) so a throttled caller
    is answered before its body is even read; ``respond`` does the rest.
    ``run`` chains the two.

    Parameters
    ----------
    rate_limiter
        Admission gate (``SlidingWindowRateLimiter``).
    agent
        Tool-using agent (``KnowledgeAgent``).
    return_intermediate_steps
        Default mode when a request does not choose one.
    """

    __slots__ = ("_limiter", "_agent", "_structured_default")

    def __init__(self, rate_limiter: RateLimiter, agent: Agent, return_intermediate_steps: bool = False) -> None:
        self._limiter = rate_limiter
        self._agent = agent
        self._structured_default = return_intermediate_steps


    async def admit(self, identity: str | None) -> ThrottledReply | None:
        """``ThrottledReply`` when *identity* is over its budget, else ``None``."""
        admission = await self._limiter.admit(identity)
        if admission.allowed:
            return None
        logger.info("[PIPELINE] Throttled request from '%s'.", identity)
        return ThrottledReply()


    async def respond(self, raw_messages: Iterable[ChatMessage], show_intermediate_steps: bool | None = None) -> StreamingReply | StructuredReply:
        """Answer an already admitted request."""
        t_start = time.perf_counter()
        conversation = normalize_messages(raw_messages)
        structured = self._structured_default if show_intermediate_steps is None else show_intermediate_steps

        if structured:
            result = await self._agent.run(conversation.current_input, conversation.history)
            sources = extract_sources(result)
            logger.info("[PIPELINE] Structured reply in %.1fms (%d source(s)).", (time.perf_counter() - t_start) * 1000, len(sources))
            return StructuredReply(output=result.output, sources=sources)

        fragments = filter_answer_tokens(self._agent.stream_events(conversation.current_input, conversation.history))
        reply = await self._prime(fragments)
        logger.info("[PIPELINE] First fragment ready in %.1fms.", (time.perf_counter() - t_start) * 1000)
        return reply


    async def run(self, identity: str | None, raw_messages: Iterable[ChatMessage], show_intermediate_steps: bool | None = None) -> PipelineOutcome:
        throttled = await self.admit(identity)
        if throttled is not None:
            return throttled
        return await self.respond(raw_messages, show_intermediate_steps)


    @staticmethod
    async def _prime(fragments: AsyncGenerator[str, None]) -> StreamingReply:
        """
        Pull the first fragment before the response is committed.

        Failures raised before any answer text exists (retrieval,
        model errors) then surface as a request failure instead of a
        broken stream.  The reply's ``close`` shuts the agent run even
        if ``fragments`` is never iterated.
        """
        try:
            first = await anext(fragments)
        except StopAsyncIteration:
            return StreamingReply(fragments=_empty(), close=_closer(fragments))
        return StreamingReply(fragments=_prepend(first, fragments), close=_closer(fragments))
