"""
Kirikou - Stream Filter
========================
Reduces the agent's execution-event stream to the final answer text.

Emission rule: forward an event **iff** it is a ``ModelToken`` with
non-empty text.  Tool starts, tool observations, empty function-call
chunks and every other log entry are dropped, so retrieved context and
intermediate reasoning never reach the client.

The filter is a single-consumer async generator: it pulls one event,
decides, and only then pulls the next, preserving token order.  A
failure in the source stream propagates out of the filter unchanged.
"""

from __future__ import annotations

from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterator

from kirikou.src.core.events import ExecutionEvent, ModelToken, ToolEvent
from kirikou.src.utils.logger import get_logger

logger = get_logger(__name__)


async def filter_answer_tokens(events: AsyncGenerator[ExecutionEvent, None]) -> AsyncIterator[str]:
    """Yield the non-empty model tokens of *events*, in order. Closing the filter closes *events*."""
    emitted = 0
    dropped = 0

    async with aclosing(events):
        async for event in events:
            if isinstance(event, ModelToken):
                if event.text:
                    emitted += 1
                    yield event.text
                    continue
            elif isinstance(event, ToolEvent):
                logger.debug("[STREAM] Suppressed tool event: %s", event.path)
            dropped += 1

    logger.info("[STREAM] Source closed: %d fragment(s) emitted, %d event(s) dropped.", emitted, dropped)
