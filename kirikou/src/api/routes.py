"""
Kirikou - API Routes
=====================
``POST /api/guru``
    Chat endpoint.  Streams the answer as plain text, or (structured
    mode) returns ``{"_no_streaming_response_": true, "output", "sources"}``.
    A throttled caller receives the fixed rate-limit sentence through
    the same streaming channel.

``GET /health``
    Liveness probe.

Route handlers are thin controllers: they gate the caller, parse the
request, hand it to the ``ChatPipeline`` stored on ``app.state`` and
shape the response.  Admission comes first, so a throttled caller is
answered without its body being read.  Every failure is caught here,
logged and returned as ``{"error": message}`` with status 500.
"""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

from kirikou.src.core.messages import ChatMessage
from kirikou.src.core.pipeline import ChatPipeline, StructuredReply
from kirikou.src.core.rate_limiter import DEFAULT_IDENTITY
from kirikou.src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

_TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"


class ChatRequest(BaseModel):
    """Body of ``POST /api/guru``."""

    messages: list[ChatMessage] = Field(default_factory=list)
    show_intermediate_steps: bool | None = None


def _client_identity(request: Request) -> str:
    return request.client.host if request.client and request.client.host else DEFAULT_IDENTITY


async def _single(text: str) -> AsyncIterator[bytes]:
    yield text.encode("utf-8")


async def _encode(fragments: AsyncIterator[str]) -> AsyncIterator[bytes]:
    try:
        async for fragment in fragments:
            yield fragment.encode("utf-8")
    except Exception:
        # Headers are already sent; abort the body rather than end it cleanly
        logger.exception("[API] Answer stream failed mid-response.")
        raise


@router.post("/api/guru")
async def chat(request: Request):
    try:
        pipeline: ChatPipeline = request.app.state.pipeline
        # Admission is charged before the body is read or validated
        throttled = await pipeline.admit(_client_identity(request))
        if throttled is not None:
            return StreamingResponse(_single(throttled.message), media_type=_TEXT_MEDIA_TYPE)

        body = ChatRequest.model_validate(await request.json())
        outcome = await pipeline.respond(body.messages, body.show_intermediate_steps)

        if isinstance(outcome, StructuredReply):
            return JSONResponse(
                {"_no_streaming_response_": True, "output": outcome.output, "sources": outcome.sources},
                status_code=status.HTTP_200_OK,
            )

        return StreamingResponse(_encode(outcome.fragments), media_type=_TEXT_MEDIA_TYPE, background=BackgroundTask(outcome.close))

    except Exception as exc:
        logger.exception("[API] Chat request failed: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@router.get("/health")
async def health():
    return {"status": "ok"}
