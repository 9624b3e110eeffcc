"""
Kirikou - Retrieval Tool Adapter
=================================
Wraps the vector store's MMR search as a LangChain ``StructuredTool``
the agent can decide to call.

Observation format
------------------
The model sees one JSON object per passage, separated by a blank
line::

    {"content": "...", "url": "https://idl.knust.edu.gh/...", "title": "..."}

    {"content": "...", "url": "...", "title": "..."}

The same records travel as the tool message *artifact*, so callers can
read source URLs without parsing the observation text.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Protocol

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field

from kirikou.config.prompt_templates import SEARCH_TOOL_DESCRIPTION, SEARCH_TOOL_NAME
from kirikou.src.utils.logger import get_logger

logger = get_logger(__name__)

PASSAGE_SEPARATOR = "\n\n"

Passage = dict[str, str]


class MMRSearcher(Protocol):
    """Anything exposing the store's diversity-aware search."""

    def max_marginal_relevance_search(self, query_text: str, k: int = 6, fetch_k: int = 20, lambda_mult: float = 0.5) -> list[dict[str, Any]]: ...


class SearchInput(BaseModel):
    """Arguments of the retrieval tool."""

    query: str = Field(description="Search query describing the information needed.")


def to_passage(result: dict[str, Any]) -> Passage:
    """Project a vector-store row onto the fields shown to the model."""
    return {"content": str(result.get("text", "")), "url": str(result.get("url", "")), "title": str(result.get("title", ""))}


def format_passages(passages: list[Passage]) -> str:
    """Render passages as blank-line separated JSON objects."""
    return PASSAGE_SEPARATOR.join(json.dumps(p, ensure_ascii=False) for p in passages)


def build_retrieval_tool(store: MMRSearcher, k: int = 6, fetch_k: int = 20, lambda_mult: float = 0.5, name: str = SEARCH_TOOL_NAME, description: str = SEARCH_TOOL_DESCRIPTION) -> StructuredTool:
    """
    Create the agent's retrieval tool.

    Parameters
    ----------
    store
        Vector store implementing ``max_marginal_relevance_search``.
    k, fetch_k, lambda_mult
        MMR selection policy: ``k`` passages out of ``fetch_k``
        neighbours, ``lambda_mult`` trading relevance for diversity.

    Returns
    -------
    StructuredTool
        Tool with ``content_and_artifact`` output: the JSON text for the
        model, the passage list as artifact.
    """

    def _search(query: str) -> tuple[str, list[Passage]]:
        results = store.max_marginal_relevance_search(query, k=k, fetch_k=fetch_k, lambda_mult=lambda_mult)
        passages = [to_passage(r) for r in results]
        logger.info("[TOOL] %s(%r) → %d passage(s).", name, query[:60], len(passages))
        return format_passages(passages), passages

    async def _asearch(query: str) -> tuple[str, list[Passage]]:
        # LanceDB and the embedding client are blocking
        return await asyncio.to_thread(_search, query)

    return StructuredTool.from_function(
        func=_search,
        coroutine=_asearch,
        name=name,
        description=description,
        args_schema=SearchInput,
        response_format="content_and_artifact",
    )
