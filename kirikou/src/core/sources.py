"""
Kirikou - Source Extraction
============================
Structured mode returns the answer together with the URLs of the
passages the agent retrieved.  Sources come from the **first**
intermediate step only.

Two inputs are understood:

1. a typed artifact (list of passage records) attached by the
   retrieval tool, read directly;
2. a plain-text observation made of JSON objects separated by blank
   lines, repaired into a JSON array and parsed.

Anything else raises ``SourceExtractionError``; an empty or guessed
source list is never returned in place of a failure.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

from kirikou.src.core.agent import AgentResult
from kirikou.src.core.exceptions import SourceExtractionError
from kirikou.src.utils.logger import get_logger

logger = get_logger(__name__)

_OBJECT_BOUNDARY = "}\n\n{"
_ARRAY_BOUNDARY = "}, {"


def parse_observation(observation: str) -> list[Any]:
    """Parse blank-line separated JSON objects into a list."""
    repaired = "[" + observation.replace(_OBJECT_BOUNDARY, _ARRAY_BOUNDARY) + "]"
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as exc:
        raise SourceExtractionError(f"Tool observation is not JSON-object shaped: {exc}") from exc


def project_urls(records: Sequence[Any]) -> list[str]:
    urls: list[str] = []
    for position, record in enumerate(records):
        if not isinstance(record, Mapping) or "url" not in record:
            raise SourceExtractionError(f"Source record #{position} has no 'url' field.")
        urls.append(record["url"])
    return urls


def extract_sources(result: AgentResult) -> list[str]:
    """
    Return the source URLs of the first intermediate step.

    Raises
    ------
    SourceExtractionError
        No step was recorded, or its payload is not a list of records
        carrying a ``url``.
    """
    if not result.intermediate_steps:
        raise SourceExtractionError("The agent made no tool call; no sources to extract.")

    first = result.intermediate_steps[0]
    if isinstance(first.artifact, list):
        records = first.artifact
    else:
        records = parse_observation(first.observation)

    sources = project_urls(records)
    logger.info("[SOURCES] %d source(s) from tool '%s'.", len(sources), first.tool)
    return sources
