"""
Kirikou - Execution Events
===========================
Tagged variants for the agent's run log and the decoder that produces
them from LangChain ``astream_log`` JSON-patch operations.

``astream_log`` records every nested run under ``/logs/<run-name>``;
repeated names get a ``:<n>`` suffix (``ChatGoogleGenerativeAI:2``).
The model's text tokens arrive as::

    {"op": "add", "path": "/logs/<model-run>/streamed_output_str/-", "value": "<token>"}

Variants
--------
``ModelToken``  text token streamed by the chat model itself.
``ToolEvent``   anything logged under one of the agent's tool runs.
``OtherEvent``  everything else (chain bookkeeping, timestamps,
                message chunks, non-``add`` operations).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union

_LOG_PATH_RE = re.compile(r"^/logs/(?P<run>[^/]+)(?P<rest>/.*)?$")
_RUN_SUFFIX_RE = re.compile(r":\d+$")
_TOKEN_STREAM_SUFFIX = "/streamed_output_str/-"


@dataclass(frozen=True)
class ModelToken:
    text: str
    path: str


@dataclass(frozen=True)
class ToolEvent:
    name: str
    path: str
    payload: Any


@dataclass(frozen=True)
class OtherEvent:
    op: str
    path: str


ExecutionEvent = Union[ModelToken, ToolEvent, OtherEvent]


def run_name_of(run_key: str) -> str:
    """Strip the ``:<n>`` de-duplication suffix from a log run key."""
    return _RUN_SUFFIX_RE.sub("", run_key)


class LogEventDecoder:
    """
    Decode run-log patch operations into ``ExecutionEvent`` variants.

    Parameters
    ----------
    model_name
        Run name of the chat model (``BaseChatModel.get_name()``).
    tool_names
        Names of the tools bound to the agent.
    """

    __slots__ = ("_model_name", "_tool_names")

    def __init__(self, model_name: str, tool_names: Iterable[str]) -> None:
        self._model_name = model_name
        self._tool_names = frozenset(tool_names)


    @property
    def model_name(self) -> str:
        return self._model_name


    def decode(self, operation: Mapping[str, Any]) -> ExecutionEvent:
        op = str(operation.get("op", ""))
        path = str(operation.get("path", ""))
        value = operation.get("value")

        match = _LOG_PATH_RE.match(path)
        if op != "add" or match is None:
            return OtherEvent(op=op, path=path)

        run_name = run_name_of(match.group("run"))
        if run_name == self._model_name and match.group("rest") == _TOKEN_STREAM_SUFFIX and isinstance(value, str):
            return ModelToken(text=value, path=path)
        if run_name in self._tool_names:
            return ToolEvent(name=run_name, path=path, payload=value)
        return OtherEvent(op=op, path=path)
