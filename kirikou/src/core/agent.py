"""
Kirikou - Agent Executor
=========================
Binds the chat model, the retrieval tool and the system prompt into a
tool-calling reasoning loop (``langgraph.prebuilt.create_react_agent``).

Prompt layout
-------------
1. ``system``        fixed Kirikou instructions
2. ``chat_history``  prior user/assistant turns
3. ``messages``      the current input followed by the agent's own
                     scratchpad (tool calls and tool results)

Invocation modes
----------------
``stream_events``  async iterator of decoded run-log events, produced
                   as the loop runs.  Closing the iterator tears the
                   run down.
``run``            runs to completion and returns the answer together
                   with every intermediate tool step.

Errors raised by the model or a tool propagate unchanged.  There is no
retry and no partial result.
"""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from langchain_core.tools import BaseTool
from langgraph.prebuilt import create_react_agent
from langgraph.prebuilt.chat_agent_executor import AgentState

from kirikou.config.prompt_templates import AGENT_SYSTEM_PROMPT
from kirikou.src.core.events import ExecutionEvent, LogEventDecoder
from kirikou.src.utils.logger import get_logger

logger = get_logger(__name__)

_DEFAULT_RECURSION_LIMIT = 25


class KnowledgeAgentState(AgentState):
    """Prebuilt agent state plus the conversation history slot."""

    chat_history: list[BaseMessage]


@dataclass(frozen=True)
class IntermediateStep:
    """One tool invocation and what it returned."""

    tool: str
    tool_input: dict[str, Any]
    observation: str
    artifact: Any = None


@dataclass(frozen=True)
class AgentResult:
    """Final answer of a structured-mode run."""

    output: str
    intermediate_steps: list[IntermediateStep] = field(default_factory=list)


def message_text(content: str | list[Any]) -> str:
    """Flatten string or multi-part message content into plain text."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and "text" in part:
            parts.append(str(part["text"]))
    return "".join(parts)


def build_agent_prompt(system_prompt: str = AGENT_SYSTEM_PROMPT) -> ChatPromptTemplate:
    return ChatPromptTemplate.from_messages(
        [
            ("system", system_prompt),
            MessagesPlaceholder(variable_name="chat_history", optional=True),
            MessagesPlaceholder(variable_name="messages"),
        ]
    )


class KnowledgeAgent:
    """
    Tool-using agent over the IDL knowledge base.

    Parameters
    ----------
    llm
        Chat model supporting tool calling (``bind_tools``).
    tools
        Tools offered to the model; the model decides if and when to
        call them.
    system_prompt
        Instructions placed before the history.
    recursion_limit
        Upper bound on graph steps for one run.
    """

    __slots__ = ("_graph", "_decoder", "_recursion_limit", "_tool_names")

    def __init__(self, llm: BaseChatModel, tools: Sequence[BaseTool], system_prompt: str = AGENT_SYSTEM_PROMPT, recursion_limit: int = _DEFAULT_RECURSION_LIMIT) -> None:
        self._tool_names = [t.name for t in tools]
        self._graph = create_react_agent(llm, list(tools), prompt=build_agent_prompt(system_prompt), state_schema=KnowledgeAgentState)
        self._decoder = LogEventDecoder(model_name=llm.get_name(), tool_names=self._tool_names)
        self._recursion_limit = recursion_limit
        logger.info("[AGENT] Ready: model=%s, tools=%s", llm.get_name(), self._tool_names)


    async def stream_events(self, input_text: str, history: Sequence[BaseMessage] = ()) -> AsyncIterator[ExecutionEvent]:
        """
        Run the agent and yield decoded run-log events as they happen.

        The iterator is single-use.  It only pulls the next log patch
        when the consumer asks for the next event.
        """
        logger.info("[AGENT] Streaming run (history=%d message(s)).", len(history))
        log = self._graph.astream_log(self._initial_state(input_text, history), config=self._config())
        async with aclosing(log):
            async for patch in log:
                for operation in patch.ops:
                    yield self._decoder.decode(operation)


    async def run(self, input_text: str, history: Sequence[BaseMessage] = ()) -> AgentResult:
        """Run the agent to completion and collect its intermediate steps."""
        logger.info("[AGENT] Structured run (history=%d message(s)).", len(history))
        final_state = await self._graph.ainvoke(self._initial_state(input_text, history), config=self._config())
        messages: list[BaseMessage] = list(final_state["messages"])

        steps = self._collect_steps(messages)
        output = self._final_answer(messages)
        logger.info("[AGENT] Run complete: %d tool step(s), %d answer chars.", len(steps), len(output))
        return AgentResult(output=output, intermediate_steps=steps)


    @staticmethod
    def _initial_state(input_text: str, history: Sequence[BaseMessage]) -> dict[str, Any]:
        return {"chat_history": list(history), "messages": [HumanMessage(content=input_text)]}


    def _config(self) -> dict[str, Any]:
        return {"recursion_limit": self._recursion_limit}


    @staticmethod
    def _collect_steps(messages: list[BaseMessage]) -> list[IntermediateStep]:
        """Pair every ``ToolMessage`` with the tool call that produced it."""
        calls: dict[str, dict[str, Any]] = {}
        steps: list[IntermediateStep] = []

        for msg in messages:
            if isinstance(msg, AIMessage):
                for call in msg.tool_calls:
                    if call.get("id"):
                        calls[call["id"]] = call
            elif isinstance(msg, ToolMessage):
                call = calls.get(msg.tool_call_id, {})
                steps.append(
                    IntermediateStep(
                        tool=msg.name or call.get("name", ""),
                        tool_input=dict(call.get("args", {})),
                        observation=message_text(msg.content),
                        artifact=msg.artifact,
                    )
                )
        return steps


    @staticmethod
    def _final_answer(messages: list[BaseMessage]) -> str:
        for msg in reversed(messages):
            if isinstance(msg, AIMessage):
                return message_text(msg.content)
        return ""
