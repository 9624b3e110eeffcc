"""
Kirikou - Message Normalizer
=============================
Maps the client's ``{role, content}`` chat messages onto LangChain
message types and splits the conversation into *history* and the
*current input*.

Only ``user`` and ``assistant`` turns are kept.  Clients render
intermediate steps as ``system`` messages for display purposes; those
must never be fed back to the model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from pydantic import BaseModel, ConfigDict

from kirikou.src.core.exceptions import EmptyConversationError

_CHAT_ROLES = {"user", "assistant"}


class ChatMessage(BaseModel):
    """One message as sent by the chat client."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    role: str
    content: str


@dataclass(frozen=True)
class Conversation:
    """
    A normalised conversation.

    ``current_input`` is the raw text of the last retained message and
    is never repeated inside ``history``.
    """

    history: tuple[BaseMessage, ...]
    current_input: str


def to_langchain_message(message: ChatMessage) -> BaseMessage:
    """Convert a ``user``/``assistant`` message to its LangChain type."""
    if message.role == "user":
        return HumanMessage(content=message.content)
    if message.role == "assistant":
        return AIMessage(content=message.content)
    raise ValueError(f"Unsupported chat role: {message.role!r}")


def normalize_messages(raw_messages: Iterable[ChatMessage]) -> Conversation:
    """
    Filter, convert and split the client messages.

    Raises
    ------
    EmptyConversationError
        No ``user`` or ``assistant`` message is present.
    """
    messages = [m for m in raw_messages if m.role in _CHAT_ROLES]
    if not messages:
        raise EmptyConversationError("The conversation has no user or assistant message to answer.")

    history = tuple(to_langchain_message(m) for m in messages[:-1])
    return Conversation(history=history, current_input=messages[-1].content)
