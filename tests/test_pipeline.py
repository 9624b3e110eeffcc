"""
Tests for the chat pipeline orchestration
"""

import asyncio
import inspect

import pytest
from langchain_core.messages import HumanMessage

from kirikou.config.prompt_templates import RATE_LIMIT_MESSAGE
from kirikou.src.core.agent import AgentResult, IntermediateStep
from kirikou.src.core.events import ModelToken, ToolEvent
from kirikou.src.core.exceptions import AdmissionError, EmptyConversationError, SourceExtractionError
from kirikou.src.core.messages import ChatMessage
from kirikou.src.core.pipeline import ChatPipeline, StreamingReply, StructuredReply, ThrottledReply

CONVERSATION = [
    ChatMessage(role="user", content="Hi"),
    ChatMessage(role="assistant", content="Hello"),
    ChatMessage(role="user", content="What programs does IDL offer?"),
]


def tokens(*texts):
    return [ModelToken(text=t, path="/logs/model/streamed_output_str/-") for t in texts]


def run(pipeline, messages=CONVERSATION, identity="10.0.0.1", show_intermediate_steps=None):
    return asyncio.run(pipeline.run(identity, messages, show_intermediate_steps))


def run_and_drain(pipeline, **kwargs):
    async def _run():
        outcome = await pipeline.run("10.0.0.1", CONVERSATION, **kwargs)
        return outcome, "".join([fragment async for fragment in outcome.fragments])

    return asyncio.run(_run())


class TestAdmission:
    """The limiter gates all agent work"""

    def test_throttled_skips_agent(self, fake_limiter_cls, fake_agent_cls):
        agent = fake_agent_cls(events=tokens("x"))
        limiter = fake_limiter_cls(allowed=False)

        outcome = run(ChatPipeline(limiter, agent))

        assert isinstance(outcome, ThrottledReply)
        assert outcome.message == RATE_LIMIT_MESSAGE
        assert agent.stream_calls == []
        assert agent.run_calls == []

    def test_identity_forwarded(self, fake_limiter_cls, fake_agent_cls):
        limiter = fake_limiter_cls(allowed=False)

        run(ChatPipeline(limiter, fake_agent_cls()), identity="41.66.1.2")

        assert limiter.identities == ["41.66.1.2"]

    def test_admission_error_propagates(self, fake_limiter_cls, fake_agent_cls):
        agent = fake_agent_cls()

        with pytest.raises(AdmissionError):
            run(ChatPipeline(fake_limiter_cls(error=AdmissionError("down")), agent))
        assert agent.stream_calls == []

    def test_admit_alone(self, fake_limiter_cls, fake_agent_cls):
        open_pipeline = ChatPipeline(fake_limiter_cls(), fake_agent_cls())
        closed_pipeline = ChatPipeline(fake_limiter_cls(allowed=False), fake_agent_cls())

        assert asyncio.run(open_pipeline.admit("10.0.0.1")) is None
        assert asyncio.run(closed_pipeline.admit("10.0.0.1")) == ThrottledReply()

    def test_empty_conversation_raises(self, fake_limiter_cls, fake_agent_cls):
        with pytest.raises(EmptyConversationError):
            run(ChatPipeline(fake_limiter_cls(), fake_agent_cls()), messages=[ChatMessage(role="system", content="x")])


class TestStreamingMode:
    def test_answer_fragments(self, fake_limiter_cls, fake_agent_cls):
        agent = fake_agent_cls(events=[ToolEvent(name="search_latest_knowledge", path="/logs/search_latest_knowledge", payload={})] + tokens("Dear", " student", ", ..."))

        outcome, body = run_and_drain(ChatPipeline(fake_limiter_cls(), agent))

        assert isinstance(outcome, StreamingReply)
        assert body == "Dear student, ..."

    def test_history_and_input_passed(self, fake_limiter_cls, fake_agent_cls):
        agent = fake_agent_cls(events=tokens("ok"))

        run_and_drain(ChatPipeline(fake_limiter_cls(), agent))

        input_text, history = agent.stream_calls[0]
        assert input_text == "What programs does IDL offer?"
        assert [m.content for m in history] == ["Hi", "Hello"]
        assert isinstance(history[0], HumanMessage)

    def test_failure_before_first_token_raises(self, fake_limiter_cls, fake_agent_cls):
        """Retrieval or model errors surface before the response starts"""
        agent = fake_agent_cls(events=[RuntimeError("LanceDB unavailable")])

        with pytest.raises(RuntimeError, match="LanceDB unavailable"):
            run(ChatPipeline(fake_limiter_cls(), agent))

    def test_no_tokens_gives_empty_stream(self, fake_limiter_cls, fake_agent_cls):
        outcome, body = run_and_drain(ChatPipeline(fake_limiter_cls(), fake_agent_cls()))

        assert isinstance(outcome, StreamingReply)
        assert body == ""

    def test_stream_closes_agent_run(self, fake_limiter_cls, fake_agent_cls):
        """Closing the answer stream (client disconnect) ends the agent run"""
        agent = fake_agent_cls(events=tokens("a", "b", "c"))

        async def _run():
            outcome = await ChatPipeline(fake_limiter_cls(), agent).run("10.0.0.1", CONVERSATION)
            assert await outcome.fragments.__anext__() == "a"
            await outcome.fragments.aclose()

        asyncio.run(_run())

        assert agent.closed is True

    def test_close_without_iterating_ends_agent_run(self, fake_limiter_cls, fake_agent_cls):
        """The response never started: the primed run is still shut down"""
        agent = fake_agent_cls(events=tokens("a", "b"))

        async def _run():
            outcome = await ChatPipeline(fake_limiter_cls(), agent).run("10.0.0.1", CONVERSATION)
            assert inspect.iscoroutinefunction(outcome.close)
            await outcome.close()

        asyncio.run(_run())

        assert agent.closed is True

    def test_close_after_drain_is_harmless(self, fake_limiter_cls, fake_agent_cls):
        async def _run():
            outcome = await ChatPipeline(fake_limiter_cls(), fake_agent_cls(events=tokens("a"))).run("10.0.0.1", CONVERSATION)
            body = "".join([fragment async for fragment in outcome.fragments])
            await outcome.close()
            return body

        assert asyncio.run(_run()) == "a"


class TestStructuredMode:
    def _result(self):
        step = IntermediateStep(
            tool="search_latest_knowledge",
            tool_input={"query": "programs"},
            observation='{"url":"https://idl.knust.edu.gh/a"}\n\n{"url":"https://idl.knust.edu.gh/b"}',
        )
        return AgentResult(output="Dear student, ...", intermediate_steps=[step])

    def test_configured_default(self, fake_limiter_cls, fake_agent_cls):
        agent = fake_agent_cls(result=self._result())

        outcome = run(ChatPipeline(fake_limiter_cls(), agent, return_intermediate_steps=True))

        assert outcome == StructuredReply(output="Dear student, ...", sources=["https://idl.knust.edu.gh/a", "https://idl.knust.edu.gh/b"])
        assert agent.stream_calls == []

    def test_request_flag_overrides_default(self, fake_limiter_cls, fake_agent_cls):
        agent = fake_agent_cls(events=tokens("streamed"), result=self._result())

        outcome = run(ChatPipeline(fake_limiter_cls(), agent, return_intermediate_steps=False), show_intermediate_steps=True)

        assert isinstance(outcome, StructuredReply)

    def test_no_tool_step_raises(self, fake_limiter_cls, fake_agent_cls):
        agent = fake_agent_cls(result=AgentResult(output="Hello"))

        with pytest.raises(SourceExtractionError):
            run(ChatPipeline(fake_limiter_cls(), agent, return_intermediate_steps=True))
