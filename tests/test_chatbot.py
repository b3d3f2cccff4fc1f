"""
Test Scenarios for the Product Assistant orchestration loop

Covers the negotiate / dispatch / stream state machine with a scripted
completion client and a mocked retrieval gateway.

Test Scenarios:
A. Fresh product search ("Show me banners")
B. "Show more" follow-up, including an exhausted catalog
C. Embedding failure degrades to "nothing specific found"
D. Completion failure aborts the request with no streamed content
E. Stream chunk split across reads
"""

import os
import sys
import json
import pytest
from typing import List
from unittest.mock import Mock

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from product_assistant.chatbot import (
    APOLOGY_MESSAGES, SYSTEM_PROMPT, ConversationRun, ProductAssistantChatbot,
    collect_text, with_system_prompt
)
from product_assistant.completion import CompletionError
from product_assistant.models import (
    ConversationState, FunctionCall, Message, ProductResult, Role, ToolCall
)
from product_assistant.retrieval import RetrievalGateway


# =============================================================================
# Test Helpers
# =============================================================================

def tool_call(call_id, name, **arguments):
    return ToolCall(id=call_id, function=FunctionCall(name=name, arguments=json.dumps(arguments)))


def assistant(*tool_calls, content=""):
    return Message(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls) or None)


def sse(*fragments):
    chunks = [
        f"data: {json.dumps({'choices': [{'delta': {'content': f}}]})}\n\n".encode("utf-8")
        for f in fragments
    ]
    return chunks + [b"data: [DONE]\n\n"]


class ScriptedCompletion:
    """Completion client that replays a fixed list of negotiation replies."""

    def __init__(self, replies, stream_chunks=None, stream_error=None):
        self.replies = list(replies)
        self.stream_chunks = stream_chunks if stream_chunks is not None else sse("Here you go!")
        self.stream_error = stream_error
        self.negotiations: List[List[Message]] = []
        self.streamed: List[List[Message]] = []

    def negotiate(self, messages):
        self.negotiations.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def open_stream(self, messages):
        self.streamed.append(list(messages))
        if self.stream_error:
            raise self.stream_error
        return iter(self.stream_chunks)


def banner(i):
    return ProductResult(product_ref=f"BAN-00{i}", title=f"Banner {i}", price=20.0 + i, similarity=0.9 - i / 100)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def gateway():
    gateway = Mock(spec=RetrievalGateway)
    gateway.search_products.return_value = [banner(1), banner(2), banner(3)]
    gateway.search_faqs.return_value = []
    return gateway


@pytest.fixture
def user_turn():
    return [Message(role=Role.USER, content="Show me banners")]


def run_for(completion, gateway, messages, **kwargs):
    chatbot = ProductAssistantChatbot(completion=completion, gateway=gateway, **kwargs)
    run = chatbot.start(messages)
    frames = list(run.execute())
    return run, frames


# =============================================================================
# System prompt
# =============================================================================

class TestSystemPrompt:
    """Exactly one system message, never duplicated across rounds."""

    def test_prepended_when_missing(self, user_turn):
        transcript = with_system_prompt(user_turn)
        assert transcript[0].role == Role.SYSTEM
        assert transcript[0].content == SYSTEM_PROMPT
        assert transcript[1:] == user_turn

    def test_existing_system_message_kept(self):
        messages = [Message(role=Role.SYSTEM, content="Custom"), Message(role=Role.USER, content="hi")]
        transcript = with_system_prompt(messages)
        assert [m.content for m in transcript] == ["Custom", "hi"]

    def test_caller_transcript_not_mutated(self, user_turn):
        with_system_prompt(user_turn)
        assert len(user_turn) == 1

    def test_single_system_message_across_rounds(self, gateway, user_turn):
        completion = ScriptedCompletion([
            assistant(tool_call("c1", "search_products", query="banners")),
            assistant(tool_call("c2", "search_faqs", query="banner care")),
            assistant(content="done"),
        ])

        run, _ = run_for(completion, gateway, user_turn)

        for sent in completion.negotiations + completion.streamed:
            assert sum(1 for m in sent if m.role == Role.SYSTEM) == 1
            assert sent[0].role == Role.SYSTEM


# =============================================================================
# Scenario A: Fresh product search
# =============================================================================

class TestFreshProductSearch:
    """Show me banners -> search_products(offset=0) -> fresh batch."""

    def test_tool_result_appended_and_streamed(self, gateway, user_turn):
        completion = ScriptedCompletion([
            assistant(tool_call("call_1", "search_products", query="banners", offset=0)),
            assistant(content="ignored plain answer"),
        ], stream_chunks=sse("We have ", "three banners."))

        run, frames = run_for(completion, gateway, user_turn)

        gateway.search_products.assert_called_once_with(
            query="banners", limit=3, offset=0, min_price=None, max_price=None, category=None
        )
        roles = [m.role for m in run.transcript]
        assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL]

        tool_message = run.transcript[-1]
        assert tool_message.tool_call_id == "call_1"
        assert tool_message.content.startswith("[NEW RESULTS] Found 3 product(s)")

        assert collect_text(iter(frames)) == "We have three banners."
        assert run.state == ConversationState.DONE

    def test_plain_answer_streams_unchanged_transcript(self, gateway, user_turn):
        completion = ScriptedCompletion([assistant(content="Hi there!")])

        run, _ = run_for(completion, gateway, user_turn)

        assert completion.streamed[0] == completion.negotiations[0]
        assert len(run.transcript) == 2
        gateway.search_products.assert_not_called()


# =============================================================================
# Scenario B: Show more
# =============================================================================

class TestShowMore:
    """Follow-up pages use the model-chosen offset."""

    def test_continuation_batch(self, gateway):
        gateway.search_products.return_value = [banner(4), banner(5), banner(6)]
        completion = ScriptedCompletion([
            assistant(tool_call("call_2", "search_products", query="banners", offset=3)),
            assistant(content="done"),
        ])
        messages = [
            Message(role=Role.USER, content="Show me banners"),
            Message(role=Role.ASSISTANT, content="Here are 3 banners..."),
            Message(role=Role.USER, content="show more"),
        ]

        run, _ = run_for(completion, gateway, messages)

        assert gateway.search_products.call_args.kwargs["offset"] == 3
        assert run.transcript[-1].content.startswith("[CONTINUATION]")

    def test_exhausted_catalog(self, gateway, user_turn):
        gateway.search_products.return_value = []
        completion = ScriptedCompletion([
            assistant(tool_call("call_3", "search_products", query="banners", offset=6)),
            assistant(content="done"),
        ])

        run, _ = run_for(completion, gateway, user_turn)

        assert run.transcript[-1].content.startswith("[NO MORE RESULTS]")


# =============================================================================
# Scenario C: Degraded retrieval
# =============================================================================

class TestDegradedRetrieval:
    """Retrieval failures never surface as errors."""

    def test_embedding_failure_gives_nothing_found(self, user_turn):
        embedder = Mock()
        embedder.embed.return_value = None
        gateway = RetrievalGateway(embedder, Mock())
        completion = ScriptedCompletion([
            assistant(tool_call("call_1", "search_products", query="banners")),
            assistant(content="done"),
        ])

        run, frames = run_for(completion, gateway, user_turn)

        assert run.transcript[-1].content.startswith("[NO SPECIFIC RESULTS]")
        assert run.state == ConversationState.DONE
        assert frames[-1] == b"data: [DONE]\n\n"


# =============================================================================
# Scenario D: Completion failure
# =============================================================================

class TestCompletionFailure:
    """A failed completion call fails the whole request."""

    def test_negotiation_failure(self, gateway, user_turn):
        completion = ScriptedCompletion([CompletionError("Chat completion failed: timeout")])
        chatbot = ProductAssistantChatbot(completion=completion, gateway=gateway)
        run = chatbot.start(user_turn)

        with pytest.raises(CompletionError):
            run.execute()

        assert run.state == ConversationState.FAILED
        assert completion.streamed == []

    def test_failure_after_tool_round(self, gateway, user_turn):
        completion = ScriptedCompletion([
            assistant(tool_call("call_1", "search_products", query="banners")),
            CompletionError("Chat completion failed: 500"),
        ])
        run = ProductAssistantChatbot(completion=completion, gateway=gateway).start(user_turn)

        with pytest.raises(CompletionError):
            run.execute()

        assert run.state == ConversationState.FAILED

    def test_stream_open_failure(self, gateway, user_turn):
        completion = ScriptedCompletion(
            [assistant(content="hi")],
            stream_error=CompletionError("Streaming completion failed: 503")
        )
        run = ProductAssistantChatbot(completion=completion, gateway=gateway).start(user_turn)

        with pytest.raises(CompletionError):
            run.execute()

        assert run.state == ConversationState.FAILED

    def test_unexpected_negotiation_error_marks_failed(self, gateway, user_turn):
        completion = ScriptedCompletion([AttributeError("'NoneType' object has no attribute 'name'")])
        run = ProductAssistantChatbot(completion=completion, gateway=gateway).start(user_turn)

        with pytest.raises(AttributeError):
            run.execute()

        assert run.state == ConversationState.FAILED
        assert completion.streamed == []

    def test_unexpected_stream_error_marks_failed(self, gateway, user_turn):
        completion = ScriptedCompletion(
            [assistant(content="hi")],
            stream_error=RuntimeError("connection reset")
        )
        run = ProductAssistantChatbot(completion=completion, gateway=gateway).start(user_turn)

        with pytest.raises(RuntimeError):
            run.execute()

        assert run.state == ConversationState.FAILED
        assert run.relay is None

    def test_respond_raises_before_any_frame(self, gateway, user_turn):
        completion = ScriptedCompletion([CompletionError("boom")])
        chatbot = ProductAssistantChatbot(completion=completion, gateway=gateway)

        with pytest.raises(CompletionError):
            chatbot.respond(user_turn)


# =============================================================================
# Scenario E: Split stream chunk
# =============================================================================

class TestSplitStreamChunk:
    """A record split across reads reaches the caller intact."""

    def test_split_record(self, gateway, user_turn):
        record = sse("banners galore")[0]
        completion = ScriptedCompletion(
            [assistant(content="hi")],
            stream_chunks=[record[:25], record[25:], b"data: [DONE]\n\n"]
        )

        run, frames = run_for(completion, gateway, user_turn)

        assert frames == [b'data: {"content": "banners galore"}\n\n', b"data: [DONE]\n\n"]
        assert run.relay.records_skipped == 0


# =============================================================================
# Tool dispatch
# =============================================================================

class TestToolDispatch:
    """One tool message per invocation, in invocation order."""

    def test_n_invocations_n_messages_in_order(self, gateway, user_turn):
        calls = [
            tool_call("a", "search_products", query="banners"),
            tool_call("b", "search_faqs", query="banner care"),
            tool_call("c", "search_products", query="decals", max_price=30),
        ]
        completion = ScriptedCompletion([assistant(*calls), assistant(content="done")])

        run, _ = run_for(completion, gateway, user_turn)

        tool_messages = [m for m in run.transcript if m.role == Role.TOOL]
        assert [m.tool_call_id for m in tool_messages] == ["a", "b", "c"]
        assert run.transcript[2].tool_calls == calls

    def test_unknown_tool_skipped(self, gateway, user_turn):
        completion = ScriptedCompletion([
            assistant(
                tool_call("a", "delete_catalog"),
                tool_call("b", "search_products", query="banners")
            ),
            assistant(content="done"),
        ])

        run, _ = run_for(completion, gateway, user_turn)

        tool_messages = [m for m in run.transcript if m.role == Role.TOOL]
        assert [m.tool_call_id for m in tool_messages] == ["b"]

    def test_invalid_json_arguments(self, gateway, user_turn):
        bad = ToolCall(id="a", function=FunctionCall(name="search_products", arguments="{query: banners"))
        completion = ScriptedCompletion([assistant(bad), assistant(content="done")])

        run, _ = run_for(completion, gateway, user_turn)

        assert run.transcript[-1].tool_call_id == "a"
        assert run.transcript[-1].content == APOLOGY_MESSAGES["search_products"]
        gateway.search_products.assert_not_called()

    def test_missing_query_argument(self, gateway, user_turn):
        completion = ScriptedCompletion([
            assistant(tool_call("a", "search_faqs", limit=2)),
            assistant(content="done"),
        ])

        run, _ = run_for(completion, gateway, user_turn)

        assert run.transcript[-1].content == APOLOGY_MESSAGES["search_faqs"]

    def test_handler_exception_keeps_loop_alive(self, gateway, user_turn):
        gateway.search_products.side_effect = [RuntimeError("boom"), [banner(1)]]
        completion = ScriptedCompletion([
            assistant(
                tool_call("a", "search_products", query="banners"),
                tool_call("b", "search_products", query="decals")
            ),
            assistant(content="done"),
        ])

        run, _ = run_for(completion, gateway, user_turn)

        tool_messages = [m for m in run.transcript if m.role == Role.TOOL]
        assert tool_messages[0].content == APOLOGY_MESSAGES["search_products"]
        assert tool_messages[1].content.startswith("[NEW RESULTS] Found 1 product(s)")
        assert run.state == ConversationState.DONE

    def test_default_limit_passed(self, gateway, user_turn):
        completion = ScriptedCompletion([
            assistant(tool_call("a", "search_products", query="banners", limit=-1)),
            assistant(content="done"),
        ])

        run_for(completion, gateway, user_turn)

        assert gateway.search_products.call_args.kwargs["limit"] == 3


# =============================================================================
# Loop bound
# =============================================================================

class TestToolRoundLimit:
    """The loop stops negotiating after max_tool_rounds."""

    def test_round_cap_moves_to_streaming(self, gateway, user_turn):
        replies = [assistant(tool_call(f"c{i}", "search_products", query="banners")) for i in range(10)]
        completion = ScriptedCompletion(replies)

        run, frames = run_for(completion, gateway, user_turn, max_tool_rounds=2)

        assert len(completion.negotiations) == 2
        assert run.tool_rounds == 2
        assert len(completion.streamed) == 1
        assert run.state == ConversationState.DONE
        assert frames[-1] == b"data: [DONE]\n\n"

    def test_states_visited(self, gateway, user_turn):
        completion = ScriptedCompletion([assistant(content="hi")])
        run = ConversationRun(user_turn, completion, gateway, max_tool_rounds=3)

        assert run.state == ConversationState.NEGOTIATING
        frames = run.execute()
        assert run.state == ConversationState.STREAMING
        list(frames)
        assert run.state == ConversationState.DONE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
