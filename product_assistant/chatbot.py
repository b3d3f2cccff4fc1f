"""
Product Assistant Chatbot - Conversation Orchestration

Runs the tool-calling loop for one request:
1. Negotiate: ask the model (non-streaming) whether it needs retrieval
2. Dispatch: run each requested product/FAQ search, append results
3. Repeat until the model answers without tool calls
4. Stream: reopen the completion in streaming mode and relay tokens

Each request gets its own ConversationRun; nothing mutable is shared
between requests.
"""

import json
import logging
from typing import Callable, Dict, Iterator, List, Optional

from pydantic import ValidationError

from product_assistant import config
from product_assistant.completion import CompletionClient
from product_assistant.embeddings import EmbeddingClient
from product_assistant.formatter import format_faqs, format_products
from product_assistant.models import (
    ConversationState, Message, Role, ToolCall, parse_tool_arguments
)
from product_assistant.relay import StreamRelay
from product_assistant.retrieval import RetrievalGateway
from product_assistant.vector_store import get_vector_store

logger = logging.getLogger(__name__)


# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_PROMPT = """You are a friendly and knowledgeable product assistant. Your role is to help customers find the right products and answer their questions in a warm, conversational manner.

**Communication Style:**
- Respond in a friendly, approachable tone, as if chatting with a friend
- Use natural, conversational language and avoid sounding robotic
- Keep responses concise but informative

**Formatting Guidelines:**
- ALWAYS format your responses using Markdown
- Use **bold** for product names and key features
- Use bullet points for lists of features or benefits
- Use numbered lists for step-by-step instructions
- Use `code` formatting for technical specifications or part numbers

**Product Information:**
- Use the search_products tool for questions about products, pricing or availability
- Use the search_faqs tool for questions about usage, installation or common concerns
- Always mention pricing when available and include product URLs when you have them
- When the user asks to see more products, call search_products again with the same query and offset set to the number of products already shown in this conversation
- If a search reports that all results have already been shown, say that's everything we have for that request
- If a search finds nothing specific, answer from general knowledge without saying that no data exists

**Personality:**
- Be helpful and positive
- End responses with an invitation to ask more questions if needed
"""

APOLOGY_MESSAGES: Dict[str, str] = {
    "search_products": "Sorry, I couldn't search products right now.",
    "search_faqs": "Sorry, I couldn't search FAQs right now.",
}


def with_system_prompt(messages: List[Message], system_prompt: str = SYSTEM_PROMPT) -> List[Message]:
    """Copy the transcript, prepending the system prompt if it has none."""
    transcript = list(messages)
    if not any(message.role == Role.SYSTEM for message in transcript):
        transcript.insert(0, Message(role=Role.SYSTEM, content=system_prompt))
    return transcript


# =============================================================================
# One orchestration run
# =============================================================================

class ConversationRun:
    """
    State machine for a single request.

    NEGOTIATING -> DISPATCHING_TOOLS -> NEGOTIATING ... -> STREAMING -> DONE,
    or FAILED when the completion service fails. The transcript belongs to
    this run and is discarded with it.
    """

    def __init__(
        self,
        messages: List[Message],
        completion: CompletionClient,
        gateway: RetrievalGateway,
        max_tool_rounds: Optional[int] = None,
        system_prompt: str = SYSTEM_PROMPT,
        session_id: Optional[str] = None,
    ):
        self.completion = completion
        self.gateway = gateway
        self.max_tool_rounds = config.MAX_TOOL_ROUNDS if max_tool_rounds is None else max_tool_rounds
        self.session_id = session_id
        self.transcript = with_system_prompt(messages, system_prompt)
        self.state = ConversationState.NEGOTIATING
        self.tool_rounds = 0
        self.relay: Optional[StreamRelay] = None

        self._handlers: Dict[str, Callable[[ToolCall], str]] = {
            "search_products": self._run_search_products,
            "search_faqs": self._run_search_faqs,
        }

    # -------------------------------------------------------------------------
    # Tool dispatch
    # -------------------------------------------------------------------------

    def _run_search_products(self, tool_call: ToolCall) -> str:
        args = parse_tool_arguments(tool_call.function.name, tool_call.function.arguments)
        products = self.gateway.search_products(
            query=args.query,
            limit=args.limit,
            offset=args.offset,
            min_price=args.min_price,
            max_price=args.max_price,
            category=args.category
        )
        return format_products(products, args.query, args.offset)

    def _run_search_faqs(self, tool_call: ToolCall) -> str:
        args = parse_tool_arguments(tool_call.function.name, tool_call.function.arguments)
        faqs = self.gateway.search_faqs(query=args.query, limit=args.limit)
        return format_faqs(faqs, args.query)

    def dispatch_tools(self, assistant_message: Message) -> None:
        """
        Run an assistant turn's tool invocations in order.

        Appends one tool message per recognized invocation. Unknown tool
        names are skipped; a failure inside one invocation becomes an
        apologetic tool message so the loop keeps going.
        """
        self.state = ConversationState.DISPATCHING_TOOLS
        self.transcript.append(assistant_message)

        for tool_call in assistant_message.tool_calls or []:
            name = tool_call.function.name
            logger.info(
                "Processing tool call id=%s name=%s arguments=%s",
                tool_call.id, name, tool_call.function.arguments
            )

            handler = self._handlers.get(name)
            if handler is None:
                logger.warning("Ignoring unknown tool %r", name)
                continue

            try:
                content = handler(tool_call)
            except (json.JSONDecodeError, ValidationError) as e:
                logger.error("Invalid arguments for %s (%s): %s", name, tool_call.id, e)
                content = APOLOGY_MESSAGES[name]
            except Exception:
                logger.exception("Error processing %s tool call %s", name, tool_call.id)
                content = APOLOGY_MESSAGES[name]

            self.transcript.append(Message(
                role=Role.TOOL,
                content=content,
                tool_call_id=tool_call.id
            ))

        self.state = ConversationState.NEGOTIATING

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def negotiate(self) -> None:
        """
        Loop negotiation and tool dispatch until the model answers plainly.

        Raises:
            CompletionError: If a negotiation call fails (any error marks the run FAILED)
        """
        while self.state == ConversationState.NEGOTIATING:
            if self.tool_rounds >= self.max_tool_rounds:
                logger.warning(
                    "Reached %d tool rounds; streaming with the context gathered so far",
                    self.max_tool_rounds
                )
                self.state = ConversationState.STREAMING
                break

            try:
                assistant_message = self.completion.negotiate(self.transcript)
            except Exception:
                self.state = ConversationState.FAILED
                raise

            if not assistant_message.tool_calls:
                self.state = ConversationState.STREAMING
                break

            self.tool_rounds += 1
            logger.info(
                "Round %d: model requested %d tool call(s)",
                self.tool_rounds, len(assistant_message.tool_calls)
            )
            self.dispatch_tools(assistant_message)

    def open_stream(self) -> Iterator[bytes]:
        """
        Open the final streamed completion and return the relayed frames.

        Raises:
            CompletionError: If the streaming request fails (any error marks the run FAILED)
        """
        try:
            upstream = self.completion.open_stream(self.transcript)
        except Exception:
            self.state = ConversationState.FAILED
            raise

        self.relay = StreamRelay(upstream)
        return self._relay_frames(self.relay)

    def _relay_frames(self, relay: StreamRelay) -> Iterator[bytes]:
        yield from relay
        self.state = ConversationState.DONE

    def execute(self) -> Iterator[bytes]:
        """
        Run the request up to the point of streaming.

        Every completion failure is raised from here, before any frame is
        produced, so callers can answer with a single error instead.
        """
        logger.info(
            "Conversation start (messages=%d, session_id=%s)",
            len(self.transcript), self.session_id
        )
        self.negotiate()
        return self.open_stream()


# =============================================================================
# Product Assistant Chatbot
# =============================================================================

class ProductAssistantChatbot:
    """
    Entry point for chat requests.

    Holds the long-lived clients; every call to respond() runs its own
    ConversationRun over a private copy of the transcript.
    """

    def __init__(
        self,
        completion: Optional[CompletionClient] = None,
        gateway: Optional[RetrievalGateway] = None,
        max_tool_rounds: Optional[int] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        """
        Initialize the chatbot.

        Args:
            completion: Completion client (built from config if omitted)
            gateway: Retrieval gateway (built from config if omitted)
            max_tool_rounds: Cap on negotiation/tool rounds per request
            system_prompt: Prompt prepended to transcripts that have none
        """
        self.completion = completion or CompletionClient()
        if gateway is None:
            embedder = EmbeddingClient()
            gateway = RetrievalGateway(embedder, get_vector_store(embedder))
        self.gateway = gateway
        self.max_tool_rounds = max_tool_rounds
        self.system_prompt = system_prompt

    def start(self, messages: List[Message], session_id: Optional[str] = None) -> ConversationRun:
        """Create the run for one request without executing it."""
        return ConversationRun(
            messages,
            self.completion,
            self.gateway,
            max_tool_rounds=self.max_tool_rounds,
            system_prompt=self.system_prompt,
            session_id=session_id
        )

    def respond(self, messages: List[Message], session_id: Optional[str] = None) -> Iterator[bytes]:
        """
        Answer a transcript with a stream of event frames.

        Raises:
            CompletionError: If the completion service fails
        """
        return self.start(messages, session_id).execute()


def collect_text(frames: Iterator[bytes]) -> str:
    """Join the content fragments of a relayed stream into plain text."""
    parts = []
    for frame in frames:
        data = frame.decode("utf-8").strip()[len("data:"):].strip()
        if data == "[DONE]":
            break
        parts.append(json.loads(data)["content"])
    return "".join(parts)


# =============================================================================
# CLI Interface
# =============================================================================

def run_cli():
    """Run the chatbot in command-line interface mode."""
    config.setup_logging()

    print("=" * 60)
    print("Welcome to the Product Assistant!")
    print("=" * 60)
    print("\nAsk me about our products or common questions.")
    print("Type 'quit' or 'exit' to end the conversation.")
    print("Type 'reset' to start a new conversation.")
    print("Type 'history' to view the conversation so far.")
    print("-" * 60)

    try:
        chatbot = ProductAssistantChatbot()
    except Exception as e:
        print(f"\nError initializing chatbot: {e}")
        print("Make sure you have set up your environment variables correctly.")
        return

    messages: List[Message] = []

    while True:
        try:
            user_input = input("\nYou: ").strip()

            if not user_input:
                continue

            if user_input.lower() in ['quit', 'exit']:
                print("\nThanks for chatting! Goodbye!")
                break

            if user_input.lower() == 'reset':
                messages = []
                print("\nConversation reset. How can I help you?")
                continue

            if user_input.lower() == 'history':
                if not messages:
                    print("\nNo messages yet.")
                for message in messages:
                    print(f"  {message.role.value.title()}: {message.content}")
                continue

            messages.append(Message(role=Role.USER, content=user_input))

            print("\nAssistant: ", end="", flush=True)
            reply_parts = []
            for frame in chatbot.respond(messages):
                fragment = collect_text(iter([frame]))
                reply_parts.append(fragment)
                print(fragment, end="", flush=True)
            print()

            messages.append(Message(role=Role.ASSISTANT, content="".join(reply_parts)))

        except KeyboardInterrupt:
            print("\n\nThanks for chatting! Goodbye!")
            break
        except Exception as e:
            # drop the unanswered turn so the user can retry it
            if messages and messages[-1].role == Role.USER:
                messages.pop()
            print(f"\nError: {e}")
            print("Please try again.")


if __name__ == "__main__":
    run_cli()
