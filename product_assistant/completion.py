"""
Chat completion client.

Two modes over the same chat completions endpoint:

- negotiation: one complete response, used to discover tool invocations
- final: an incremental token stream, handed to the stream relay as raw
  server-sent-event bytes

Any failure in either mode raises CompletionError, which aborts the request.
"""

import logging
from contextlib import ExitStack
from typing import Any, Dict, Iterator, List, Optional

import openai
from pydantic import ValidationError

from product_assistant import config
from product_assistant.models import FunctionCall, Message, Role, ToolCall

logger = logging.getLogger(__name__)


# =============================================================================
# Function Calling Tool Definitions
# =============================================================================

SEARCH_PRODUCTS_TOOL = {
    "type": "function",
    "function": {
        "name": "search_products",
        "description": "Search for products in the catalog. Use this when the user asks about products, pricing, or product information. When the user asks to see more results, repeat the previous query with offset set to the number of products already shown in this conversation.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query to find relevant products. Examples: 'banners', 'outdoor vinyl decals', 'vehicle wraps'"
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of products to return (default: 3)",
                    "default": 3
                },
                "offset": {
                    "type": "integer",
                    "description": "Number of products to skip, for showing more results (default: 0)",
                    "default": 0
                },
                "min_price": {
                    "type": "number",
                    "description": "Only return products priced at or above this amount in USD"
                },
                "max_price": {
                    "type": "number",
                    "description": "Only return products priced at or below this amount in USD"
                },
                "category": {
                    "type": "string",
                    "description": "Only return products in this category"
                }
            },
            "required": ["query"]
        }
    }
}

SEARCH_FAQS_TOOL = {
    "type": "function",
    "function": {
        "name": "search_faqs",
        "description": "Search frequently asked questions across all products. Use this when the user asks general questions about product features, usage, installation, or common concerns.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The question or topic to search for in FAQs"
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of FAQs to return (default: 3)",
                    "default": 3
                }
            },
            "required": ["query"]
        }
    }
}

TOOLS = [SEARCH_PRODUCTS_TOOL, SEARCH_FAQS_TOOL]


class CompletionError(Exception):
    """The completion service failed; the request cannot be answered."""


class CompletionStream:
    """
    Raw body of a streaming completion.

    The HTTP response is already open (and its status checked) when this is
    constructed. Iterating yields body bytes as they arrive; close() releases
    the connection and is safe to call more than once.
    """

    def __init__(self, stack: ExitStack, response: Any):
        self._stack = stack
        self._response = response

    def __iter__(self) -> Iterator[bytes]:
        try:
            yield from self._response.iter_bytes()
        finally:
            self.close()

    def close(self) -> None:
        self._stack.close()


class CompletionClient:
    """Wraps the chat completions endpoint with the retrieval tools attached."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        chat_model: Optional[str] = None,
        temperature: Optional[float] = None,
        client: Optional[openai.OpenAI] = None,
    ):
        """
        Initialize the completion client.

        Args:
            api_key: OpenAI API key
            base_url: API base URL
            chat_model: Model to use for chat completion
            temperature: Sampling temperature
            client: Preconfigured OpenAI client (skips key lookup)
        """
        self.chat_model = chat_model or config.CHAT_MODEL
        self.temperature = config.CHAT_TEMPERATURE if temperature is None else temperature
        if client is None:
            client = openai.OpenAI(
                api_key=config.require_api_key(api_key),
                base_url=base_url or config.OPENAI_BASE_URL,
            )
        self.client = client

    def _request(self, messages: List[Message]) -> Dict[str, Any]:
        return {
            "model": self.chat_model,
            "messages": [message.to_api() for message in messages],
            "temperature": self.temperature,
            "tools": TOOLS,
            "tool_choice": "auto",
        }

    def negotiate(self, messages: List[Message]) -> Message:
        """
        Request one complete assistant message.

        Args:
            messages: Full transcript

        Returns:
            The assistant message, with any tool invocations it carries

        Raises:
            CompletionError: If the request fails or the response is empty or malformed
        """
        try:
            response = self.client.chat.completions.create(**self._request(messages))
        except openai.OpenAIError as e:
            logger.error("Chat completion request failed: %s", e)
            raise CompletionError(f"Chat completion failed: {e}") from e

        try:
            if not response.choices:
                raise CompletionError("Chat completion returned no choices")

            assistant_message = response.choices[0].message
            tool_calls = [
                ToolCall(
                    id=tc.id,
                    function=FunctionCall(
                        name=tc.function.name,
                        arguments=tc.function.arguments or "{}"
                    )
                )
                for tc in assistant_message.tool_calls or []
            ]
            message = Message(
                role=Role.ASSISTANT,
                content=assistant_message.content or "",
                tool_calls=tool_calls or None
            )
        except (AttributeError, TypeError, IndexError, ValidationError) as e:
            logger.error("Malformed chat completion response: %s", e)
            raise CompletionError(f"Chat completion returned a malformed response: {e}") from e

        logger.info(
            "Assistant message received (content_length=%d, tool_calls=%d)",
            len(message.content or ""), len(tool_calls)
        )
        return message

    def open_stream(self, messages: List[Message]) -> CompletionStream:
        """
        Open the final, streamed completion.

        The request is sent before this returns, so a failed status surfaces
        here rather than midway through the relay.

        Args:
            messages: Full transcript including every tool result

        Returns:
            The open response body

        Raises:
            CompletionError: If the request fails
        """
        stack = ExitStack()
        try:
            response = stack.enter_context(
                self.client.chat.completions.with_streaming_response.create(
                    stream=True, **self._request(messages)
                )
            )
        except openai.OpenAIError as e:
            stack.close()
            logger.error("Streaming completion request failed: %s", e)
            raise CompletionError(f"Streaming completion failed: {e}") from e

        logger.info("Streaming completion opened")
        return CompletionStream(stack, response)
