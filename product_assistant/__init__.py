"""
Product Assistant

A product-assistant chatbot that answers from a product catalog and its
FAQs using Function Calling for retrieval and streamed replies.
"""

from product_assistant.models import (
    Message,
    ToolCall,
    FunctionCall,
    Role,
    ConversationState,
    SearchProductsArgs,
    SearchFaqsArgs,
    ProductResult,
    FaqResult,
    CatalogRecord,
    ChatSession,
)
from product_assistant.embeddings import EmbeddingClient
from product_assistant.vector_store import VectorStoreManager, get_vector_store
from product_assistant.retrieval import RetrievalGateway
from product_assistant.formatter import format_products, format_faqs
from product_assistant.completion import CompletionClient, CompletionError
from product_assistant.relay import StreamRelay
from product_assistant.database import SessionStore, get_session_store
from product_assistant.chatbot import ProductAssistantChatbot, ConversationRun

__version__ = "1.0.0"
__all__ = [
    "Message",
    "ToolCall",
    "FunctionCall",
    "Role",
    "ConversationState",
    "SearchProductsArgs",
    "SearchFaqsArgs",
    "ProductResult",
    "FaqResult",
    "CatalogRecord",
    "ChatSession",
    "EmbeddingClient",
    "VectorStoreManager",
    "get_vector_store",
    "RetrievalGateway",
    "format_products",
    "format_faqs",
    "CompletionClient",
    "CompletionError",
    "StreamRelay",
    "SessionStore",
    "get_session_store",
    "ProductAssistantChatbot",
    "ConversationRun",
]
