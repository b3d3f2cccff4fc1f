"""
Pydantic models for the Product Assistant.

Defines the conversation transcript (messages and tool invocations), the
typed argument set for each retrieval tool, retrieval result rows, catalog
records used for ingestion, and stored chat sessions.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, Field, field_validator


DEFAULT_RESULT_LIMIT = 3


class Role(str, Enum):
    """Enumeration for message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ConversationState(str, Enum):
    """States of one orchestration run."""
    NEGOTIATING = "negotiating"
    DISPATCHING_TOOLS = "dispatching_tools"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# Transcript
# =============================================================================

class FunctionCall(BaseModel):
    """Function name plus its serialized JSON argument payload."""
    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    """
    A retrieval invocation requested by the model.

    Attributes:
        id: Opaque, model-generated invocation id
        type: Always "function"
        function: Name and raw argument payload
    """
    id: str
    type: str = "function"
    function: FunctionCall


class Message(BaseModel):
    """
    A single conversational turn.

    Attributes:
        role: system, user, assistant or tool
        content: Message text (may be empty on assistant tool-call turns)
        tool_call_id: Invocation this tool result answers (tool role only)
        tool_calls: Requested invocations (assistant role only)
    """
    role: Role
    content: Optional[str] = ""
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None

    def to_api(self) -> Dict[str, Any]:
        """Serialize for the chat completion request body."""
        payload: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
        return payload


class ChatRequest(BaseModel):
    """Body of a chat request: the full transcript so far."""
    messages: List[Message] = Field(default_factory=list)
    session_id: Optional[str] = None


# =============================================================================
# Tool arguments
# =============================================================================

class SearchProductsArgs(BaseModel):
    """
    Arguments for the search_products tool.

    limit falls back to 3 when absent or non-positive; offset falls back
    to 0 when absent or negative.
    """
    query: str = Field(..., min_length=1)
    limit: int = DEFAULT_RESULT_LIMIT
    offset: int = 0
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    category: Optional[str] = None

    @field_validator("limit", mode="before")
    @classmethod
    def default_limit(cls, v: Any) -> Any:
        if v is None or (isinstance(v, (int, float)) and v <= 0):
            return DEFAULT_RESULT_LIMIT
        return v

    @field_validator("offset", mode="before")
    @classmethod
    def default_offset(cls, v: Any) -> Any:
        if v is None or (isinstance(v, (int, float)) and v < 0):
            return 0
        return v

    @field_validator("category")
    @classmethod
    def blank_category(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class SearchFaqsArgs(BaseModel):
    """Arguments for the search_faqs tool."""
    query: str = Field(..., min_length=1)
    limit: int = DEFAULT_RESULT_LIMIT

    @field_validator("limit", mode="before")
    @classmethod
    def default_limit(cls, v: Any) -> Any:
        if v is None or (isinstance(v, (int, float)) and v <= 0):
            return DEFAULT_RESULT_LIMIT
        return v


ToolArguments = Union[SearchProductsArgs, SearchFaqsArgs]

TOOL_ARGUMENT_MODELS: Dict[str, Type[BaseModel]] = {
    "search_products": SearchProductsArgs,
    "search_faqs": SearchFaqsArgs,
}


def parse_tool_arguments(name: str, raw_arguments: Optional[str]) -> ToolArguments:
    """
    Validate a tool invocation's argument payload.

    Raises:
        KeyError: If the function name is not a known tool
        json.JSONDecodeError: If the payload is not valid JSON
        pydantic.ValidationError: If the payload doesn't fit the tool's model
    """
    model = TOOL_ARGUMENT_MODELS[name]
    data = json.loads(raw_arguments or "{}")
    return model.model_validate(data)


# =============================================================================
# Retrieval results
# =============================================================================

class ProductResult(BaseModel):
    """A product row matched by similarity search."""
    product_ref: str
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    technical_data: Optional[str] = None
    similarity: float = Field(..., ge=0, le=1, description="Relevance score")


class FaqResult(BaseModel):
    """An FAQ row matched by similarity search."""
    question: str
    answer: str
    product_ref: Optional[str] = None
    similarity: float = Field(..., ge=0, le=1, description="Relevance score")


RetrievalResult = Union[ProductResult, FaqResult]


# =============================================================================
# Catalog records (ingestion)
# =============================================================================

class FaqEntry(BaseModel):
    """A question/answer pair attached to a catalog record."""
    q: Optional[str] = None
    a: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.q and self.a)


class CatalogRecord(BaseModel):
    """
    Product record as uploaded to the catalog.

    Attributes:
        product_ref: Unique product reference
        title: Product title
        description: Free-text description
        price: Price in USD, if known
        url: Product page
        image_url: Product image
        technical_data: Technical details text
        metadata: Free-form metadata (category lives here)
        faq: Question/answer pairs for this product
    """
    product_ref: str = Field(..., min_length=1, description="Unique product reference")
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    url: Optional[str] = None
    image_url: Optional[str] = None
    technical_data: Optional[str] = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    faq: List[FaqEntry] = Field(default_factory=list)

    @field_validator("product_ref")
    @classmethod
    def strip_ref(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("product_ref must not be blank")
        return v

    @property
    def category(self) -> Optional[str]:
        category = self.metadata.get("category")
        return str(category) if category else None

    def embedding_text(self) -> str:
        """Text embedded for similarity search: title, description and details."""
        parts = [self.title or "", self.description or "", self.technical_data or ""]
        return " ".join(part for part in parts if part)


# =============================================================================
# Chat sessions
# =============================================================================

class StoredChat(BaseModel):
    """A chat turn as persisted in session history."""
    role: str = Field(..., pattern="^(user|assistant|system)$")
    content: str = ""
    sent_at: Optional[str] = None
    received_at: Optional[str] = None

    @field_validator("sent_at", "received_at", mode="before")
    @classmethod
    def normalize_timestamp(cls, v: Any) -> Optional[str]:
        """Coerce timestamps to UTC ISO strings, dropping unparseable ones."""
        if v is None or v == "":
            return None
        try:
            if isinstance(v, (int, float)):
                parsed = datetime.fromtimestamp(v / 1000, tz=timezone.utc)
            elif isinstance(v, datetime):
                parsed = v
            else:
                parsed = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
        except (ValueError, OverflowError, OSError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc).isoformat()


class ChatSession(BaseModel):
    """Persisted chat history for one session."""
    session_id: str = Field(..., min_length=1)
    chats: List[StoredChat] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionSummary(BaseModel):
    """Session listing entry."""
    session_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    message_count: int = Field(..., ge=0)
