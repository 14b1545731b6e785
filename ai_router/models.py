"""Request and response models for the AI provider router."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class QueryCategory(str, Enum):
    """Query classes that select a fallback chain."""

    TIME_SENSITIVE = "time_sensitive"
    APP_DATA = "app_data"
    GENERAL = "general"


class ChatMessage(BaseModel):
    """A single message in a chat conversation."""

    model_config = ConfigDict(frozen=True)

    role: str
    content: str


class ChatRequest(BaseModel):
    """Incoming chat request. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1, description="Caller identifier")
    conversation_id: str = Field(default="", description="Conversation identifier")
    message: str = Field(..., min_length=1, description="The user's message")
    chat_type: str = Field(default="general", description="general or study_assistant")
    include_context: bool = Field(
        default=False, description="Attach the user's app-data context"
    )
    preferred_provider: Optional[str] = Field(
        default=None, description="Provider to try first"
    )
    preferred_model: Optional[str] = Field(
        default=None, description="Model to request from the preferred provider"
    )
    conversation_history: List[ChatMessage] = Field(default_factory=list)


class TokenUsage(BaseModel):
    """Token counts reported by the provider."""

    input: int = 0
    output: int = 0


class ChatResponse(BaseModel):
    """Response envelope. Degraded responses have provider_used == "system"."""

    id: str
    content: str
    model_used: str
    provider_used: str
    category: QueryCategory
    tier_used: int
    cached: bool = False
    tokens_used: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: int = 0
    fallback_used: bool = False

    @property
    def degraded(self) -> bool:
        return self.provider_used == "system"


class ErrorDetail(BaseModel):
    """Structured error detail."""

    type: str
    message: str


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: ErrorDetail
