from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from docchat.models.conversation import (
    Conversation,
    HistoryProcessingStatus,
    Message,
    ModelOption,
    StreamState,
)


class StreamStatus(str, Enum):
    """Status values for streaming updates."""

    RECEIVED = "received"
    GENERATING = "generating"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


class ChatRequest(BaseModel):
    """Request payload for chat turn endpoints.

    Attributes:
        message: User's question or prompt. May be empty when quotes are given.
        quotes: Extra quoted passages to prefix to the message.
    """

    message: str = ""
    quotes: list[str] = Field(default_factory=list)

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v: str) -> str:
        """Strip whitespace from message before validation."""
        if isinstance(v, str):
            return v.strip()
        return v

    @model_validator(mode="after")
    def require_input(self) -> "ChatRequest":
        """Reject requests with neither a message nor a quote."""
        if not self.message and not any(q.strip() for q in self.quotes):
            raise ValueError("message or quotes required")
        return self


class StreamChunk(BaseModel):
    """A chunk of streamed response data.

    Attributes:
        content: The text appended to the assistant message since the last chunk.
        done: Whether this is the final chunk.
        status: Current processing status (received, generating, complete, cancelled, error).
        error: Error message if something went wrong.
    """

    content: str
    done: bool
    status: StreamStatus | None = None
    error: str | None = None


class ChatResponse(BaseModel):
    """Result of a buffered chat turn."""

    message: Message | None
    state: StreamState
    history_status: HistoryProcessingStatus


class QuoteRequest(BaseModel):
    text: str = Field(..., min_length=1)


class EditMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)


class ConversationSummary(BaseModel):
    """Conversation listing entry without the message bodies."""

    id: str
    title: str
    model: str
    message_count: int = Field(..., ge=0)
    is_named: bool
    is_naming: bool
    is_current: bool

    @classmethod
    def from_conversation(cls, conversation: Conversation, current_id: str | None) -> "ConversationSummary":
        return cls(
            id=conversation.id,
            title=conversation.title,
            model=conversation.model,
            message_count=len(conversation.messages),
            is_named=conversation.is_named,
            is_naming=conversation.is_naming,
            is_current=conversation.id == current_id,
        )


class ModelListResponse(BaseModel):
    models: list[ModelOption]
    default_model: str
