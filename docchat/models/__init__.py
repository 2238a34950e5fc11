"""Pydantic models for the conversation engine.

Provides type safety, validation, and automatic OpenAPI documentation.

Models:
    - Message: Individual message in a conversation
    - Conversation: Ordered message history with naming state
    - HistoryProcessingStatus: What was done to the last request's history
    - StreamState: Lifecycle of one in-flight assistant turn
    - CompletionRequest: Upstream provider request body
"""

from docchat.models.completions import (
    CompletionChoice,
    CompletionRequest,
    CompletionResponse,
    ProviderMessage,
)
from docchat.models.conversation import (
    ASSISTANT_ROLE,
    SYSTEM_ROLE,
    USER_ROLE,
    Conversation,
    HistoryProcessingStatus,
    Message,
    ModelOption,
    Role,
    StreamState,
)

__all__ = [
    "ASSISTANT_ROLE",
    "SYSTEM_ROLE",
    "USER_ROLE",
    "CompletionChoice",
    "CompletionRequest",
    "CompletionResponse",
    "Conversation",
    "HistoryProcessingStatus",
    "Message",
    "ModelOption",
    "ProviderMessage",
    "Role",
    "StreamState",
]
