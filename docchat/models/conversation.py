"""Conversation domain model.

Messages are mutated in place while an assistant turn streams and are
treated as immutable once the turn completes. User edits replace a message
with an edited snapshot instead of mutating it.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
Role = Literal["user", "assistant", "system"]

DEFAULT_TITLE = "New conversation"
NAMING_TITLE = "Naming..."


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StreamState(str, Enum):
    """Lifecycle of one in-flight assistant turn."""

    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamState.COMPLETED, StreamState.CANCELLED, StreamState.FAILED)


class Message(BaseModel):
    """A single chat message in the conversation.

    Attributes:
        id: Unique message identifier.
        role: The speaker (user, assistant, or system).
        content: The message text.
        timestamp: Creation time (UTC).
        edited: Whether the user edited this message.
        edited_at: Time of the last edit, if any.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=_now)
    edited: bool = False
    edited_at: datetime | None = None


class Conversation(BaseModel):
    """An ordered chat history plus its naming state.

    Attributes:
        id: Unique conversation identifier.
        title: Display title; starts as DEFAULT_TITLE until auto-named.
        created_at: Creation time (UTC).
        messages: Messages in creation order.
        model: Model identifier used for this conversation's turns.
        is_named: Whether auto-naming has completed.
        is_naming: Whether an auto-naming request is in flight.
    """

    id: str = Field(default_factory=lambda: f"conv-{uuid.uuid4().hex[:12]}")
    title: str = DEFAULT_TITLE
    created_at: datetime = Field(default_factory=_now)
    messages: list[Message] = Field(default_factory=list)
    model: str
    is_named: bool = False
    is_naming: bool = False

    def find_message(self, message_id: str) -> int:
        """Return the index of a message, or -1 when it is not present."""
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return index
        return -1

    def count_round_trips(self) -> int:
        """Count user messages that are later followed by an assistant message."""
        rounds = 0
        awaiting_reply = False
        for message in self.messages:
            if message.role == USER_ROLE:
                awaiting_reply = True
            elif message.role == ASSISTANT_ROLE and awaiting_reply:
                rounds += 1
                awaiting_reply = False
        return rounds


class HistoryProcessingStatus(BaseModel):
    """Describes how the last request's history was transformed.

    Recomputed for every turn and never persisted.
    """

    compressed: bool = False
    summarized: bool = False
    limit_applied: bool = False
    original_count: int = Field(default=0, ge=0)
    processed_count: int = Field(default=0, ge=0)


class ModelOption(BaseModel):
    """A model the user can pick for a conversation."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


DEFAULT_MODELS = [
    ModelOption(id="gpt-3.5-turbo", name="GPT-3.5 Turbo"),
    ModelOption(id="gpt-4", name="GPT-4"),
]
