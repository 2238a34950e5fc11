"""Typed access to the assistant's persisted state."""

import logging

from pydantic import ValidationError

from docchat.engine.config import AssistantSettings
from docchat.models.conversation import DEFAULT_MODELS, Conversation, ModelOption
from docchat.store.kv import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "assistant_settings"
MODELS_KEY = "assistant_models"
CONVERSATIONS_KEY = "assistant_conversations"
CURRENT_CONVERSATION_KEY = "current_conversation_id"


class ConversationRepository:
    """Loads and saves settings, models and conversations.

    Args:
        store: Backing key-value store.
        defaults: Settings used when nothing has been persisted yet.
    """

    def __init__(self, store: KeyValueStore, defaults: AssistantSettings | None = None) -> None:
        self.store = store
        self._defaults = defaults

    def load_settings(self) -> AssistantSettings:
        raw = self.store.get(SETTINGS_KEY)
        if raw is not None:
            try:
                return AssistantSettings.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Ignoring invalid persisted settings: {e.error_count()} errors")
        if self._defaults is not None:
            return self._defaults
        return AssistantSettings()

    def save_settings(self, settings: AssistantSettings) -> None:
        self.store.set(SETTINGS_KEY, settings.model_dump(mode="json"))

    def load_models(self) -> list[ModelOption]:
        raw = self.store.get(MODELS_KEY)
        if raw is None:
            return [m.model_copy() for m in DEFAULT_MODELS]
        return [ModelOption.model_validate(item) for item in raw]

    def save_models(self, models: list[ModelOption]) -> None:
        self.store.set(MODELS_KEY, [m.model_dump() for m in models])

    def load_conversations(self) -> list[Conversation]:
        raw = self.store.get(CONVERSATIONS_KEY, [])
        return [Conversation.model_validate(item) for item in raw]

    def save_conversations(self, conversations: list[Conversation]) -> None:
        self.store.set(CONVERSATIONS_KEY, [c.model_dump(mode="json") for c in conversations])

    def load_current_id(self) -> str | None:
        return self.store.get(CURRENT_CONVERSATION_KEY)

    def save_current_id(self, conversation_id: str | None) -> None:
        if conversation_id is None:
            self.store.delete(CURRENT_CONVERSATION_KEY)
        else:
            self.store.set(CURRENT_CONVERSATION_KEY, conversation_id)
