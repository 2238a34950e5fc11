"""Request orchestration for assistant turns.

Core module for the assistant's conversation handling.

Architecture Decisions:

1. **Single active turn** - Only one assistant turn is in flight at a time.
   Sending while a reply streams stops that reply instead of queuing a new
   one; sending while a buffered reply is pending is rejected.

2. **Injected store** - Settings, models and conversations live behind a
   key-value store interface, so the orchestrator holds no ambient state
   beyond the current in-memory view.

3. **Placeholder then stream** - Streaming turns append an empty assistant
   message first and mutate it in place as content arrives. Buffered turns
   append the finished message in one step.

4. **Failures end turns, not sessions** - Provider errors become system
   messages, stream problems become inline notices. ``send`` never raises.

5. **Background naming** - Auto-naming runs as a detached task after the
   third round trip and can only ever change the title.
"""

import asyncio
import logging
import os
import re
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import httpx
from pydantic import BaseModel, ValidationError

from docchat.engine.cancellation import CancellationToken
from docchat.engine.client import CompletionClient
from docchat.engine.config import AssistantSettings, get_settings
from docchat.engine.errors import (
    EngineError,
    ProviderHTTPError,
    ProviderResponseError,
    SummarizationError,
    TurnCancelled,
)
from docchat.engine.history import HistoryProcessor
from docchat.engine.quotes import QuoteChannel
from docchat.engine.stream import CANCELLED_NOTICE, StreamConsumer
from docchat.models.completions import CompletionRequest, ProviderMessage
from docchat.models.conversation import (
    ASSISTANT_ROLE,
    NAMING_TITLE,
    SYSTEM_ROLE,
    USER_ROLE,
    Conversation,
    HistoryProcessingStatus,
    Message,
    ModelOption,
    StreamState,
)
from docchat.store.kv import KeyValueStore, SqliteStore
from docchat.store.repository import SETTINGS_KEY, ConversationRepository

logger = logging.getLogger(__name__)

# Store conversations in project data directory
_DATA_DIR = Path(os.getenv("ASSISTANT_DATA_DIR", Path(__file__).parent.parent.parent / "data"))
_STORE_DB = _DATA_DIR / "assistant.db"

AUTO_NAME_MIN_ROUNDS = 3
NAMING_CONTEXT_MESSAGES = 6

SUMMARIZER_INSTRUCTION = (
    "You are an assistant that summarizes conversations. Summarize the conversation "
    "history concisely, keeping the key information so a later model can understand "
    "the context of the conversation."
)
NAMING_INSTRUCTION = (
    "You name conversations. Based on the conversation, produce a short, accurate "
    "title of at most 15 words that reflects its core topic. Do not use quotes; "
    "return only the title."
)
NAMING_REQUEST = (
    "Generate a short title for this conversation, at most 15 words, that captures "
    "the core topic we discussed. Return only the title text."
)

_TITLE_QUOTES = re.compile(r"^[\"'“”‘’「『]+|[\"'“”‘’」』]+$")

UpdateCallback = Callable[[Message], None]


class TurnResult(BaseModel):
    """Outcome of one assistant turn."""

    state: StreamState
    message: Message | None
    history_status: HistoryProcessingStatus
    error: str | None = None


class _ActiveTurn:
    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self.token = CancellationToken()
        self.placeholder_created = False


def compose_user_content(text: str, quotes: list[str]) -> str:
    """Prefix quoted passages as markdown blockquotes to the typed text."""
    text = text.strip()
    if not quotes:
        return text
    quoted = "\n\n".join(f"> {quote}" for quote in quotes)
    return f"{quoted}\n\n{text}" if text else quoted


def clean_title(raw: str) -> str:
    return _TITLE_QUOTES.sub("", raw.strip()).strip()


class ChatOrchestrator:
    """Runs assistant turns and manages conversations.

    Args:
        store: Persisted key-value store for settings, models and conversations.
        client: Provider client. Created from settings when omitted.
        quotes: Channel delivering quoted text from document viewers.
        settings: Settings to use when none are persisted yet.
        consumer_factory: Builds a StreamConsumer per turn; override in tests.
    """

    def __init__(
        self,
        store: KeyValueStore,
        client: CompletionClient | None = None,
        quotes: QuoteChannel | None = None,
        settings: AssistantSettings | None = None,
        consumer_factory: Callable[[], StreamConsumer] | None = None,
    ) -> None:
        self.repository = ConversationRepository(store, defaults=settings)
        self.settings = self.repository.load_settings()
        self.models = self.repository.load_models()
        self.conversations = self.repository.load_conversations()
        self.current_id = self.repository.load_current_id()
        if self.get_conversation(self.current_id) is None:
            self.current_id = None

        self.client = client or CompletionClient(
            timeout=self.settings.request_timeout,
            stall_timeout=self.settings.stream_stall_timeout,
        )
        self.quotes = quotes or QuoteChannel()
        self._pending_quotes: list[str] = []
        self._consumer_factory = consumer_factory or StreamConsumer
        self._history = HistoryProcessor(summarizer=self._summarize)
        self._active: _ActiveTurn | None = None
        self._background: set[asyncio.Task] = set()
        self.history_status = HistoryProcessingStatus()
        self._unsubscribe_settings = store.subscribe(SETTINGS_KEY, self._on_settings_changed)

    # --- State accessors -------------------------------------------------

    @property
    def current_conversation(self) -> Conversation | None:
        return self.get_conversation(self.current_id)

    @property
    def is_busy(self) -> bool:
        return self._active is not None

    @property
    def is_streaming(self) -> bool:
        return self._active is not None and self._active.placeholder_created

    @property
    def pending_quotes(self) -> list[str]:
        self._pending_quotes.extend(self.quotes.drain())
        return list(self._pending_quotes)

    def get_conversation(self, conversation_id: str | None) -> Conversation | None:
        if conversation_id is None:
            return None
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def _save(self) -> None:
        self.repository.save_conversations(self.conversations)
        self.repository.save_current_id(self.current_id)

    # --- Settings and models ---------------------------------------------

    def update_settings(self, **changes) -> AssistantSettings:
        """Validate and persist new settings values."""
        merged = {**self.settings.model_dump(), **changes}
        self.settings = AssistantSettings.model_validate(merged)
        self.repository.save_settings(self.settings)
        return self.settings

    def _on_settings_changed(self, key: str, value: dict | None) -> None:
        # Settings written through another handle on the same store apply from the next turn.
        if value is None:
            return
        try:
            self.settings = AssistantSettings.model_validate(value)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid settings update: {e.error_count()} errors")
            return
        logger.debug("Settings reloaded from store")

    def add_model(self, model_id: str, name: str) -> ModelOption:
        model = ModelOption(id=model_id.strip(), name=name.strip())
        if any(m.id == model.id for m in self.models):
            raise ValueError(f"Model {model.id!r} already exists")
        self.models.append(model)
        self.repository.save_models(self.models)
        return model

    def delete_model(self, model_id: str) -> None:
        """Remove a model unless it is selected or the default.

        Raises:
            ValueError: If the model is in use.
        """
        if model_id == self.selected_model or model_id == self.settings.default_model:
            raise ValueError(f"Model {model_id!r} is in use and cannot be deleted")
        self.models = [m for m in self.models if m.id != model_id]
        self.repository.save_models(self.models)

    @property
    def selected_model(self) -> str:
        conversation = self.current_conversation
        return conversation.model if conversation else self.settings.default_model

    def select_model(self, model_id: str) -> None:
        conversation = self.current_conversation or self.new_conversation()
        conversation.model = model_id
        self._save()

    # --- Conversations ----------------------------------------------------

    def new_conversation(self) -> Conversation:
        conversation = Conversation(model=self.selected_model)
        self.conversations.insert(0, conversation)
        self.current_id = conversation.id
        self._save()
        logger.info(f"Created conversation {conversation.id}")
        return conversation

    def switch_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            raise KeyError(conversation_id)
        self.current_id = conversation_id
        self._save()
        return conversation

    def delete_conversation(self, conversation_id: str) -> None:
        if self.get_conversation(conversation_id) is None:
            raise KeyError(conversation_id)
        if self._active is not None and self._active.conversation_id == conversation_id:
            self._active.token.cancel()
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if self.current_id == conversation_id:
            self.current_id = None
            self.new_conversation()
        else:
            self._save()

    def list_conversations(self) -> list[Conversation]:
        return list(self.conversations)

    # --- Message operations -----------------------------------------------

    def edit_message(self, message_id: str, content: str) -> Message:
        """Replace a message with an edited snapshot. Does not regenerate."""
        conversation = self._require_current()
        index = conversation.find_message(message_id)
        if index < 0:
            raise KeyError(message_id)
        edited = conversation.messages[index].model_copy(
            update={"content": content, "edited": True, "edited_at": datetime.now(timezone.utc)}
        )
        conversation.messages[index] = edited
        self._save()
        return edited

    def delete_message(self, message_id: str) -> None:
        conversation = self._require_current()
        index = conversation.find_message(message_id)
        if index < 0:
            raise KeyError(message_id)
        del conversation.messages[index]
        self._save()

    def _require_current(self) -> Conversation:
        conversation = self.current_conversation
        if conversation is None:
            raise KeyError("no current conversation")
        return conversation

    # --- Quotes -----------------------------------------------------------

    def quote(self, text: str) -> None:
        """Add quoted text to the pending input of the next turn."""
        self.quotes.publish(text)
        self._pending_quotes.extend(self.quotes.drain())

    def clear_quotes(self) -> None:
        self.quotes.drain()
        self._pending_quotes.clear()

    async def translate(self, text: str, on_update: UpdateCallback | None = None) -> TurnResult | None:
        """Send ``text`` as the only quote with the translate instruction."""
        if not text or not text.strip():
            return None
        self.clear_quotes()
        self._pending_quotes.append(text)
        return await self.send(self.settings.translate_prompt, on_update=on_update)

    # --- Turns ------------------------------------------------------------

    def cancel(self) -> bool:
        """Fire the active turn's cancellation token."""
        if self._active is None:
            return False
        logger.info("Cancelling active turn")
        self._active.token.cancel()
        return True

    async def send(self, text: str = "", on_update: UpdateCallback | None = None) -> TurnResult | None:
        """Send a user message and run the assistant's reply.

        Returns:
            The turn's result, or None when the send was rejected or was
            reinterpreted as stopping the reply currently streaming.
        """
        quotes = self.pending_quotes
        if not text.strip() and not quotes:
            return None

        if self._active is not None:
            if self._active.placeholder_created:
                self.cancel()
            else:
                logger.info("Send rejected: a reply is already pending")
            return None

        conversation = self.current_conversation or self.new_conversation()
        conversation.messages.append(Message(role=USER_ROLE, content=compose_user_content(text, quotes)))
        self._pending_quotes.clear()
        self._save()

        return await self._run_turn(conversation, on_update)

    async def regenerate(self, index: int, on_update: UpdateCallback | None = None) -> TurnResult | None:
        """Drop the reply at or after ``index`` and generate it again.

        For a user message everything after it is removed; for an assistant
        or system message it and everything after it are removed.
        """
        if self._active is not None:
            return None
        conversation = self._require_current()
        if not 0 <= index < len(conversation.messages):
            raise IndexError(index)

        keep = index + 1 if conversation.messages[index].role == USER_ROLE else index
        del conversation.messages[keep:]
        if not any(m.role == USER_ROLE for m in conversation.messages):
            self._save()
            return None
        self._save()
        return await self._run_turn(conversation, on_update)

    async def _run_turn(self, conversation: Conversation, on_update: UpdateCallback | None) -> TurnResult:
        settings = self.settings
        turn = _ActiveTurn(conversation.id)
        self._active = turn

        try:
            try:
                processed, status = await self._history.process(
                    conversation.messages,
                    limit=settings.history_limit,
                    compression_threshold=settings.compression_threshold,
                    enable_summary=settings.enable_history_summary,
                    summary_prompt=settings.history_summary_prompt,
                )
            except TurnCancelled:
                return TurnResult(state=StreamState.CANCELLED, message=None, history_status=self.history_status)
            self.history_status = status

            request = CompletionRequest(
                model=conversation.model,
                messages=[ProviderMessage.from_message(m) for m in processed],
                temperature=settings.temperature,
                stream=settings.stream_output,
            )

            if settings.stream_output:
                result = await self._stream_turn(conversation, request, turn, on_update)
            else:
                result = await self._buffered_turn(conversation, request, turn, on_update)
        finally:
            self._active = None

        self._save()
        if result.state is StreamState.COMPLETED:
            self._maybe_auto_name(conversation)
        return result

    async def _stream_turn(
        self,
        conversation: Conversation,
        request: CompletionRequest,
        turn: _ActiveTurn,
        on_update: UpdateCallback | None,
    ) -> TurnResult:
        placeholder = Message(role=ASSISTANT_ROLE, content="")
        conversation.messages.append(placeholder)
        turn.placeholder_created = True
        self._notify(on_update, placeholder)

        consumer = self._consumer_factory()
        consumer.transition(StreamState.REQUESTING)

        def flush(content: str) -> None:
            placeholder.content = content
            self._notify(on_update, placeholder)

        try:
            async with self.client.stream(
                request,
                endpoint=self.settings.api_endpoint,
                api_key=self.settings.api_key,
                token=turn.token,
            ) as source:
                outcome = await consumer.consume(source, turn.token, flush)
        except TurnCancelled:
            consumer.transition(StreamState.CANCELLED)
            placeholder.content += CANCELLED_NOTICE
            self._notify(on_update, placeholder)
            return TurnResult(state=StreamState.CANCELLED, message=placeholder, history_status=self.history_status)
        except Exception as e:
            if consumer.state is StreamState.REQUESTING:
                consumer.transition(StreamState.FAILED)
            self._remove_message(conversation, placeholder)
            return self._fail_turn(conversation, e)

        placeholder.content = outcome.content
        logger.info(f"Turn finished: {outcome.state.value} ({len(outcome.content)} chars, {outcome.retries} retries)")
        return TurnResult(state=outcome.state, message=placeholder, history_status=self.history_status)

    async def _buffered_turn(
        self,
        conversation: Conversation,
        request: CompletionRequest,
        turn: _ActiveTurn,
        on_update: UpdateCallback | None,
    ) -> TurnResult:
        try:
            content = await self.client.complete(
                request,
                endpoint=self.settings.api_endpoint,
                api_key=self.settings.api_key,
                token=turn.token,
            )
        except TurnCancelled:
            logger.info("Buffered request cancelled by user")
            return TurnResult(state=StreamState.CANCELLED, message=None, history_status=self.history_status)
        except Exception as e:
            return self._fail_turn(conversation, e)

        message = Message(role=ASSISTANT_ROLE, content=content)
        conversation.messages.append(message)
        self._notify(on_update, message)
        return TurnResult(state=StreamState.COMPLETED, message=message, history_status=self.history_status)

    def _fail_turn(self, conversation: Conversation, error: Exception) -> TurnResult:
        logger.error(f"Turn failed: {error}")
        message = Message(role=SYSTEM_ROLE, content=f"Error: {error or type(error).__name__}")
        conversation.messages.append(message)
        return TurnResult(
            state=StreamState.FAILED,
            message=message,
            history_status=self.history_status,
            error=str(error),
        )

    @staticmethod
    def _remove_message(conversation: Conversation, message: Message) -> None:
        index = conversation.find_message(message.id)
        if index >= 0:
            del conversation.messages[index]

    @staticmethod
    def _notify(on_update: UpdateCallback | None, message: Message) -> None:
        if on_update is None:
            return
        try:
            on_update(message)
        except Exception as e:
            logger.error(f"Update callback failed: {e}")

    # --- One-off completions ------------------------------------------------

    async def _summarize(self, messages: list[Message], prompt: str) -> str | None:
        request = CompletionRequest(
            model=self.settings.default_model,
            messages=[
                ProviderMessage(role=SYSTEM_ROLE, content=SUMMARIZER_INSTRUCTION),
                *(ProviderMessage.from_message(m) for m in messages),
                ProviderMessage(role=USER_ROLE, content=prompt or self.settings.history_summary_prompt),
            ],
            temperature=self.settings.temperature,
        )
        token = self._active.token if self._active is not None else None
        try:
            return await self.client.complete(
                request,
                endpoint=self.settings.api_endpoint,
                api_key=self.settings.api_key,
                token=token,
            )
        except (ProviderHTTPError, ProviderResponseError, httpx.HTTPError) as e:
            raise SummarizationError(str(e)) from e

    def _maybe_auto_name(self, conversation: Conversation) -> None:
        if (
            not self.settings.auto_name_conversation
            or conversation.is_named
            or conversation.is_naming
            or conversation.count_round_trips() < AUTO_NAME_MIN_ROUNDS
        ):
            return
        task = asyncio.create_task(self._name_conversation(conversation))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _name_conversation(self, conversation: Conversation) -> None:
        previous_title = conversation.title
        conversation.title = NAMING_TITLE
        conversation.is_naming = True
        self._save()

        request = CompletionRequest(
            model=self.settings.naming_model,
            messages=[
                ProviderMessage(role=SYSTEM_ROLE, content=NAMING_INSTRUCTION),
                *(ProviderMessage.from_message(m) for m in conversation.messages[:NAMING_CONTEXT_MESSAGES]),
                ProviderMessage(role=USER_ROLE, content=NAMING_REQUEST),
            ],
            temperature=self.settings.temperature,
        )
        try:
            title = clean_title(
                await self.client.complete(
                    request,
                    endpoint=self.settings.api_endpoint,
                    api_key=self.settings.api_key,
                )
            )
        except (EngineError, httpx.HTTPError) as e:
            logger.warning(f"Conversation naming failed for {conversation.id}: {e}")
            title = ""

        conversation.is_naming = False
        if title:
            conversation.title = title
            conversation.is_named = True
            logger.info(f"Named conversation {conversation.id}: {title}")
        else:
            conversation.title = previous_title
        self._save()

    async def wait_background(self) -> None:
        """Wait for detached tasks such as auto-naming to finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def aclose(self) -> None:
        self.cancel()
        await self.wait_background()
        self._unsubscribe_settings()
        await self.client.aclose()


# Module-level singleton instance
_orchestrator: ChatOrchestrator | None = None


def get_orchestrator() -> ChatOrchestrator:
    """Get or create the global orchestrator.

    Backed by a SQLite store in the data directory.

    Returns:
        The ChatOrchestrator instance.
    """
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator(store=SqliteStore(_STORE_DB), settings=get_settings())
    return _orchestrator


async def close_orchestrator() -> None:
    """Cancel any active turn and release the global orchestrator."""
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.aclose()
        _orchestrator = None
