"""Conversation engine for streaming assistant turns.

Responsibilities:
    - History limiting, summarization and compression before each request
    - Incremental decoding of the provider's event-stream frames
    - Stream consumption with bounded retries, debounced flushes and cancellation
    - Turn orchestration and conversation management (engine.orchestrator)

The orchestrator is imported from ``docchat.engine.orchestrator`` directly;
it depends on the store package, which itself depends on ``engine.config``.
"""

from docchat.engine.cancellation import CancellationToken
from docchat.engine.client import CompletionClient, HttpChunkSource
from docchat.engine.config import AssistantSettings, get_settings
from docchat.engine.decoder import FrameDecoder, iter_deltas
from docchat.engine.errors import (
    EngineError,
    ProviderHTTPError,
    ProviderResponseError,
    StreamReadError,
    SummarizationError,
    TurnCancelled,
)
from docchat.engine.history import HistoryProcessor, compress_message
from docchat.engine.quotes import QuoteChannel
from docchat.engine.stream import MAX_RETRIES, FlushScheduler, StreamConsumer, StreamOutcome

__all__ = [
    "MAX_RETRIES",
    "AssistantSettings",
    "CancellationToken",
    "CompletionClient",
    "EngineError",
    "FlushScheduler",
    "FrameDecoder",
    "HistoryProcessor",
    "HttpChunkSource",
    "ProviderHTTPError",
    "ProviderResponseError",
    "QuoteChannel",
    "StreamConsumer",
    "StreamOutcome",
    "StreamReadError",
    "SummarizationError",
    "TurnCancelled",
    "compress_message",
    "get_settings",
    "iter_deltas",
]
