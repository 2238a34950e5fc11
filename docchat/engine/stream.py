"""Stream consumer with bounded retries, debounced flushes and cancellation.

Drives one assistant turn through ``IDLE -> REQUESTING -> STREAMING`` and
into exactly one terminal state:

- **COMPLETED** - the sentinel arrived or the connection ended cleanly.
- **CANCELLED** - the turn's cancellation token fired. Never retried.
- **FAILED** - ``MAX_RETRIES`` consecutive reads failed.

Every read is a tagged ``ReadResult`` so the loop is a flat dispatch on the
outcome instead of nested exception handling. Content decoded before the
turn ended is always kept, followed by at most one trailing notice.
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from docchat.engine.cancellation import CancellationToken
from docchat.engine.decoder import FrameDecoder
from docchat.engine.errors import TurnCancelled
from docchat.models.conversation import StreamState

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds between reconnect attempts
FLUSH_INTERVAL = 0.05  # at most one UI flush per 50ms

CANCELLED_NOTICE = "\n\n[Generation stopped by user]"
FAILED_NOTICE = "\n\n[Connection lost, the response could not be completed. Please try again later.]"

_TRANSITIONS: dict[StreamState, set[StreamState]] = {
    StreamState.IDLE: {StreamState.REQUESTING},
    StreamState.REQUESTING: {StreamState.STREAMING, StreamState.CANCELLED, StreamState.FAILED},
    StreamState.STREAMING: {StreamState.COMPLETED, StreamState.CANCELLED, StreamState.FAILED},
}


def retry_notice(attempt: int, max_retries: int = MAX_RETRIES) -> str:
    return f"\n\n[Connection interrupted, reconnecting (attempt {attempt}/{max_retries})...]"


class ChunkSource(Protocol):
    """Anything that hands out raw stream chunks one read at a time."""

    async def read(self) -> bytes | str | None:
        """Return the next chunk, or None once the stream has ended."""
        ...


class ReadKind(str, Enum):
    CHUNK = "chunk"
    END = "end"
    RETRYABLE = "retryable"
    CANCELLED = "cancelled"


class ReadResult(BaseModel):
    """Tagged outcome of a single read attempt."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: ReadKind
    chunk: bytes | str | None = None
    error: Exception | None = None


class StreamOutcome(BaseModel):
    """Final result of consuming one stream."""

    state: StreamState
    content: str
    retries: int = 0


class FlushScheduler:
    """Coalesces flush requests into at most one flush per interval.

    A request flushes immediately when the interval has elapsed since the
    last flush; otherwise a single trailing timer is armed. ``close`` cancels
    the timer and flushes unconditionally, so the last flush always sees the
    complete accumulated content.

    Args:
        flush: Callback performing the flush. Reads current state when called.
        interval: Minimum seconds between two flushes.
        clock: Monotonic time source. Defaults to the running loop's clock.
        call_later: Timer factory returning a handle with ``cancel()``.
            Defaults to the running loop's ``call_later``.
    """

    def __init__(
        self,
        flush: Callable[[], None],
        interval: float = FLUSH_INTERVAL,
        clock: Callable[[], float] | None = None,
        call_later: Callable[[float, Callable[[], None]], asyncio.TimerHandle] | None = None,
    ) -> None:
        loop = asyncio.get_running_loop() if clock is None or call_later is None else None
        self._flush = flush
        self._interval = interval
        self._clock = clock or loop.time
        self._call_later = call_later or loop.call_later
        self._last_flush: float | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False
        self.flush_count = 0

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def request(self) -> None:
        if self._closed:
            return
        now = self._clock()
        if self._last_flush is None or now - self._last_flush >= self._interval:
            self._cancel_timer()
            self._run_flush()
        elif self._timer is None:
            delay = self._interval - (now - self._last_flush)
            self._timer = self._call_later(delay, self._on_timer)

    def close(self) -> None:
        """Cancel any pending timer and flush one last time."""
        self._cancel_timer()
        self._closed = True
        self._run_flush()

    def _on_timer(self) -> None:
        self._timer = None
        if not self._closed:
            self._run_flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _run_flush(self) -> None:
        self._last_flush = self._clock()
        self.flush_count += 1
        self._flush()


class StreamConsumer:
    """Reads a chunk source into an accumulator bound to one message.

    Args:
        max_retries: Consecutive failed reads tolerated before FAILED.
        retry_delay: Seconds to wait before each retry.
        flush_interval: Debounce interval for ``on_flush`` calls.
        scheduler_factory: Builds the FlushScheduler; override in tests.
    """

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        flush_interval: float = FLUSH_INTERVAL,
        scheduler_factory: Callable[[Callable[[], None], float], FlushScheduler] | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.flush_interval = flush_interval
        self._scheduler_factory = scheduler_factory or FlushScheduler
        self.state = StreamState.IDLE
        self._parts: list[str] = []

    @property
    def content(self) -> str:
        return "".join(self._parts)

    def transition(self, new_state: StreamState) -> None:
        """Move to ``new_state``; terminal states are final for the turn."""
        if self.state.is_terminal:
            raise RuntimeError(f"Stream already {self.state.value}; cannot move to {new_state.value}")
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Invalid stream transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Stream state {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def consume(
        self,
        source: ChunkSource,
        token: CancellationToken,
        on_flush: Callable[[str], None],
    ) -> StreamOutcome:
        """Read ``source`` until it ends, fails, or ``token`` fires.

        ``on_flush`` receives the accumulated content, debounced while
        streaming and once more, unconditionally, on termination.
        """
        if self.state is StreamState.IDLE:
            self.transition(StreamState.REQUESTING)
        self.transition(StreamState.STREAMING)

        decoder = FrameDecoder()
        flusher = self._scheduler_factory(lambda: on_flush(self.content), self.flush_interval)
        retries = 0
        total_retries = 0

        try:
            while True:
                result = await self._read(source, token)

                if result.kind is ReadKind.CHUNK:
                    retries = 0
                    if self._append(decoder.feed(result.chunk)):
                        flusher.request()
                    if decoder.done:
                        self.transition(StreamState.COMPLETED)
                        break

                elif result.kind is ReadKind.END:
                    self._append(decoder.finish())
                    self.transition(StreamState.COMPLETED)
                    break

                elif result.kind is ReadKind.CANCELLED:
                    self._finish_cancelled()
                    break

                elif retries >= self.max_retries:
                    logger.error(f"Stream failed after {retries} retries: {result.error}")
                    self._parts.append(FAILED_NOTICE)
                    self.transition(StreamState.FAILED)
                    break

                else:
                    retries += 1
                    total_retries += 1
                    logger.warning(
                        f"Stream read failed, reconnecting ({retries}/{self.max_retries}): {result.error}"
                    )
                    self._parts.append(retry_notice(retries, self.max_retries))
                    flusher.request()
                    try:
                        await token.sleep(self.retry_delay)
                    except TurnCancelled:
                        self._finish_cancelled()
                        break
        finally:
            flusher.close()

        return StreamOutcome(state=self.state, content=self.content, retries=total_retries)

    async def _read(self, source: ChunkSource, token: CancellationToken) -> ReadResult:
        try:
            chunk = await token.run(source.read())
        except TurnCancelled:
            return ReadResult(kind=ReadKind.CANCELLED)
        except Exception as e:
            return ReadResult(kind=ReadKind.RETRYABLE, error=e)
        if chunk is None:
            return ReadResult(kind=ReadKind.END)
        return ReadResult(kind=ReadKind.CHUNK, chunk=chunk)

    def _append(self, deltas: list[str]) -> bool:
        self._parts.extend(deltas)
        return bool(deltas)

    def _finish_cancelled(self) -> None:
        logger.info("Stream cancelled by user")
        self._parts.append(CANCELLED_NOTICE)
        self.transition(StreamState.CANCELLED)
