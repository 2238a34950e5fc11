"""Message-passing channel for "quote this text" requests.

Viewers publish selected passages; the orchestrator drains them into the
pending input of the next user turn.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)

DEFAULT_MAXSIZE = 32


class QuoteChannel:
    """Bounded FIFO of quoted passages.

    When full, publishing drops the oldest pending quote so the most recent
    selections are kept.
    """

    def __init__(self, maxsize: int = DEFAULT_MAXSIZE) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)

    def publish(self, text: str) -> bool:
        """Queue a quote. Returns False when the text is blank."""
        if not text or not text.strip():
            return False
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.warning(f"Quote channel full, dropping oldest quote ({len(dropped)} chars)")
        self._queue.put_nowait(text)
        return True

    def drain(self) -> list[str]:
        """Remove and return every pending quote in publish order."""
        quotes: list[str] = []
        while not self._queue.empty():
            quotes.append(self._queue.get_nowait())
        return quotes

    def __len__(self) -> int:
        return self._queue.qsize()
