"""History processing applied before every completion request.

Keeps the request within a message and size budget:

1. **Summary** - when enabled and the history is long enough, everything
   older than the last ``limit`` messages is replaced by one synthetic system
   message produced by a one-off completion. Failures fall through silently.
2. **Limit** - otherwise only the most recent ``limit`` messages are kept.
3. **Compression** - any remaining message longer than the threshold keeps
   its first 60% and last 40% of the threshold around an elision marker.
"""

import logging
import math
from collections.abc import Awaitable, Callable

from docchat.engine.errors import SummarizationError, TurnCancelled
from docchat.models.conversation import SYSTEM_ROLE, HistoryProcessingStatus, Message

logger = logging.getLogger(__name__)

HEAD_SHARE = 0.6
TAIL_SHARE = 0.4

# Summary is only worth a request when it replaces more than two messages
SUMMARY_MIN_SURPLUS = 2

Summarizer = Callable[[list[Message], str], Awaitable[str | None]]


def elision_marker(omitted: int) -> str:
    return f"\n\n[Message compressed: {omitted} characters omitted]\n\n"


def compress_message(content: str, threshold: int) -> str:
    """Shorten ``content`` to its head and tail around an elision marker.

    Args:
        content: The message text.
        threshold: Maximum characters kept from the original.

    Returns:
        The original text when it fits, else head + marker + tail where the
        head is 60% and the tail 40% of ``threshold``.
    """
    if not content or len(content) <= threshold:
        return content

    keep_start = math.floor(threshold * HEAD_SHARE)
    keep_end = math.floor(threshold * TAIL_SHARE)
    tail = content[len(content) - keep_end :] if keep_end > 0 else ""

    return content[:keep_start] + elision_marker(len(content) - threshold) + tail


def summary_message(summary: str) -> Message:
    return Message(
        role=SYSTEM_ROLE,
        content=(
            f"Summary of the earlier conversation:\n{summary}\n\n"
            "Continue the conversation based on this summary."
        ),
    )


class HistoryProcessor:
    """Shrinks, summarizes and compresses message history.

    Args:
        summarizer: Coroutine function taking the messages to summarize and
            the summary prompt, returning the summary text. Required only
            when summaries are enabled.
    """

    def __init__(self, summarizer: Summarizer | None = None) -> None:
        self._summarizer = summarizer

    async def process(
        self,
        messages: list[Message],
        limit: int,
        compression_threshold: int,
        enable_summary: bool = False,
        summary_prompt: str = "",
    ) -> tuple[list[Message], HistoryProcessingStatus]:
        """Return the history to send and a description of what was done.

        The input list and its messages are never modified.
        """
        status = HistoryProcessingStatus(original_count=len(messages))
        if not messages:
            return [], status

        processed = list(messages)
        summarized = False

        if enable_summary and len(messages) > limit + SUMMARY_MIN_SURPLUS:
            recent = messages[len(messages) - limit :] if limit > 0 else []
            older = messages[: len(messages) - len(recent)]
            summary = await self._summarize(older, summary_prompt)
            if summary:
                processed = [summary_message(summary), *recent]
                summarized = True
                status.summarized = True

        if not summarized and len(messages) > limit:
            processed = messages[len(messages) - limit :] if limit > 0 else []
            status.limit_applied = True

        result: list[Message] = []
        for message in processed:
            if len(message.content) > compression_threshold:
                status.compressed = True
                message = message.model_copy(
                    update={"content": compress_message(message.content, compression_threshold)}
                )
            result.append(message)

        status.processed_count = len(result)
        logger.debug(
            f"History processed: {status.original_count} -> {status.processed_count} "
            f"(summarized={status.summarized}, limited={status.limit_applied}, "
            f"compressed={status.compressed})"
        )
        return result, status

    async def _summarize(self, older: list[Message], prompt: str) -> str | None:
        if self._summarizer is None:
            return None
        try:
            summary = await self._summarizer(older, prompt)
        except TurnCancelled:
            raise
        except SummarizationError as e:
            logger.warning(f"History summary failed, falling back to limit: {e}")
            return None
        except Exception as e:
            logger.warning(f"Unexpected error while summarizing history: {e}")
            return None
        if not summary or not summary.strip():
            return None
        return summary.strip()
