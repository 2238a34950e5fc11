"""Unit tests for history limiting, summarization and compression."""

import pytest
import pytest_check as check

from docchat.engine.errors import SummarizationError, TurnCancelled
from docchat.engine.history import HistoryProcessor, compress_message, elision_marker
from docchat.models.conversation import ASSISTANT_ROLE, SYSTEM_ROLE, USER_ROLE, Message


def make_history(count: int) -> list[Message]:
    """Alternate user and assistant messages, numbered from zero."""
    return [
        Message(role=USER_ROLE if i % 2 == 0 else ASSISTANT_ROLE, content=f"message {i}")
        for i in range(count)
    ]


def alphabet_text(length: int) -> str:
    return "".join(chr(ord("a") + i % 26) for i in range(length))


class RecordingSummarizer:
    """Summarizer double that records its calls."""

    def __init__(self, result: str | None = "short summary", error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[list[Message], str]] = []

    async def __call__(self, messages: list[Message], prompt: str) -> str | None:
        self.calls.append((messages, prompt))
        if self.error is not None:
            raise self.error
        return self.result


class TestCompressMessage:
    """Tests for head/tail compression of long messages."""

    def test_short_message_unchanged(self) -> None:
        """Messages at or below the threshold are returned as-is."""
        text = alphabet_text(2000)

        assert compress_message(text, 2000) == text

    def test_keeps_head_and_tail_around_marker(self) -> None:
        """A 5000 char message keeps 1200 head chars and 800 tail chars."""
        text = alphabet_text(5000)

        result = compress_message(text, 2000)

        check.is_true(result.startswith(text[:1200]))
        check.is_true(result.endswith(text[-800:]))
        check.is_in("[Message compressed: 3000 characters omitted]", result)
        check.equal(result, text[:1200] + elision_marker(3000) + text[-800:])

    def test_result_never_exceeds_threshold_plus_marker(self) -> None:
        """Compressed length is bounded by threshold plus the marker."""
        for length in (2001, 2500, 5000, 100_000):
            text = alphabet_text(length)
            result = compress_message(text, 2000)
            check.less_equal(len(result), 2000 + len(elision_marker(length - 2000)))

    def test_odd_threshold_uses_floor(self) -> None:
        """Head and tail lengths are floored."""
        text = alphabet_text(1000)

        result = compress_message(text, 501)

        check.is_true(result.startswith(text[:300] + "\n\n[Message compressed"))
        check.is_true(result.endswith("]\n\n" + text[-200:]))

    def test_empty_content(self) -> None:
        assert compress_message("", 500) == ""


class TestHistoryProcessor:
    """Tests for HistoryProcessor.process."""

    async def test_limit_keeps_most_recent(self) -> None:
        """25 messages with limit 10 keep the last 10 in order."""
        history = make_history(25)

        processed, status = await HistoryProcessor().process(history, limit=10, compression_threshold=2000)

        check.equal([m.id for m in processed], [m.id for m in history[15:]])
        check.is_true(status.limit_applied)
        check.is_false(status.summarized)
        check.is_false(status.compressed)
        check.equal(status.original_count, 25)
        check.equal(status.processed_count, 10)

    async def test_short_history_untouched(self) -> None:
        history = make_history(4)

        processed, status = await HistoryProcessor().process(history, limit=10, compression_threshold=2000)

        check.equal(processed, history)
        check.is_false(status.limit_applied)
        check.equal(status.processed_count, 4)

    async def test_empty_history(self) -> None:
        processed, status = await HistoryProcessor().process([], limit=10, compression_threshold=2000)

        check.equal(processed, [])
        check.equal(status.original_count, 0)
        check.equal(status.processed_count, 0)

    async def test_compresses_long_messages(self) -> None:
        """Long messages are replaced by compressed copies."""
        history = [Message(role=USER_ROLE, content=alphabet_text(5000))]

        processed, status = await HistoryProcessor().process(history, limit=10, compression_threshold=2000)

        check.is_true(status.compressed)
        check.is_in("3000 characters omitted", processed[0].content)
        check.equal(processed[0].id, history[0].id)

    async def test_input_is_not_modified(self) -> None:
        """Processing never mutates the caller's messages."""
        long_text = alphabet_text(3000)
        history = [*make_history(12), Message(role=USER_ROLE, content=long_text)]
        snapshot = [m.model_copy() for m in history]

        await HistoryProcessor().process(history, limit=5, compression_threshold=1000)

        check.equal(len(history), 13)
        check.equal(history, snapshot)
        check.equal(history[-1].content, long_text)

    async def test_summary_replaces_older_messages(self) -> None:
        """Older messages become one system summary followed by the last ``limit``."""
        history = make_history(12)
        summarizer = RecordingSummarizer("they discussed numbers")

        processed, status = await HistoryProcessor(summarizer).process(
            history,
            limit=5,
            compression_threshold=2000,
            enable_summary=True,
            summary_prompt="Summarize please",
        )

        check.equal(len(processed), 6)
        check.equal(processed[0].role, SYSTEM_ROLE)
        check.is_in("they discussed numbers", processed[0].content)
        check.equal([m.id for m in processed[1:]], [m.id for m in history[7:]])
        check.is_true(status.summarized)
        check.is_false(status.limit_applied)

        older, prompt = summarizer.calls[0]
        check.equal([m.id for m in older], [m.id for m in history[:7]])
        check.equal(prompt, "Summarize please")

    async def test_summary_skipped_when_surplus_is_small(self) -> None:
        """A history of limit + 2 messages is limited, not summarized."""
        summarizer = RecordingSummarizer()

        processed, status = await HistoryProcessor(summarizer).process(
            make_history(7), limit=5, compression_threshold=2000, enable_summary=True
        )

        check.equal(summarizer.calls, [])
        check.equal(len(processed), 5)
        check.is_true(status.limit_applied)

    async def test_summary_disabled(self) -> None:
        summarizer = RecordingSummarizer()

        processed, status = await HistoryProcessor(summarizer).process(
            make_history(20), limit=5, compression_threshold=2000
        )

        check.equal(summarizer.calls, [])
        check.equal(len(processed), 5)
        check.is_false(status.summarized)

    @pytest.mark.parametrize(
        "summarizer",
        [
            RecordingSummarizer(error=SummarizationError("upstream down")),
            RecordingSummarizer(error=RuntimeError("unexpected")),
            RecordingSummarizer(result=""),
            RecordingSummarizer(result=None),
        ],
        ids=["summarization-error", "unexpected-error", "empty", "none"],
    )
    async def test_summary_failure_falls_back_to_limit(self, summarizer: RecordingSummarizer) -> None:
        """Any summary failure silently degrades to the plain limit."""
        history = make_history(12)

        processed, status = await HistoryProcessor(summarizer).process(
            history, limit=5, compression_threshold=2000, enable_summary=True
        )

        check.equal([m.id for m in processed], [m.id for m in history[7:]])
        check.is_false(status.summarized)
        check.is_true(status.limit_applied)

    async def test_summary_is_compressed_when_long(self) -> None:
        """Compression applies to the synthetic summary message too."""
        summarizer = RecordingSummarizer(alphabet_text(3000))

        processed, status = await HistoryProcessor(summarizer).process(
            make_history(12), limit=5, compression_threshold=500, enable_summary=True
        )

        check.is_true(status.summarized)
        check.is_true(status.compressed)
        check.is_in("characters omitted", processed[0].content)

    async def test_cancellation_propagates(self) -> None:
        """A cancelled turn is not swallowed by the summary fallback."""
        summarizer = RecordingSummarizer(error=TurnCancelled("turn cancelled"))

        with pytest.raises(TurnCancelled):
            await HistoryProcessor(summarizer).process(
                make_history(12), limit=5, compression_threshold=2000, enable_summary=True
            )
