"""Chat endpoints: streamed and buffered assistant turns.

The streaming endpoint emits ``data: <StreamChunk>`` lines. Content chunks
carry only the text appended since the previous chunk; the last chunk has
``done=true`` and tells how the turn ended.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from docchat.engine.orchestrator import ChatOrchestrator, TurnResult, get_orchestrator
from docchat.models.conversation import HistoryProcessingStatus, Message, StreamState
from docchat.models.schemas import ChatRequest, ChatResponse, QuoteRequest, StreamChunk, StreamStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

_FINAL_STATUS = {
    StreamState.COMPLETED: StreamStatus.COMPLETE,
    StreamState.CANCELLED: StreamStatus.CANCELLED,
    StreamState.FAILED: StreamStatus.ERROR,
}


def _sse(chunk: StreamChunk) -> str:
    return f"data: {chunk.model_dump_json()}\n\n"


def _final_chunk(result: TurnResult | None, was_streaming: bool) -> StreamChunk:
    if result is None:
        if was_streaming:
            return StreamChunk(content="", done=True, status=StreamStatus.CANCELLED)
        return StreamChunk(content="", done=True, status=StreamStatus.ERROR, error="A reply is already pending")

    final_status = _FINAL_STATUS.get(result.state, StreamStatus.ERROR)
    error = None
    if final_status is StreamStatus.ERROR:
        error = result.error or (result.message.content.strip() if result.message else "Turn failed")
    return StreamChunk(content="", done=True, status=final_status, error=error)


async def _event_stream(orchestrator: ChatOrchestrator, message: str) -> AsyncGenerator[str]:
    """Run one turn and translate message updates into SSE chunks."""
    updates: asyncio.Queue[str | None] = asyncio.Queue()

    def on_update(msg: Message) -> None:
        updates.put_nowait(msg.content)

    was_streaming = orchestrator.is_streaming
    yield _sse(StreamChunk(content="", done=False, status=StreamStatus.RECEIVED))

    task = asyncio.create_task(orchestrator.send(message, on_update=on_update))
    task.add_done_callback(lambda _: updates.put_nowait(None))

    sent = ""
    try:
        while (content := await updates.get()) is not None:
            delta = content[len(sent) :] if content.startswith(sent) else content
            sent = content
            if delta:
                yield _sse(StreamChunk(content=delta, done=False, status=StreamStatus.GENERATING))

        yield _sse(_final_chunk(task.result(), was_streaming))
    finally:
        if not task.done():
            logger.info("Client disconnected, cancelling turn")
            orchestrator.cancel()
            await asyncio.gather(task, return_exceptions=True)


@router.post("/stream")
async def chat_stream(
    request: ChatRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Run an assistant turn and stream its content as Server-Sent Events.

    Sending while a reply is streaming stops that reply; the response then
    ends with a ``cancelled`` chunk.
    """
    for quote in request.quotes:
        orchestrator.quote(quote)

    return StreamingResponse(
        _event_stream(orchestrator, request.message),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive"},
    )


@router.post("", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    """Run an assistant turn and return the final message.

    Raises:
        409: Another turn is in flight.
    """
    for quote in request.quotes:
        orchestrator.quote(quote)

    result = await orchestrator.send(request.message)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Another reply is in progress",
        )
    return ChatResponse(message=result.message, state=result.state, history_status=result.history_status)


@router.post("/stop")
async def stop_generation(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> dict[str, bool]:
    """Cancel the turn in flight, if any."""
    return {"cancelled": orchestrator.cancel()}


@router.post("/quote", status_code=status.HTTP_202_ACCEPTED)
async def quote_text(
    request: QuoteRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, list[str]]:
    """Publish quoted text into the pending input of the next turn."""
    orchestrator.quotes.publish(request.text)
    return {"pending_quotes": orchestrator.pending_quotes}


@router.get("/history-status", response_model=HistoryProcessingStatus)
async def history_status(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> HistoryProcessingStatus:
    """Describe how the last request's history was processed."""
    return orchestrator.history_status
