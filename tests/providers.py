"""Scripted stand-in for the upstream completions endpoint.

Used through httpx.MockTransport so the real CompletionClient code path
(request building, status handling, body streaming) is exercised.
"""

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx

DONE = "data: [DONE]\n\n"
TEST_ENDPOINT = "https://llm.test/v1/chat/completions"


def frame(content: str) -> str:
    """Build one event-stream frame carrying a content delta."""
    payload = {"choices": [{"index": 0, "delta": {"content": content}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def _body(chunks: tuple[bytes | str | BaseException, ...], gate: asyncio.Event | None) -> AsyncIterator[bytes]:
    for chunk in chunks:
        if isinstance(chunk, BaseException):
            raise chunk
        yield chunk.encode() if isinstance(chunk, str) else chunk
    if gate is not None:
        await gate.wait()


Responder = Callable[[httpx.Request], Awaitable[httpx.Response]]


def json_responder(content: str) -> Responder:
    """Build a responder returning a buffered completion of ``content``."""

    async def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]},
        )

    return respond


class ProviderStub:
    """Answers queued responses in order and records every request body."""

    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.headers: list[httpx.Headers] = []
        self.received = asyncio.Event()
        self._responders: list[Responder] = []

    def queue_stream(self, *chunks: bytes | str | BaseException, gate: asyncio.Event | None = None) -> None:
        """Queue a 200 event-stream response.

        Exceptions in ``chunks`` are raised from the body at that point. With
        ``gate`` the body stays open after the chunks until the gate is set.
        """

        async def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=_body(chunks, gate),
            )

        self._responders.append(respond)

    def queue_json(self, content: str) -> None:
        """Queue a buffered completion whose assistant message is ``content``."""
        self._responders.append(json_responder(content))

    def queue_error(self, status_code: int, body: dict | str) -> None:
        async def respond(request: httpx.Request) -> httpx.Response:
            if isinstance(body, dict):
                return httpx.Response(status_code, json=body)
            return httpx.Response(status_code, text=body)

        self._responders.append(respond)

    def queue_hang(self, gate: asyncio.Event, then: Responder | None = None) -> None:
        """Queue a response that is only sent once ``gate`` is set."""

        async def respond(request: httpx.Request) -> httpx.Response:
            await gate.wait()
            if then is not None:
                return await then(request)
            return httpx.Response(503, json={"error": {"message": "gave up"}})

        self._responders.append(respond)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        self.received.set()
        if not self._responders:
            return httpx.Response(500, json={"error": {"message": "no response queued"}})
        return await self._responders.pop(0)(request)

