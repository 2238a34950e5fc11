"""httpx client for the upstream chat completions endpoint.

Both modes send the same JSON body with bearer authentication. Non-2xx
answers become ProviderHTTPError before any stream is handed out.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from pydantic import ValidationError

from docchat.engine.cancellation import CancellationToken
from docchat.engine.errors import ProviderHTTPError, ProviderResponseError, StreamReadError
from docchat.models.completions import CompletionRequest, CompletionResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
DEFAULT_STALL_TIMEOUT = 30.0


def _error_detail(body: str) -> str:
    """Pull ``error.message`` out of a provider error body when present."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body.strip() or "empty response body"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return json.dumps(data, ensure_ascii=False)


class HttpChunkSource:
    """Reads raw body chunks from a streaming httpx response.

    A read that produces nothing within ``stall_timeout`` raises
    StreamReadError but leaves the underlying read pending, so the next
    ``read`` call resumes it. Once the body iterator itself has failed, every
    later read fails too.
    """

    def __init__(self, response: httpx.Response, stall_timeout: float = DEFAULT_STALL_TIMEOUT) -> None:
        self._iterator = response.aiter_bytes()
        self._stall_timeout = stall_timeout
        self._pending: asyncio.Future | None = None
        self._broken: Exception | None = None

    async def read(self) -> bytes | None:
        if self._broken is not None:
            raise StreamReadError(f"stream is broken: {self._broken}") from self._broken

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._iterator.__anext__())

        done, _ = await asyncio.wait({self._pending}, timeout=self._stall_timeout)
        if not done:
            raise StreamReadError(f"no data received for {self._stall_timeout:.0f}s")

        pending, self._pending = self._pending, None
        try:
            return pending.result()
        except StopAsyncIteration:
            return None
        except Exception as e:
            self._broken = e
            raise StreamReadError(str(e) or type(e).__name__) from e

    async def aclose(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            await asyncio.gather(self._pending, return_exceptions=True)
        self._pending = None


class CompletionClient:
    """Sends completion requests on behalf of the orchestrator.

    Args:
        http_client: Optional preconfigured AsyncClient (used by tests with
            httpx.MockTransport). Created on demand otherwise.
        timeout: Request timeout in seconds for a client created here.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT,
    ) -> None:
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=30.0))
        self._owns_http = http_client is None
        self.stall_timeout = stall_timeout

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    async def complete(
        self,
        request: CompletionRequest,
        *,
        endpoint: str,
        api_key: str,
        token: CancellationToken | None = None,
    ) -> str:
        """Send a buffered request and return the assistant's content.

        Raises:
            ProviderHTTPError: On a non-2xx status.
            ProviderResponseError: When the body has no assistant message.
            TurnCancelled: If ``token`` fires first.
            httpx.RequestError: On transport failures.
        """
        body = request.model_copy(update={"stream": False}).model_dump(mode="json")
        logger.debug(f"Sending buffered request to {endpoint} (model={request.model})")
        call = self._http.post(endpoint, json=body, headers=self._headers(api_key))
        response = await token.run(call) if token is not None else await call

        if response.is_error:
            raise ProviderHTTPError(response.status_code, _error_detail(response.text))

        try:
            return CompletionResponse.model_validate_json(response.content).content
        except ValidationError as e:
            raise ProviderResponseError(f"Invalid completion response: {e.error_count()} errors") from e

    @asynccontextmanager
    async def stream(
        self,
        request: CompletionRequest,
        *,
        endpoint: str,
        api_key: str,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[HttpChunkSource]:
        """Open a streaming request and yield a chunk source for its body.

        Raises:
            ProviderHTTPError: On a non-2xx status, before yielding.
            TurnCancelled: If ``token`` fires while the request is being sent.
            httpx.RequestError: On transport failures while connecting.
        """
        body = request.model_copy(update={"stream": True}).model_dump(mode="json")
        logger.debug(f"Opening stream to {endpoint} (model={request.model}, messages={len(request.messages)})")
        http_request = self._http.build_request(
            "POST",
            endpoint,
            json=body,
            headers={**self._headers(api_key), "Accept": "text/event-stream"},
        )
        send = self._http.send(http_request, stream=True)
        response = await token.run(send) if token is not None else await send

        try:
            if response.is_error:
                await response.aread()
                raise ProviderHTTPError(response.status_code, _error_detail(response.text))

            source = HttpChunkSource(response, stall_timeout=self.stall_timeout)
            try:
                yield source
            finally:
                await source.aclose()
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
