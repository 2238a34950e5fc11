"""Pytest fixtures and shared test configuration.

Provides reusable fixtures for unit and integration tests.

Fixtures:
    - settings: Assistant settings pointing at a fake endpoint
    - store: Fresh in-memory key-value store
    - provider: Scripted upstream completions endpoint
    - completion_client: CompletionClient wired to the provider
    - orchestrator: ChatOrchestrator with instant retries and flushes
    - async_client: HTTPX client for API testing

The upstream endpoint is always replaced by httpx.MockTransport, so no test
needs network access or a real API key.
"""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient, MockTransport

from docchat.api import create_app
from docchat.engine.client import CompletionClient
from docchat.engine.config import AssistantSettings
from docchat.engine.orchestrator import ChatOrchestrator, get_orchestrator
from docchat.engine.stream import StreamConsumer
from docchat.store.kv import InMemoryStore
from tests.providers import TEST_ENDPOINT, ProviderStub



@pytest.fixture
def settings() -> AssistantSettings:
    """Return settings for a fake endpoint with a dummy key.

    Returns:
        AssistantSettings with auto-naming and streaming on.
    """
    return AssistantSettings(
        api_endpoint=TEST_ENDPOINT,
        api_key="sk-test-key",
        default_model="gpt-3.5-turbo",
        naming_model="gpt-3.5-turbo",
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def provider() -> ProviderStub:
    """Scripted upstream; queue responses before triggering requests."""
    return ProviderStub()


@pytest.fixture
async def completion_client(provider: ProviderStub) -> AsyncGenerator[CompletionClient]:
    """Create a CompletionClient whose transport is the provider stub.

    Yields:
        CompletionClient with a short stall timeout.
    """
    async with AsyncClient(transport=MockTransport(provider.handler)) as http:
        yield CompletionClient(http_client=http, stall_timeout=5.0)


@pytest.fixture
def orchestrator(
    store: InMemoryStore,
    settings: AssistantSettings,
    completion_client: CompletionClient,
) -> ChatOrchestrator:
    """Create an orchestrator that retries and flushes without delay.

    Returns:
        ChatOrchestrator backed by the in-memory store.
    """
    return ChatOrchestrator(
        store=store,
        client=completion_client,
        settings=settings,
        consumer_factory=lambda: StreamConsumer(retry_delay=0, flush_interval=0),
    )


@pytest.fixture
async def async_client(orchestrator: ChatOrchestrator) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for API testing.

    The app's orchestrator dependency is overridden with the test orchestrator.

    Yields:
        Configured AsyncClient for making test requests.
    """
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await orchestrator.wait_background()
