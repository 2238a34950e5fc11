"""Test package for the document chat assistant.

Provides test coverage for all components with unit tests for isolated
logic and integration tests for the HTTP API.

Structure:
    - unit/: Individual function and class tests
    - integration/: API workflow tests through the ASGI app
    - providers.py: Scripted upstream endpoint for httpx.MockTransport

The upstream provider is always scripted; nothing talks to a real LLM.
Leverages pytest with pytest-check for soft assertions.
"""
