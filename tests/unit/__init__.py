"""Unit tests for individual components in isolation.

Ensures fast execution with minimal dependencies.

Coverage:
    - engine/: Decoder, stream consumer, history processing, client, orchestrator
    - store/: Key-value stores and the conversation repository
    - models/: Pydantic validation and serialization

Follows single responsibility per test function. Leverages pytest-check for
multiple assertions per test.
"""
