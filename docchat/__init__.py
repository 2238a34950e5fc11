"""DocChat - streaming document assistant conversation engine.

Turns a user turn into an incrementally rendered AI response against an
OpenAI-compatible completions endpoint. Uses httpx for the upstream stream,
Pydantic for data validation and FastAPI for the HTTP surface.

Components:
    - engine: history processing, frame decoding, streaming and orchestration
    - store: key-value persistence for settings, models and conversations
    - api: HTTP endpoints and SSE streaming responses
    - models: domain model, provider wire format and API schemas
"""

__version__ = "0.1.0"
