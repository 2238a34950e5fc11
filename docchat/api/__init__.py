"""FastAPI endpoints for the document assistant.

HTTP and streaming routes with async request handling.
Supports Server-Sent Events for real-time chat streaming.

Endpoints:
    - GET /health: Service health status
    - POST /chat/stream: Streamed assistant turn (SSE)
    - POST /chat: Buffered assistant turn
    - POST /chat/stop, POST /chat/quote: Turn control and quoting
    - /conversations, /models: Conversation and model management
"""

from docchat.api.app import app, create_app

__all__ = ["app", "create_app"]
