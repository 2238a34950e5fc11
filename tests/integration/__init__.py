"""Integration tests for components working together as a system.

Coverage:
    - Chat endpoints with real HTTP requests through the ASGI app
    - Server-Sent Events framing of streamed turns
    - Conversation and model management endpoints

Only the upstream completions endpoint is scripted; routing, validation,
orchestration and streaming all run for real.
"""
