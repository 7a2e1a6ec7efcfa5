"""Test package for Chat Stream.

Provides test coverage for the stream aggregator with unit tests for
isolated logic and integration tests over real HTTP streaming.

Structure:
    - unit/: Framing, config and session state machine tests
    - integration/: httpx transport against a streaming FastAPI backend
    - streams.py: Scripted transports and callback recording

Leverages pytest with pytest-asyncio and pytest-check for soft assertions.
"""
