"""Pytest fixtures and shared test configuration.

Provides reusable fixtures for unit and integration tests.

Fixtures:
    - stream_config: Config with short timeouts for state machine tests
    - recorder: Collects every callback a session fires
    - chat_request: A minimal valid chat request
    - run_stream: Starts a session over a scripted transport and waits for it
"""

from collections.abc import Awaitable, Callable

import pytest

from src.aggregator import StreamAggregator, StreamConfig, StreamSession
from src.models.schemas import ChatRequest
from tests.streams import CallbackRecorder, ScriptedTransport


@pytest.fixture
def stream_config() -> StreamConfig:
    """Return a config with short timeouts.

    Returns:
        StreamConfig suitable for fast state machine tests.
    """
    return StreamConfig(
        base_url="http://test",
        idle_timeout=0.2,
        hard_timeout=2.0,
        close_timeout=0.5,
        cancel_grace=0.5,
    )


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
def chat_request() -> ChatRequest:
    return ChatRequest(message="Hello there", session_id="test-session-12345")


@pytest.fixture
def run_stream(
    stream_config: StreamConfig,
    recorder: CallbackRecorder,
    chat_request: ChatRequest,
) -> Callable[..., Awaitable[StreamSession]]:
    """Start a session over a scripted transport and wait for it to close.

    Returns:
        Coroutine function taking the transport and optional overrides.
    """

    async def _run(
        transport: ScriptedTransport,
        config: StreamConfig | None = None,
        request: ChatRequest | None = None,
    ) -> StreamSession:
        aggregator = StreamAggregator(
            config or stream_config,
            transport_factory=lambda _request, _config: transport,
        )
        session = await aggregator.start(request or chat_request, **recorder.callbacks())
        await session.wait()
        return session

    return _run
