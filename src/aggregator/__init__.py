"""Streaming response aggregation for the chat client.

Consumes the chunked response stream of the chat backend and turns it into
clean, incremental message events.

Responsibilities:
    - Opening the stream over HTTP (or any injected transport)
    - Reassembling records split across arbitrary chunk boundaries
    - Delta and cumulative content framing with duplicate suppression
    - Completion detection: end marker, idle and hard timeouts,
      transport close and failure, caller cancellation
    - Exactly-once completion signalling and transport release

Contains no UI logic. Consumers only see callbacks.
"""

from src.aggregator.config import StreamConfig, get_stream_config
from src.aggregator.errors import (
    ParseError,
    ProtocolViolation,
    SessionCancelledError,
    StreamError,
    TransportError,
    TransportOpenError,
)
from src.aggregator.session import StreamSession
from src.aggregator.stream_aggregator import (
    StreamAggregator,
    get_stream_aggregator,
    stream_chat_response,
)
from src.aggregator.transport import HttpTransport, Transport

__all__ = [
    "HttpTransport",
    "ParseError",
    "ProtocolViolation",
    "SessionCancelledError",
    "StreamAggregator",
    "StreamConfig",
    "StreamError",
    "StreamSession",
    "Transport",
    "TransportError",
    "TransportOpenError",
    "get_stream_aggregator",
    "get_stream_config",
    "stream_chat_response",
]
