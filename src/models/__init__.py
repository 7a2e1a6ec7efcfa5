"""Pydantic models for stream requests, records and session telemetry.

Provides type safety and validation at both edges of the aggregator.

Models:
    - ChatRequest: Outgoing streaming chat request payload
    - StreamRecord: One parsed record from the backend stream
    - SessionEvent: Telemetry describing a session's lifecycle
    - Framing, SessionState, CloseReason, SessionEventKind: Enumerations
"""

from src.models.schemas import (
    CONTENT_RECORD_TYPE,
    ChatRequest,
    CloseReason,
    Framing,
    SessionEvent,
    SessionEventKind,
    SessionState,
    StreamRecord,
)

__all__ = [
    "CONTENT_RECORD_TYPE",
    "ChatRequest",
    "CloseReason",
    "Framing",
    "SessionEvent",
    "SessionEventKind",
    "SessionState",
    "StreamRecord",
]
