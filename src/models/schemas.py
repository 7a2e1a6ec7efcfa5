from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONTENT_RECORD_TYPE = "response"


class Framing(str, Enum):
    """How a content record relates to the message built so far."""

    DELTA = "delta"
    CUMULATIVE = "cumulative"


class SessionState(str, Enum):
    """Lifecycle of a streaming session. Transitions only move forward."""

    IDLE = "idle"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseReason(str, Enum):
    """Why a streaming session ended."""

    DONE = "done"
    IDLE_TIMEOUT = "idle_timeout"
    HARD_TIMEOUT = "hard_timeout"
    TRANSPORT_ERROR = "transport_error"
    TRANSPORT_CLOSED = "transport_closed"
    CALLER_CANCELLED = "caller_cancelled"


class SessionEventKind(str, Enum):
    """Telemetry event kinds emitted by a session."""

    OPENED = "opened"
    PARSE_ERROR = "parse_error"
    CLOSED = "closed"


class ChatRequest(BaseModel):
    """Request payload for the streaming chat endpoint.

    Attributes:
        message: User's question or prompt.
        session_id: Optional session for conversation continuity.
        framing: Framing the backend is asked to use for content records.
        parameters: Extra session-scoped fields sent along with the message.
    """

    message: str = Field(..., min_length=1)
    session_id: str | None = None
    framing: Framing | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v: str) -> str:
        """Strip whitespace from message before validation."""
        if isinstance(v, str):
            return v.strip()
        return v

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON body sent to the backend."""
        payload: dict[str, Any] = dict(self.parameters)
        payload.update(self.model_dump(exclude={"parameters"}, exclude_none=True, mode="json"))
        return payload


class StreamRecord(BaseModel):
    """A single structured record from the backend stream.

    Attributes:
        type: Record discriminator. "response" carries assistant content,
            anything else (e.g. "thinking") is a sideband record.
        content: Text carried by the record.
        framing: Optional per-record framing override.
        timestamp: Backend timestamp in milliseconds, if sent.
    """

    model_config = ConfigDict(extra="ignore")

    type: str
    content: str = ""
    framing: Framing | None = None
    timestamp: int | None = None

    @property
    def is_content(self) -> bool:
        return self.type == CONTENT_RECORD_TYPE


class SessionEvent(BaseModel):
    """Structured telemetry emitted at the aggregator boundary."""

    session_id: str
    kind: SessionEventKind
    reason: CloseReason | None = None
    detail: str | None = None
    at: float = Field(..., description="Event loop clock when the event was emitted")
