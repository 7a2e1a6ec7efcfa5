"""Stream aggregator configuration with environment variable loading.

Pydantic-based configuration for the streaming chat client: where the
backend lives, how long a stream may stay silent or run in total, and
how the end of a stream is marked.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from src.models.schemas import Framing

# Load environment variables from .env file
load_dotenv()

DEFAULT_SENTINEL = "[DONE]"


class StreamConfig(BaseModel):
    """Configuration for streaming chat sessions.

    Attributes:
        base_url: Chat backend base URL.
        stream_path: Path of the streaming chat endpoint.
        idle_timeout: Seconds without a parsed record before the stream is
            considered finished.
        hard_timeout: Wall-clock budget in seconds for a whole session.
        connect_timeout: Seconds allowed to establish the HTTP connection.
        request_timeout: Default httpx timeout for everything else.
        close_timeout: Seconds allowed for releasing the transport.
        cancel_grace: Seconds a cancel call waits for teardown.
        sentinel: Reserved payload marking the end of the stream.
        default_framing: Framing assumed for content records that do not
            say otherwise.
        cancel_as_error: Whether caller cancellation is reported through
            on_error (True) or on_complete (False).
    """

    base_url: str = Field(
        default_factory=lambda: os.getenv("API_BASE_URL", "http://localhost:8000"),
        description="Chat backend base URL",
    )
    stream_path: str = Field(
        default_factory=lambda: os.getenv("CHAT_STREAM_PATH", "/chat/stream"),
        description="Streaming chat endpoint path",
    )
    idle_timeout: float = Field(
        default_factory=lambda: float(os.getenv("STREAM_IDLE_TIMEOUT", "5.0")),
        gt=0.0,
        description="Seconds of silence that end the stream",
    )
    hard_timeout: float = Field(
        default_factory=lambda: float(os.getenv("STREAM_HARD_TIMEOUT", "30.0")),
        gt=0.0,
        description="Total seconds a session may run",
    )
    connect_timeout: float = Field(default=10.0, gt=0.0)
    request_timeout: float = Field(default=120.0, gt=0.0)
    close_timeout: float = Field(default=2.0, gt=0.0)
    cancel_grace: float = Field(default=2.0, gt=0.0)
    sentinel: str = Field(
        default=DEFAULT_SENTINEL,
        description="End-of-stream marker",
    )
    default_framing: Framing = Field(
        default_factory=lambda: Framing(os.getenv("STREAM_FRAMING", Framing.CUMULATIVE.value)),
        description="Framing assumed when neither record nor request specify one",
    )
    cancel_as_error: bool = True

    @field_validator("sentinel")
    @classmethod
    def validate_sentinel(cls, v: str) -> str:
        """Validate that the sentinel is a non-blank marker."""
        if not v or not v.strip():
            raise ValueError("sentinel must be a non-empty marker")
        return v.strip()

    @property
    def stream_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.stream_path.lstrip('/')}"


def get_stream_config() -> StreamConfig:
    """Create stream configuration from environment.

    Returns:
        Configured StreamConfig instance.

    Raises:
        ValidationError: If an environment value is out of range.
    """
    return StreamConfig()
