"""Exceptions raised while opening, reading and parsing a chat stream."""


class StreamError(Exception):
    """Base class for streaming chat failures."""


class TransportOpenError(StreamError):
    """Raised when the stream cannot be opened.

    Carries the HTTP status code when the backend answered with one.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransportError(StreamError):
    """Raised when an open stream fails mid-flight."""


class ParseError(StreamError):
    """Raised when a single stream record cannot be understood."""

    def __init__(self, message: str, line: str | None = None) -> None:
        self.line = line
        super().__init__(message)


class ProtocolViolation(ParseError):
    """Raised when a well-formed record breaks the framing contract."""


class SessionCancelledError(StreamError):
    """Reported to on_error when the caller cancels a session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Stream session {session_id} was cancelled")
