"""Stream aggregator service: opens chat streams and tracks their sessions.

Core module between the chat backend and the UI consumer.

Architecture Decisions:

1. **Open before session** - The transport is opened before a session
   exists. A failed or cancelled open closes the transport, raises to the
   caller and never fires a callback.

2. **One task per session** - Each session's read loop, idle/hard deadline
   and cancellation are awaited together in a single asyncio task. Sessions
   never share buffers or state.

3. **Injectable transport** - The aggregator asks a factory for a transport
   per request. The default factory streams over HTTP with httpx; tests and
   alternative backends plug in their own.

4. **Registry of live sessions** - Sessions register on start and remove
   themselves once closed, so cancel() by id is a no-op for finished or
   unknown sessions and shutdown can cancel whatever is still running.
"""

import asyncio
import logging
from types import TracebackType

import httpx

from src.aggregator.config import StreamConfig, get_stream_config
from src.aggregator.errors import TransportOpenError
from src.aggregator.session import (
    CompleteCallback,
    ErrorCallback,
    FragmentCallback,
    StatusCallback,
    StreamSession,
    TelemetryCallback,
)
from src.aggregator.transport import HttpTransport, Transport, TransportFactory
from src.models.schemas import ChatRequest, CloseReason

logger = logging.getLogger(__name__)


class StreamAggregator:
    """Turns chunked chat streams into fragment events with exactly-once completion.

    Wraps transport opening and session bookkeeping with:
    - Synchronous open failures (no partial sessions)
    - Per-session fragment, status, completion and error callbacks
    - Idempotent cancellation by session id
    - Shutdown of every live session
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        transport_factory: TransportFactory | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            config: Optional stream configuration.
                    Loads from environment if not provided.
            transport_factory: Builds a transport per request.
                    Defaults to HTTP streaming with httpx.
            client: Optional shared httpx client for the default transport.
        """
        self._config = config or get_stream_config()
        self._client = client
        self._transport_factory = transport_factory or self._create_http_transport
        self._sessions: dict[str, StreamSession] = {}

    def _create_http_transport(self, request: ChatRequest, config: StreamConfig) -> Transport:
        return HttpTransport(request, config, client=self._client)

    @property
    def config(self) -> StreamConfig:
        return self._config

    @property
    def active_sessions(self) -> list[StreamSession]:
        """Sessions that have not closed yet."""
        return list(self._sessions.values())

    def get_session(self, session_id: str) -> StreamSession | None:
        return self._sessions.get(session_id)

    async def start(
        self,
        request: ChatRequest,
        *,
        on_fragment: FragmentCallback,
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
        on_status: StatusCallback | None = None,
        on_telemetry: TelemetryCallback | None = None,
    ) -> StreamSession:
        """Open a stream for a request and start aggregating it.

        Args:
            request: The chat request to stream a response for.
            on_fragment: Receives each new span of assistant content.
            on_complete: Called once when the stream ends cleanly.
            on_error: Called once when the stream ends abnormally.
            on_status: Receives sideband records (e.g. thinking steps).
            on_telemetry: Receives session lifecycle events.

        Returns:
            The running session.

        Raises:
            TransportOpenError: If the stream could not be opened.
        """
        transport = self._transport_factory(request, self._config)
        try:
            await transport.open()
        except TransportOpenError as e:
            logger.warning(f"Failed to open chat stream: {e}")
            await self._discard(transport)
            raise
        except Exception as e:
            logger.warning(f"Failed to open chat stream: {e}")
            await self._discard(transport)
            raise TransportOpenError(f"Failed to open stream: {e}") from e
        except asyncio.CancelledError:
            await self._discard(transport)
            raise

        session = StreamSession(
            transport,
            self._config,
            on_fragment=on_fragment,
            on_complete=on_complete,
            on_error=on_error,
            on_status=on_status,
            on_telemetry=on_telemetry,
            on_closed=self._forget,
            framing=request.framing,
        )
        self._sessions[session.id] = session
        session.run()
        logger.info(f"Started stream session {session.id} (chat session {request.session_id})")
        return session

    async def cancel(self, session_id: str, *, silent: bool | None = None) -> None:
        """Cancel a running session.

        Unknown ids and sessions that already closed are ignored.

        Args:
            session_id: Id of the session returned by start().
            silent: Report through on_complete instead of on_error.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug(f"Cancel ignored for inactive stream session {session_id}")
            return
        await session.cancel(silent=silent)

    async def aclose(self) -> None:
        """Cancel every live session."""
        sessions = list(self._sessions.values())
        if sessions:
            logger.info(f"Cancelling {len(sessions)} live stream session(s)")
            await asyncio.gather(*(session.cancel() for session in sessions))

    async def __aenter__(self) -> "StreamAggregator":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _discard(self, transport: Transport) -> None:
        """Release a transport that never made it into a session."""
        try:
            await asyncio.wait_for(transport.close(), timeout=self._config.close_timeout)
        except TimeoutError:
            logger.warning("Timed out closing transport after failed open")
        except Exception as e:
            logger.warning(f"Failed to close transport after failed open: {e}")

    def _forget(self, session: StreamSession) -> None:
        self._sessions.pop(session.id, None)


# Module-level singleton instance
_stream_aggregator: StreamAggregator | None = None


def get_stream_aggregator() -> StreamAggregator:
    """Get or create the global stream aggregator.

    Returns:
        The StreamAggregator instance.
    """
    global _stream_aggregator
    if _stream_aggregator is None:
        _stream_aggregator = StreamAggregator()
    return _stream_aggregator


async def stream_chat_response(
    message: str,
    session_id: str | None,
    on_chunk: FragmentCallback,
    on_status: StatusCallback,
    on_complete: CompleteCallback,
    on_error: ErrorCallback,
    aggregator: StreamAggregator | None = None,
) -> CloseReason | None:
    """Stream one chat reply into callbacks and wait until it is over.

    Unlike StreamAggregator.start(), a stream that cannot be opened is
    reported through on_error, so a UI only has to handle callbacks.

    Returns:
        The reason the stream closed, or None if it never opened.
    """
    aggregator = aggregator or get_stream_aggregator()
    request = ChatRequest(message=message, session_id=session_id)
    try:
        session = await aggregator.start(
            request,
            on_fragment=on_chunk,
            on_status=on_status,
            on_complete=on_complete,
            on_error=on_error,
        )
    except TransportOpenError as e:
        on_error(e)
        return None
    return await session.wait()
