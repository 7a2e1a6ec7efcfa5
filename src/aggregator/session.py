"""One streaming exchange with the chat backend.

A StreamSession owns a single open transport and runs as one asyncio task.
The task is the only writer of the session state: the transport read, the
idle/hard deadline and caller cancellation are all awaited together in that
task, and every terminal condition goes through ``_begin_close``. The first
condition to get there wins and everything that arrives afterwards is
ignored.

Terminal sequence, always in this order:
    1. cancel the pending read and the cancellation waiter
    2. close the transport (exactly once)
    3. flush the undelimited tail of the buffer (unless the sentinel was seen)
    4. fire exactly one of on_complete / on_error
"""

import asyncio
import logging
import uuid
from collections.abc import Callable

from src.aggregator.config import StreamConfig
from src.aggregator.errors import (
    ParseError,
    SessionCancelledError,
    StreamError,
    TransportError,
)
from src.aggregator.framing import END_OF_STREAM, ContentAssembler, LineBuffer, parse_line
from src.aggregator.transport import Transport
from src.models.schemas import (
    CloseReason,
    Framing,
    SessionEvent,
    SessionEventKind,
    SessionState,
    StreamRecord,
)

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[str], None]
StatusCallback = Callable[[StreamRecord], None]
CompleteCallback = Callable[[], None]
ErrorCallback = Callable[[StreamError], None]
TelemetryCallback = Callable[[SessionEvent], None]


class StreamSession:
    """State machine for a single streamed chat response.

    Created by StreamAggregator.start() once the transport is open.
    Callers only observe it and may cancel it; all mutation happens on the
    session's own task.
    """

    def __init__(
        self,
        transport: Transport,
        config: StreamConfig,
        *,
        on_fragment: FragmentCallback,
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
        on_status: StatusCallback | None = None,
        on_telemetry: TelemetryCallback | None = None,
        on_closed: Callable[["StreamSession"], None] | None = None,
        framing: Framing | None = None,
    ) -> None:
        self.id: str = str(uuid.uuid4())
        self._transport = transport
        self._config = config
        self._on_fragment = on_fragment
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_status = on_status
        self._on_telemetry = on_telemetry
        self._on_closed = on_closed

        self._state = SessionState.IDLE
        self._closed_reason: CloseReason | None = None
        self._error: StreamError | None = None
        self._buffer = LineBuffer()
        self._assembler = ContentAssembler(framing or config.default_framing)
        self._started_at = 0.0
        self._last_activity_at = 0.0

        self._cancel_requested = asyncio.Event()
        self._silent_cancel = not config.cancel_as_error
        self._pending_read: asyncio.Future[bytes | str | None] | None = None
        self._transport_released = False
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed_reason(self) -> CloseReason | None:
        return self._closed_reason

    @property
    def accumulated_content(self) -> str:
        """Assistant content delivered so far."""
        return self._assembler.accumulated

    @property
    def started_at(self) -> float:
        return self._started_at

    @property
    def last_activity_at(self) -> float:
        return self._last_activity_at

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.CLOSED

    def run(self) -> asyncio.Task[None]:
        """Start the read loop on the running event loop.

        Returns:
            The task driving this session.
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Stream session {self.id} was already started")

        loop = asyncio.get_running_loop()
        self._started_at = self._last_activity_at = loop.time()
        self._state = SessionState.STREAMING
        self._emit(SessionEventKind.OPENED)
        self._task = loop.create_task(self._run(), name=f"stream-session-{self.id}")
        return self._task

    async def wait(self) -> CloseReason | None:
        """Wait for the session to close.

        Returns:
            The reason the session closed.
        """
        if self._task is None:
            raise RuntimeError(f"Stream session {self.id} has not been started")
        await asyncio.shield(self._task)
        return self._closed_reason

    async def cancel(self, *, silent: bool | None = None) -> None:
        """Ask the session to stop and wait briefly for its teardown.

        Safe to call in any state; calls after the first, or after the
        session has already closed, do nothing.

        Args:
            silent: Report the cancellation through on_complete instead of
                on_error. Defaults to the inverse of config.cancel_as_error.
        """
        if self._state is SessionState.STREAMING and not self._cancel_requested.is_set():
            if silent is not None:
                self._silent_cancel = silent
            logger.info(f"Cancelling stream session {self.id}")
            self._cancel_requested.set()

        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return
        done, _ = await asyncio.wait({task}, timeout=self._config.cancel_grace)
        if not done:
            logger.warning(
                f"Stream session {self.id} did not finish teardown within "
                f"{self._config.cancel_grace}s"
            )

    async def _run(self) -> None:
        cancel_wait = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            await self._pump(cancel_wait)
        except asyncio.CancelledError:
            # Cancelled from outside (e.g. loop shutdown): still tear down.
            self._begin_close(CloseReason.CALLER_CANCELLED, SessionCancelledError(self.id))
            raise
        except Exception as e:
            # Reported through on_error; nobody may ever await this task.
            logger.exception(f"Stream session {self.id} failed")
            error = TransportError(f"Stream session failed: {e}")
            error.__cause__ = e
            self._begin_close(CloseReason.TRANSPORT_ERROR, error)
        finally:
            await self._teardown(cancel_wait)

    async def _pump(self, cancel_wait: asyncio.Future[bool]) -> None:
        loop = asyncio.get_running_loop()
        while self._state is SessionState.STREAMING:
            deadline, timeout_reason = self._next_deadline()
            remaining = deadline - loop.time()
            if remaining <= 0:
                self._begin_close(timeout_reason)
                break

            if self._pending_read is None:
                self._pending_read = asyncio.ensure_future(self._transport.read())

            done, _ = await asyncio.wait(
                {self._pending_read, cancel_wait},
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if cancel_wait in done:
                error = None if self._silent_cancel else SessionCancelledError(self.id)
                self._begin_close(CloseReason.CALLER_CANCELLED, error)
                break
            if self._pending_read not in done:
                continue

            read, self._pending_read = self._pending_read, None
            self._handle_read(read)

    def _next_deadline(self) -> tuple[float, CloseReason]:
        idle_at = self._last_activity_at + self._config.idle_timeout
        hard_at = self._started_at + self._config.hard_timeout
        if hard_at <= idle_at:
            return hard_at, CloseReason.HARD_TIMEOUT
        return idle_at, CloseReason.IDLE_TIMEOUT

    def _handle_read(self, read: asyncio.Future[bytes | str | None]) -> None:
        try:
            chunk = read.result()
        except TransportError as e:
            self._begin_close(CloseReason.TRANSPORT_ERROR, e)
            return
        except Exception as e:
            error = TransportError(f"Stream interrupted: {e}")
            error.__cause__ = e
            self._begin_close(CloseReason.TRANSPORT_ERROR, error)
            return

        if chunk is None:
            self._begin_close(CloseReason.TRANSPORT_CLOSED)
            return

        for line in self._buffer.feed(chunk):
            if self._state is not SessionState.STREAMING:
                break
            self._process_line(line)

    def _process_line(self, line: str) -> None:
        try:
            parsed = parse_line(line, self._config.sentinel)
        except ParseError as e:
            self._drop_record(e)
            return

        if parsed is None:
            return
        if parsed is END_OF_STREAM:
            self._begin_close(CloseReason.DONE)
            return

        if not parsed.is_content:
            self._mark_activity()
            if self._on_status is not None:
                self._invoke("on_status", self._on_status, parsed)
            return

        try:
            fragment = self._assembler.apply(parsed)
        except ParseError as e:
            self._drop_record(e)
            return

        self._mark_activity()
        if fragment:
            self._invoke("on_fragment", self._on_fragment, fragment)

    def _mark_activity(self) -> None:
        self._last_activity_at = asyncio.get_running_loop().time()

    def _drop_record(self, error: ParseError) -> None:
        logger.warning(f"Dropped record in stream session {self.id}: {error}")
        self._emit(SessionEventKind.PARSE_ERROR, detail=str(error))

    def _begin_close(self, reason: CloseReason, error: StreamError | None = None) -> bool:
        """Enter Closing with the given reason unless a reason was already chosen."""
        if self._state is not SessionState.STREAMING:
            return False
        self._state = SessionState.CLOSING
        self._closed_reason = reason
        self._error = error
        logger.debug(f"Stream session {self.id} closing: {reason.value}")
        return True

    async def _teardown(self, cancel_wait: asyncio.Future[bool]) -> None:
        waiters = [f for f in (self._pending_read, cancel_wait) if f is not None]
        self._pending_read = None
        for waiter in waiters:
            waiter.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)

        await self._release_transport()
        self._flush_residual()

        self._state = SessionState.CLOSED
        reason = self._closed_reason
        logger.info(f"Stream session {self.id} closed: {reason.value if reason else 'unknown'}")
        self._emit(
            SessionEventKind.CLOSED,
            reason=reason,
            detail=str(self._error) if self._error is not None else None,
        )

        if self._error is not None:
            self._invoke("on_error", self._on_error, self._error)
        else:
            self._invoke("on_complete", self._on_complete)

        if self._on_closed is not None:
            self._on_closed(self)

    async def _release_transport(self) -> None:
        if self._transport_released:
            return
        self._transport_released = True
        try:
            await asyncio.wait_for(self._transport.close(), timeout=self._config.close_timeout)
        except TimeoutError:
            logger.warning(f"Timed out closing transport for stream session {self.id}")
        except Exception as e:
            logger.warning(f"Failed to close transport for stream session {self.id}: {e}")

    def _flush_residual(self) -> None:
        rest = self._buffer.drain()
        if not rest.strip():
            return
        if self._closed_reason is CloseReason.DONE:
            logger.debug(f"Discarding {len(rest)} chars after end marker in session {self.id}")
            return
        self._process_line(rest)

    def _invoke(self, name: str, callback: Callable[..., None], *args: object) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Stream callback {name} failed for session {self.id}")

    def _emit(
        self,
        kind: SessionEventKind,
        reason: CloseReason | None = None,
        detail: str | None = None,
    ) -> None:
        if self._on_telemetry is None:
            return
        event = SessionEvent(
            session_id=self.id,
            kind=kind,
            reason=reason,
            detail=detail,
            at=asyncio.get_running_loop().time(),
        )
        self._invoke("on_telemetry", self._on_telemetry, event)
