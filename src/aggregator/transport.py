"""Stream transports: the contract the aggregator reads from, and its
httpx implementation.

HttpTransport POSTs the chat request to the backend's streaming endpoint
and hands the response body to the aggregator chunk by chunk as it arrives,
after undoing any Content-Encoding the backend applied.
"""

import logging
from collections.abc import AsyncIterator, Callable
from typing import Protocol, runtime_checkable

import httpx

from src.aggregator.config import StreamConfig
from src.aggregator.errors import TransportError, TransportOpenError
from src.models.schemas import ChatRequest

logger = logging.getLogger(__name__)

STREAM_ACCEPT = "application/x-ndjson, text/event-stream"


@runtime_checkable
class Transport(Protocol):
    """A byte or text stream opened for one chat request.

    Implementations raise TransportOpenError from open(), return None from
    read() once the stream is over, raise TransportError from read() when
    the connection fails, and release everything in close().
    """

    async def open(self) -> None: ...

    async def read(self) -> bytes | str | None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[ChatRequest, StreamConfig], Transport]


class HttpTransport:
    """Streams one chat response over HTTP.

    A client passed in is shared with the caller and left open on close.
    Without one, the transport creates and owns its own AsyncClient.
    """

    def __init__(
        self,
        request: ChatRequest,
        config: StreamConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._request = request
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._response: httpx.Response | None = None
        self._chunks: AsyncIterator[bytes] | None = None

    async def open(self) -> None:
        """Send the request and check the response status.

        Raises:
            TransportOpenError: If the connection fails or the backend
                answers with a non-success status.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self._config.request_timeout,
                    connect=self._config.connect_timeout,
                )
            )

        try:
            request = self._client.build_request(
                "POST",
                self._config.stream_url,
                json=self._request.to_payload(),
                headers={"Accept": STREAM_ACCEPT},
            )
            self._response = await self._client.send(request, stream=True)
        except httpx.RequestError as e:
            await self.close()
            raise TransportOpenError(f"Connection failed: {e}") from e
        except BaseException:
            # Cancelled or failed outside httpx: still release the client.
            await self.close()
            raise

        if self._response.is_error:
            status_code = self._response.status_code
            await self.close()
            raise TransportOpenError(f"HTTP {status_code}", status_code=status_code)

        logger.debug(f"Stream opened: {request.url} ({self._response.status_code})")
        self._chunks = self._response.aiter_bytes()

    async def read(self) -> bytes | None:
        """Return the next decoded chunk, or None once the body is exhausted.

        Raises:
            TransportError: If the connection fails mid-stream.
        """
        if self._chunks is None:
            raise TransportError("Transport is not open")
        try:
            return await anext(self._chunks)
        except StopAsyncIteration:
            return None
        except httpx.HTTPError as e:
            raise TransportError(f"Stream interrupted: {e}") from e

    async def close(self) -> None:
        """Release the response and, when owned, the client."""
        response, self._response = self._response, None
        self._chunks = None
        try:
            if response is not None:
                await response.aclose()
        finally:
            if self._owns_client and self._client is not None:
                client, self._client = self._client, None
                await client.aclose()
