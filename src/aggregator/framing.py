"""Line reassembly and content framing for chat streams.

The backend writes one record per line, either as NDJSON or as SSE
``data:`` fields. Physical chunks carry no alignment guarantee, so a
chunk may end in the middle of a record or even in the middle of a
multibyte character. This module turns chunks back into lines, lines
into records, and content records into new text spans.
"""

import codecs

from pydantic import ValidationError

from src.aggregator.errors import ParseError, ProtocolViolation
from src.models.schemas import CONTENT_RECORD_TYPE, Framing, StreamRecord


SSE_IGNORED_FIELDS = frozenset({"id", "retry"})
SSE_DONE_EVENT = "done"


class EndOfStream:
    """Marker returned when a line carries the end-of-stream sentinel."""

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = EndOfStream()


class LineBuffer:
    """Accumulates decoded text and hands out only delimited lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._tail: list[str] = []

    @property
    def pending(self) -> str:
        """Text received after the last line break."""
        return "".join(self._tail)

    def feed(self, chunk: bytes | str) -> list[str]:
        """Append a chunk and return every line it completed.

        The trailing, not yet terminated segment stays buffered until a
        later chunk delimits it. Only the new text is scanned, so a long
        line arriving in small pieces stays linear.
        """
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        lines = text.split("\n")
        rest = lines.pop()
        if lines:
            lines[0] = "".join(self._tail) + lines[0]
            self._tail = []
        if rest:
            self._tail.append(rest)
        return [line.rstrip("\r") for line in lines]

    def drain(self) -> str:
        """Return and clear whatever is left once the stream is over."""
        rest = "".join(self._tail) + self._decoder.decode(b"", final=True)
        self._tail = []
        return rest.rstrip("\r")


def parse_line(line: str, sentinel: str) -> StreamRecord | EndOfStream | None:
    """Parse one complete line of the stream.

    NDJSON lines must hold a record object. SSE ``data:`` payloads may be
    a record object too, or plain message text, which is read as a
    content record.

    Args:
        line: A delimited line, without its line break.
        sentinel: Payload that marks the end of the stream.

    Returns:
        The parsed record, END_OF_STREAM for the sentinel, or None for
        lines that carry nothing (blank lines, SSE comments and fields
        other than data).

    Raises:
        ParseError: If the payload is not a valid record.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith(":"):
        return None

    field, sep, value = line.lstrip().partition(":")
    if sep and field == "data":
        return _parse_data(value.removeprefix(" "), line, sentinel)
    if sep and field == "event":
        return END_OF_STREAM if value.strip() == SSE_DONE_EVENT else None
    if sep and field in SSE_IGNORED_FIELDS:
        return None

    if stripped == sentinel:
        return END_OF_STREAM
    return _parse_record(stripped, line)


def _parse_data(value: str, line: str, sentinel: str) -> StreamRecord | EndOfStream | None:
    payload = value.strip()
    if not payload:
        return None
    if payload == sentinel:
        return END_OF_STREAM
    if payload.startswith("{"):
        return _parse_record(payload, line)
    return StreamRecord(type=CONTENT_RECORD_TYPE, content=value)


def _parse_record(payload: str, line: str) -> StreamRecord:
    try:
        return StreamRecord.model_validate_json(payload)
    except ValidationError as e:
        first = e.errors()[0]
        raise ParseError(f"Malformed record: {first['msg']}", line=line) from e


class ContentAssembler:
    """Turns content records into new spans of the assistant message.

    Keeps the message delivered so far. Delta records extend it verbatim;
    cumulative records repeat the whole message and only the part beyond
    the accumulation is new.
    """

    def __init__(self, default_framing: Framing = Framing.CUMULATIVE) -> None:
        self._default_framing = default_framing
        self._accumulated = ""

    @property
    def accumulated(self) -> str:
        return self._accumulated

    def apply(self, record: StreamRecord) -> str:
        """Fold a content record in and return its new span (possibly empty).

        Raises:
            ProtocolViolation: If a cumulative record does not extend the
                accumulated message.
        """
        framing = record.framing or self._default_framing
        if framing is Framing.DELTA:
            self._accumulated += record.content
            return record.content

        if not record.content.startswith(self._accumulated):
            raise ProtocolViolation(
                f"Cumulative content does not extend the message so far "
                f"({len(record.content)} chars after {len(self._accumulated)})"
            )
        delta = record.content[len(self._accumulated):]
        self._accumulated = record.content
        return delta
