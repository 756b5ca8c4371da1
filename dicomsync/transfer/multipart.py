"""Streaming multipart/related codec for DICOMweb transfers.

Encoding frames a single payload for STOW-RS uploads without reading it into
memory. Decoding is an incremental parser fed with WADO-RS response chunks
that streams each part body to a sink opened per part.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import httpx

from dicomsync.core.exceptions import ProtocolError
from dicomsync.transfer.constants import DEFAULT_CHUNK_SIZE, DICOM_CONTENT_TYPE

logger = logging.getLogger(__name__)

CRLF = b"\r\n"
MAX_BOUNDARY_LENGTH = 70
MAX_HEADER_BYTES = 16 * 1024

_PARAM_RE = re.compile(r';\s*([^=;\s]+)\s*=\s*("(?:[^"\\]|\\.)*"|[^;]*)')
_QUOTED_FILENAME_RE = re.compile(r'filename\s*=\s*"([^"]*)"', re.IGNORECASE)
_BARE_FILENAME_RE = re.compile(r"filename\s*=\s*([^;\s]+)", re.IGNORECASE)


# =============================================================================
# Header Helpers
# =============================================================================


def make_boundary() -> str:
    """Generate a random boundary string."""
    return f"dicomsync-{uuid.uuid4().hex}"


def validate_boundary(boundary: str) -> str:
    """Check a boundary against the multipart length and character rules.

    Raises:
        ProtocolError: If the boundary cannot be used as a delimiter.
    """
    if not boundary or len(boundary) > MAX_BOUNDARY_LENGTH:
        raise ProtocolError(f"Invalid multipart boundary length: {boundary!r}")
    if boundary.endswith(" ") or any(c in boundary for c in "\r\n\""):
        raise ProtocolError(f"Invalid multipart boundary: {boundary!r}")
    return boundary


def quote_filename(filename: str) -> str:
    """Quote a file name for a Content-Disposition header.

    Raises:
        ProtocolError: If the name contains a line break.
    """
    if any(c in filename for c in "\r\n"):
        raise ProtocolError(f"Invalid file name for Content-Disposition: {filename!r}")
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_content_type(value: str) -> tuple[str, dict[str, str]]:
    """Split a Content-Type value into its media type and parameters."""
    media_type, _, rest = value.partition(";")
    params: dict[str, str] = {}
    for match in _PARAM_RE.finditer(";" + rest):
        key, raw = match.group(1).lower(), match.group(2).strip()
        if len(raw) >= 2 and raw[0] == raw[-1] == '"':
            raw = raw[1:-1].replace('\\"', '"')
        params[key] = raw
    return media_type.strip().lower(), params


def boundary_from_content_type(value: str | None) -> str | None:
    """Extract the boundary parameter from a multipart Content-Type.

    Returns:
        The boundary, or None when the header is absent or carries none.

    Raises:
        ProtocolError: If the content type is not multipart.
    """
    if not value:
        return None
    media_type, params = parse_content_type(value)
    if not media_type.startswith("multipart/"):
        raise ProtocolError(f"Expected a multipart response, got {media_type}")
    boundary = params.get("boundary")
    return validate_boundary(boundary) if boundary else None


def filename_from_disposition(value: str | None) -> str | None:
    """Extract the filename from a Content-Disposition header, if present."""
    if not value:
        return None
    match = _QUOTED_FILENAME_RE.search(value) or _BARE_FILENAME_RE.search(value)
    if not match:
        return None
    # Only the final path component, never a path chosen by the server
    name = Path(match.group(1).replace("\\", "/")).name
    return name or None


def suggest_filename(url: str, disposition: str | None = None) -> str:
    """Name for a downloaded object.

    Uses the Content-Disposition filename when there is one, otherwise the
    trailing path segment of the source URL.
    """
    name = filename_from_disposition(disposition)
    if name:
        return name
    segment = httpx.URL(url).path.rstrip("/").rsplit("/", 1)[-1]
    return segment or "download"


def _canonical_header(name: str) -> str:
    return "-".join(word.capitalize() for word in name.strip().split("-"))


# =============================================================================
# Messages
# =============================================================================


@dataclass
class MultipartPart:
    """One embedded part of a multipart message."""

    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def content_type(self) -> str | None:
        return self.headers.get("Content-Type")

    @property
    def filename(self) -> str | None:
        return filename_from_disposition(self.headers.get("Content-Disposition"))


@dataclass
class MultipartMessage:
    """Ordered parts sharing one boundary."""

    boundary: str
    parts: list[MultipartPart] = field(default_factory=list)


@dataclass(frozen=True)
class DecodedPart:
    """Metadata of a part streamed to a sink."""

    index: int
    headers: dict[str, str]
    size: int


# =============================================================================
# Encoder
# =============================================================================


class MultipartEncoder:
    """Frame one payload as a multipart/related body.

    The encoder is an iterable of byte chunks suitable as an httpx request
    ``content``. File payloads are read chunk by chunk while iterating.
    """

    def __init__(
        self,
        payload: Path | bytes,
        *,
        content_type: str = DICOM_CONTENT_TYPE,
        filename: str | None = None,
        boundary: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize encoder.

        Args:
            payload: File path (streamed) or in-memory bytes.
            content_type: Content type of the embedded part.
            filename: If given, adds a Content-Disposition header carrying it.
            boundary: Boundary to use; random when omitted.
            chunk_size: Read size for file payloads.

        Raises:
            ValueError: If the payload is empty.
            ProtocolError: If the file name cannot be carried in a header.
        """
        self.payload = payload
        self.part_content_type = content_type
        self.filename = filename
        self.boundary = validate_boundary(boundary or make_boundary())
        self.chunk_size = chunk_size

        if isinstance(payload, (bytes, bytearray)):
            self.payload_size = len(payload)
        else:
            self.payload_size = Path(payload).stat().st_size
        if self.payload_size == 0:
            raise ValueError("Refusing to encode an empty payload")

        part_headers = []
        if filename:
            disposition = f'form-data; name="stowrs"; filename={quote_filename(filename)};'
            part_headers.append(f"Content-Disposition: {disposition}")
        part_headers.append(f"Content-Type: {content_type}")

        head = f"--{self.boundary}\r\n" + "\r\n".join(part_headers) + "\r\n\r\n"
        self._head = head.encode("utf-8")
        self._tail = f"\r\n--{self.boundary}--".encode("ascii")

    @property
    def content_type(self) -> str:
        """Content-Type header value for the whole request body."""
        return (
            f'multipart/related; type="{self.part_content_type}"; boundary={self.boundary}'
        )

    @property
    def content_length(self) -> int:
        return len(self._head) + self.payload_size + len(self._tail)

    @property
    def headers(self) -> dict[str, str]:
        """Request headers describing the encoded body."""
        return {
            "Content-Type": self.content_type,
            "Content-Length": str(self.content_length),
        }

    def __iter__(self) -> Iterator[bytes]:
        yield self._head
        if isinstance(self.payload, (bytes, bytearray)):
            view = memoryview(self.payload)
            for start in range(0, len(view), self.chunk_size):
                yield bytes(view[start : start + self.chunk_size])
        else:
            with open(self.payload, "rb") as f:
                while chunk := f.read(self.chunk_size):
                    yield chunk
        yield self._tail

    def to_bytes(self) -> bytes:
        """Materialize the whole body (small payloads and tests only)."""
        return b"".join(self)


# =============================================================================
# Decoder
# =============================================================================


class PartSink(Protocol):
    """Writable destination for one part body."""

    def write(self, data: bytes) -> Any: ...

    def close(self) -> None: ...


PartOpener = Callable[[int, dict[str, str]], PartSink]

_PREAMBLE = "preamble"
_HEADERS = "headers"
_BODY = "body"
_DELIMITER = "delimiter"
_DONE = "done"


class MultipartDecoder:
    """Incremental multipart/related parser.

    Feed raw response bytes with :meth:`feed` and finish with :meth:`close`.
    For every part, ``open_part(index, headers)`` is called once the part
    headers are complete; the returned sink receives the body and is closed
    when the part ends.
    """

    def __init__(
        self,
        boundary: str | None,
        open_part: PartOpener,
        *,
        source: str | None = None,
    ):
        """Initialize decoder.

        Args:
            boundary: Boundary from the response Content-Type. When None the
                boundary is taken from the first delimiter line.
            open_part: Factory for per-part sinks.
            source: Label (usually the URL) used in error messages.
        """
        self.boundary = validate_boundary(boundary) if boundary else None
        self.open_part = open_part
        self.source = source
        self.parts: list[DecodedPart] = []
        self._buffer = bytearray()
        self._state = _PREAMBLE
        self._sink: PartSink | None = None
        self._headers: dict[str, str] = {}
        self._part_size = 0

    @property
    def finished(self) -> bool:
        return self._state == _DONE

    def _error(self, message: str) -> ProtocolError:
        self.abort()
        return ProtocolError(message, self.source)

    def feed(self, data: bytes) -> None:
        """Consume a chunk of the response body.

        Raises:
            ProtocolError: On malformed framing.
        """
        if self._state == _DONE:
            return
        self._buffer += data
        while self._step():
            pass

    def close(self) -> list[DecodedPart]:
        """Finish decoding.

        Returns:
            Metadata of every decoded part, in order.

        Raises:
            ProtocolError: If the stream ended before the closing delimiter.
        """
        if self._state == _PREAMBLE:
            raise self._error("Multipart boundary not found in response")
        if self._state != _DONE:
            raise self._error("Premature end of multipart stream")
        return list(self.parts)

    def abort(self) -> None:
        """Close the sink of the part in progress, if any."""
        if self._sink is not None:
            sink, self._sink = self._sink, None
            sink.close()

    # =========================================================================
    # State Machine
    # =========================================================================

    def _step(self) -> bool:
        if self._state == _PREAMBLE:
            return self._read_preamble()
        if self._state == _HEADERS:
            return self._read_headers()
        if self._state == _BODY:
            return self._read_body()
        if self._state == _DELIMITER:
            return self._read_delimiter_end()
        # Epilogue after the closing delimiter is ignored
        self._buffer.clear()
        return False

    def _read_preamble(self) -> bool:
        buf = self._buffer

        if self.boundary is None:
            # Skip leading blank lines; the first real line must be a delimiter
            while buf.startswith(CRLF):
                del buf[:2]
            end = buf.find(CRLF)
            if end == -1:
                if len(buf) > MAX_HEADER_BYTES:
                    raise self._error("Multipart boundary not found in response")
                return False
            line = bytes(buf[:end]).strip()
            if not line.startswith(b"--"):
                raise self._error("Response does not start with a multipart delimiter")
            self.boundary = validate_boundary(line[2:].decode("ascii", "replace"))
            del buf[: end + 2]
            self._state = _HEADERS
            return True

        delimiter = b"--" + self.boundary.encode("ascii")
        start = 0
        while True:
            idx = buf.find(delimiter, start)
            if idx == -1:
                # Keep only enough to match a delimiter split across chunks
                keep = len(delimiter) + 2
                if len(buf) > keep:
                    del buf[: len(buf) - keep]
                return False
            if idx == 0 or buf[idx - 2 : idx] == CRLF:
                break
            start = idx + 1

        del buf[: idx + len(delimiter)]
        self._state = _DELIMITER
        return True

    def _read_headers(self) -> bool:
        buf = self._buffer

        if buf.startswith(CRLF):
            del buf[:2]
            self._begin_part({})
            return True

        end = buf.find(CRLF + CRLF)
        if end == -1:
            if len(buf) > MAX_HEADER_BYTES:
                raise self._error("Multipart part headers too large")
            return False

        block = bytes(buf[:end]).decode("utf-8", "replace")
        del buf[: end + 4]

        headers: dict[str, str] = {}
        last: str | None = None
        for line in block.split("\r\n"):
            if not line:
                continue
            if line[0] in " \t" and last is not None:
                headers[last] = f"{headers[last]} {line.strip()}"
                continue
            name, sep, value = line.partition(":")
            if not sep or not name.strip():
                raise self._error(f"Malformed multipart part header: {line!r}")
            last = _canonical_header(name)
            headers[last] = value.strip()

        self._begin_part(headers)
        return True

    def _begin_part(self, headers: dict[str, str]) -> None:
        self._headers = headers
        self._part_size = 0
        self._sink = self.open_part(len(self.parts), headers)
        self._state = _BODY

    def _write(self, data: bytes | bytearray) -> None:
        if data and self._sink is not None:
            self._sink.write(bytes(data))
            self._part_size += len(data)

    def _read_body(self) -> bool:
        buf = self._buffer
        assert self.boundary is not None
        marker = CRLF + b"--" + self.boundary.encode("ascii")

        idx = buf.find(marker)
        if idx == -1:
            safe = len(buf) - (len(marker) - 1)
            if safe > 0:
                self._write(buf[:safe])
                del buf[:safe]
            return False

        self._write(buf[:idx])
        del buf[: idx + len(marker)]
        self._end_part()
        self._state = _DELIMITER
        return True

    def _end_part(self) -> None:
        self.parts.append(
            DecodedPart(index=len(self.parts), headers=self._headers, size=self._part_size)
        )
        sink, self._sink = self._sink, None
        if sink is not None:
            sink.close()

    def _read_delimiter_end(self) -> bool:
        buf = self._buffer
        if len(buf) < 2:
            return False

        if buf[:2] == b"--":
            del buf[:2]
            self._state = _DONE
            return True

        end = buf.find(CRLF)
        if end == -1:
            if len(buf) > MAX_BOUNDARY_LENGTH + 2:
                raise self._error("Malformed multipart delimiter line")
            return False
        # Only transport padding may follow a delimiter on its line
        if bytes(buf[:end]).strip(b" \t"):
            raise self._error("Malformed multipart delimiter line")
        del buf[: end + 2]
        self._state = _HEADERS
        return True


# =============================================================================
# In-memory Convenience
# =============================================================================


class _BytesSink:
    def __init__(self) -> None:
        self.data = bytearray()

    def write(self, data: bytes) -> int:
        self.data += data
        return len(data)

    def close(self) -> None:
        pass


def decode(body: bytes, content_type: str | None = None) -> MultipartMessage:
    """Decode a complete multipart body held in memory.

    Args:
        body: Raw multipart body.
        content_type: Content-Type header of the response, if known.

    Returns:
        The decoded message.

    Raises:
        ProtocolError: On malformed framing or truncated input.
    """
    sinks: list[_BytesSink] = []

    def open_part(index: int, headers: dict[str, str]) -> _BytesSink:
        sink = _BytesSink()
        sinks.append(sink)
        return sink

    decoder = MultipartDecoder(boundary_from_content_type(content_type), open_part)
    decoder.feed(body)
    decoded = decoder.close()
    assert decoder.boundary is not None
    return MultipartMessage(
        boundary=decoder.boundary,
        parts=[
            MultipartPart(headers=info.headers, body=bytes(sink.data))
            for info, sink in zip(decoded, sinks)
        ],
    )
