"""Length-prefixed packet framing ("pkt-line").

Packet layout::

    +--------------------+----------------------------------+
    | Length             | Payload                          |
    | 4 hex ASCII digits | (length - 4) bytes               |
    +--------------------+----------------------------------+

- Length: total packet size *including* the 4-byte header, lowercase hex
- ``0000``: flush packet, ends a stream
- ``0001`` / ``0002``: delimiter and response-end control packets
- ``0004``: a data packet that carries no payload
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

from .errors import PacketLineError

logger = logging.getLogger(__name__)

PKT_HEADER_SIZE = 4
LARGE_PACKET_MAX = 65520
LARGE_PACKET_DATA_MAX = LARGE_PACKET_MAX - PKT_HEADER_SIZE
MAX_ENCODABLE_LENGTH = 0xFFFF

FLUSH_PKT = b"0000"
DELIM_PKT = b"0001"
RESPONSE_END_PKT = b"0002"


class FrameKind(Enum):
    """What a packet header announced."""

    DATA = "data"
    FLUSH = "flush"
    DELIM = "delim"
    RESPONSE_END = "response-end"


_CONTROL_KINDS = {
    0: FrameKind.FLUSH,
    1: FrameKind.DELIM,
    2: FrameKind.RESPONSE_END,
}


@dataclass(frozen=True)
class Frame:
    """A single packet as delivered by the transport."""

    kind: FrameKind
    payload: bytes = b""

    @property
    def is_flush(self) -> bool:
        """True for a zero-length frame that terminates the stream."""
        return self.kind is FrameKind.FLUSH or (
            self.kind is FrameKind.DATA and not self.payload
        )

    def __len__(self) -> int:
        return len(self.payload)

    def __repr__(self) -> str:
        return (
            f"Frame(kind={self.kind.value}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def encode_header(length: int) -> bytes:
    """Encode a total packet length as four lowercase hex digits."""
    if not 0 <= length <= MAX_ENCODABLE_LENGTH:
        raise ValueError(f"Packet length must be 0-0xffff, got {length}")
    return b"%04x" % length


def encode_packet(payload: bytes) -> bytes:
    """Build one data packet around ``payload``.

    Raises:
        ValueError: If the payload does not fit in one packet.
    """
    if len(payload) > LARGE_PACKET_DATA_MAX:
        raise ValueError(
            f"Payload must be at most {LARGE_PACKET_DATA_MAX} bytes, "
            f"got {len(payload)}"
        )
    return encode_header(len(payload) + PKT_HEADER_SIZE) + payload


def encode_flush() -> bytes:
    """Build a flush packet."""
    return FLUSH_PKT


def parse_header(header: bytes) -> int:
    """Decode a 4-byte hex length header.

    Raises:
        PacketLineError: If the header is not four hex digits.
    """
    if len(header) != PKT_HEADER_SIZE:
        raise PacketLineError(f"short packet header: {header!r}")
    try:
        text = header.decode("ascii")
    except UnicodeDecodeError:
        raise PacketLineError(f"bad packet header: {header!r}") from None
    if any(c not in "0123456789abcdefABCDEF" for c in text):
        raise PacketLineError(f"bad packet header: {header!r}")
    return int(text, 16)


class PktLineReader:
    """Reads packets one at a time from a binary stream.

    Usage::

        reader = PktLineReader(sock.makefile("rb"))
        frame = reader.read_frame()
    """

    def __init__(self, stream: BinaryIO, max_frame_size: int = LARGE_PACKET_MAX) -> None:
        if max_frame_size <= PKT_HEADER_SIZE:
            raise ValueError(
                f"max_frame_size must exceed {PKT_HEADER_SIZE}, got {max_frame_size}"
            )
        self._stream = stream
        self._max_frame_size = max_frame_size

    @property
    def max_frame_size(self) -> int:
        return self._max_frame_size

    def _read_exact(self, size: int, what: str) -> bytes:
        chunks = []
        remaining = size
        while remaining:
            chunk = self._stream.read(remaining)
            if not chunk:
                raise PacketLineError(
                    f"the remote end hung up unexpectedly while reading {what} "
                    f"({size - remaining}/{size} bytes)"
                )
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read_frame(self) -> Frame:
        """Read the next packet.

        Returns:
            A ``Frame``. Control packets carry no payload.

        Raises:
            PacketLineError: On EOF, a malformed header, or an oversized packet.
        """
        length = parse_header(self._read_exact(PKT_HEADER_SIZE, "packet header"))

        if length in _CONTROL_KINDS:
            frame = Frame(kind=_CONTROL_KINDS[length])
            logger.debug("Read %s packet", frame.kind.value)
            return frame

        if length < PKT_HEADER_SIZE:
            raise PacketLineError(f"protocol error: bad line length {length}")

        if length > self._max_frame_size:
            raise PacketLineError(
                f"protocol error: bad line length {length} "
                f"(max {self._max_frame_size})"
            )

        payload = self._read_exact(length - PKT_HEADER_SIZE, "packet payload")
        logger.debug("Read data packet of %d bytes", len(payload))
        return Frame(kind=FrameKind.DATA, payload=payload)

    def __iter__(self):
        """Yield frames up to and including the first flush."""
        while True:
            frame = self.read_frame()
            yield frame
            if frame.is_flush:
                return


class PktLineWriter:
    """Writes packets to a binary stream, one ``write`` call per packet."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def write(self, data: bytes) -> int:
        """Write already-encoded packet bytes verbatim."""
        self._stream.write(data)
        return len(data)

    def write_packet(self, payload: bytes) -> int:
        return self.write(encode_packet(payload))

    def write_flush(self) -> int:
        return self.write(encode_flush())

    def flush(self) -> None:
        flush = getattr(self._stream, "flush", None)
        if flush is not None:
            flush()
