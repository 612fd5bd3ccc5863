"""Multiplexing several labeled streams over one packet stream.

Receive side: every non-flush packet starts with a band byte.

- Band 1 carries the primary payload and is passed through byte-exact.
- Band 2 carries progress text. It is line-buffered, prefixed with
  ``remote: `` and written to the diagnostic sink one whole line per
  ``write`` call, so concurrent writers to the same destination cannot
  split a line.
- Band 3 carries a fatal message from the remote and ends the stream.

A flush packet concludes the stream. Any other band is a protocol error.

Send side: a buffer is cut into packets no larger than the transport allows,
each tagged with the band byte.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Callable, Iterator, Protocol, Union

from .bands import Band, SidebandResult, status_for
from .colorize import LineColorizer
from .errors import MissingBandDesignator, RemoteFatal, SidebandError, UnknownBand
from .pktline import (
    LARGE_PACKET_MAX,
    MAX_ENCODABLE_LENGTH,
    PKT_HEADER_SIZE,
    Frame,
    FrameKind,
    encode_header,
)

logger = logging.getLogger(__name__)

DISPLAY_PREFIX = "remote: "

_LINE_BREAK = re.compile(rb"[\r\n]")
_TERMINATORS = (b"\n", b"\r")


class TerminalCapability(Enum):
    """How the diagnostic destination erases leftovers of a longer line."""

    ANSI_CLEAR = b"\033[K"
    PADDED_CLEAR = b"        "

    @property
    def suffix(self) -> bytes:
        return self.value


class Sink(Protocol):
    def write(self, data: bytes) -> object: ...


class FrameSource(Protocol):
    def read_frame(self) -> Union[Frame, bytes]: ...


class _OutputAccumulator:
    """Diagnostic text waiting for a line boundary.

    ``_buf`` holds display-ready bytes; ``_line`` holds the raw text of the
    line currently being received. The line is colorized only once it is
    complete, so the result does not depend on where packets were cut.
    """

    def __init__(
        self,
        sink: Sink,
        prefix: bytes,
        suffix: bytes,
        colorizer: Callable[[bytes], bytes],
    ) -> None:
        self._sink = sink
        self._prefix = prefix
        self._suffix = suffix
        self._colorize = colorizer
        self._buf = bytearray()
        self._line = bytearray()

    def _open_line(self) -> None:
        if not self._buf:
            self._buf += self._prefix

    def _commit_line(self) -> None:
        if self._line:
            self._buf += self._colorize(bytes(self._line))
            self._line.clear()

    def _write(self) -> None:
        self._sink.write(bytes(self._buf))
        self._buf.clear()

    def add_progress(self, content: bytes) -> None:
        pos = 0
        for brk in _LINE_BREAK.finditer(content):
            self._open_line()
            self._line += content[pos:brk.start()]
            if self._line:
                self._commit_line()
                self._buf += self._suffix
            self._buf += brk.group()
            self._write()
            pos = brk.end()

        if pos < len(content):
            self._open_line()
            self._line += content[pos:]

    def add_message(self, message: bytes, prefixed: bool = False) -> None:
        self._commit_line()
        if self._buf:
            self._buf += b"\n"
        if prefixed:
            self._buf += self._prefix
            message = self._colorize(message)
        self._buf += message

    def finish(self) -> None:
        self._commit_line()
        if not self._buf:
            return
        if not self._buf.endswith(_TERMINATORS):
            self._buf += b"\n"
        self._write()


class BandDemultiplexer:
    """Splits a banded packet stream into raw data and diagnostic text.

    Usage::

        demux = BandDemultiplexer(LineColorizer(policy), TerminalCapability.ANSI_CLEAR)
        result = demux.receive(reader, sys.stdout.buffer, FileDescriptorSink(2), "fetch")
        result.raise_for_status()
    """

    def __init__(
        self,
        colorizer: Callable[[bytes], bytes] | None = None,
        terminal: TerminalCapability = TerminalCapability.PADDED_CLEAR,
        prefix: str = DISPLAY_PREFIX,
    ) -> None:
        self.colorizer = colorizer if colorizer is not None else LineColorizer()
        self.terminal = terminal
        self.prefix = prefix

    def receive(
        self,
        source: FrameSource,
        raw_sink: Sink,
        diag_sink: Sink,
        label: str,
    ) -> SidebandResult:
        """Run the receive loop until a flush, a band-3 message, or a violation.

        Args:
            source: Yields one frame per ``read_frame`` call.
            raw_sink: Receives band 1 bytes verbatim.
            diag_sink: Receives band 2/3 text, one complete line per write.
            label: Names the caller in protocol error messages.

        Returns:
            A ``SidebandResult``. Transport errors raised by ``source`` and
            write failures propagate; pending text is still flushed first.
        """
        out = _OutputAccumulator(
            diag_sink,
            self.prefix.encode("utf-8"),
            self.terminal.suffix,
            self.colorizer,
        )
        error: SidebandError | None = None
        try:
            while error is None:
                frame = source.read_frame()
                if isinstance(frame, (bytes, bytearray)):
                    frame = Frame(kind=FrameKind.DATA, payload=bytes(frame))
                if frame.is_flush:
                    logger.debug("%s: flush, stream complete", label)
                    break
                error = self._dispatch(frame, raw_sink, out, label)
        finally:
            out.finish()

        if error is None:
            return SidebandResult()
        logger.warning("%s", error)
        return SidebandResult(status=status_for(error), error=error)

    def _dispatch(
        self,
        frame: Frame,
        raw_sink: Sink,
        out: _OutputAccumulator,
        label: str,
    ) -> SidebandError | None:
        if not frame.payload:
            error: SidebandError = MissingBandDesignator(label)
            out.add_message(str(error).encode("utf-8"))
            return error

        band = frame.payload[0]
        content = frame.payload[1:]

        if band == Band.DATA:
            if content:
                raw_sink.write(content)
            return None

        if band == Band.PROGRESS:
            out.add_progress(content)
            return None

        if band == Band.ERROR:
            out.add_message(content, prefixed=True)
            return RemoteFatal(content.decode("utf-8", errors="replace").rstrip("\r\n"))

        error = UnknownBand(band, label)
        out.add_message(str(error).encode("utf-8"))
        return error


def recv_sideband(
    label: str,
    source: FrameSource,
    raw_sink: Sink,
    diag_sink: Sink,
    colorizer: Callable[[bytes], bytes] | None = None,
    terminal: TerminalCapability = TerminalCapability.PADDED_CLEAR,
) -> SidebandResult:
    """Demultiplex ``source`` with a one-off :class:`BandDemultiplexer`."""
    return BandDemultiplexer(colorizer, terminal).receive(source, raw_sink, diag_sink, label)


def iter_sideband_frames(
    band: int,
    data: bytes,
    max_frame_size: int = LARGE_PACKET_MAX,
) -> Iterator[bytes]:
    """Cut ``data`` into encoded packets tagged with ``band``.

    A negative band produces plain packets with no band byte. No flush
    packet is appended.

    Raises:
        ValueError: If the band does not fit in a byte, or ``max_frame_size``
            leaves no room for payload or cannot be encoded in the header.
    """
    if band > 0xFF:
        raise ValueError(f"Band must be 0-255 or negative, got {band}")
    overhead = PKT_HEADER_SIZE + (1 if band >= 0 else 0)
    if not overhead < max_frame_size <= MAX_ENCODABLE_LENGTH:
        raise ValueError(
            f"max_frame_size must be {overhead + 1}-{MAX_ENCODABLE_LENGTH}, "
            f"got {max_frame_size}"
        )

    tag = bytes([band]) if band >= 0 else b""
    view = memoryview(data)
    offset = 0
    while offset < len(view):
        n = min(len(view) - offset, max_frame_size - overhead)
        yield encode_header(n + overhead) + tag + view[offset:offset + n].tobytes()
        offset += n


def send_sideband(
    sink: Sink,
    band: int,
    data: bytes,
    max_frame_size: int = LARGE_PACKET_MAX,
) -> int:
    """Write ``data`` to ``sink`` as band-tagged packets, one write per packet.

    Returns:
        The number of packets written.
    """
    count = 0
    for packet in iter_sideband_frames(band, data, max_frame_size):
        sink.write(packet)
        count += 1
    logger.debug("Sent %d bytes on band %d in %d packets", len(data), band, count)
    return count
