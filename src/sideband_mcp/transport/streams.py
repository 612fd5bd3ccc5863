"""Banded packet connections over plain binary streams.

The streams can be anything with ``read``/``write``: pipes to a child
process, ``socket.makefile`` objects, or in-memory buffers in tests.
Diagnostic output usually goes to file descriptor 2 through
:class:`FileDescriptorSink`, which hands each line to the OS whole.
"""

from __future__ import annotations

import logging
import os
from typing import BinaryIO

from ..models.settings import SidebandSettings
from ..protocol.bands import SidebandResult
from ..protocol.colorize import ColorPolicy, LineColorizer
from ..protocol.pktline import PktLineReader, PktLineWriter
from ..protocol.sideband import BandDemultiplexer, Sink, TerminalCapability, send_sideband

logger = logging.getLogger(__name__)

STDERR_FILENO = 2


class FileDescriptorSink:
    """Writes to a raw file descriptor, retrying until every byte is out."""

    def __init__(self, fd: int = STDERR_FILENO) -> None:
        self._fd = fd

    @property
    def fd(self) -> int:
        return self._fd

    def write(self, data: bytes) -> int:
        view = memoryview(data)
        while view:
            written = os.write(self._fd, view)
            view = view[written:]
        return len(data)

    def isatty(self) -> bool:
        return os.isatty(self._fd)


def sink_isatty(sink: object) -> bool:
    """Best-effort TTY check for any sink-like object."""
    isatty = getattr(sink, "isatty", None)
    if isatty is None:
        return False
    try:
        return bool(isatty())
    except (OSError, ValueError):
        return False


def detect_terminal(fd: int = STDERR_FILENO, term: str | None = None) -> TerminalCapability:
    """Pick the line-clearing style for a file descriptor.

    Args:
        fd: Descriptor the diagnostic text is written to.
        term: Terminal type; defaults to ``$TERM``.
    """
    if term is None:
        term = os.environ.get("TERM")
    return SidebandSettings(term=term).terminal_capability(os.isatty(fd))


class SidebandConnection:
    """A banded packet stream over an input and an output binary stream.

    Usage::

        conn = SidebandConnection(proc.stdout, proc.stdin)
        conn.send(1, request_bytes)
        conn.send_flush()
        result = conn.receive(sys.stdout.buffer, FileDescriptorSink(), "fetch")
        conn.close()
    """

    def __init__(
        self,
        instream: BinaryIO | None,
        outstream: BinaryIO | None,
        settings: SidebandSettings | None = None,
    ) -> None:
        self._settings = settings if settings is not None else SidebandSettings.from_env()
        self._instream = instream
        self._outstream = outstream
        self._reader = (
            PktLineReader(instream, self._settings.packet_max) if instream is not None else None
        )
        self._writer = PktLineWriter(outstream) if outstream is not None else None
        self._policy: ColorPolicy | None = None
        self._connected = True
        logger.info(
            "Opened sideband connection (packet max %d)", self._settings.packet_max
        )

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def settings(self) -> SidebandSettings:
        return self._settings

    def color_policy(self, diag_sink: Sink) -> ColorPolicy:
        """The connection's color policy; the lookup runs at most once."""
        if self._policy is None:
            self._policy = ColorPolicy.from_settings(
                self._settings, lambda: sink_isatty(diag_sink)
            )
        return self._policy

    def terminal_for(self, diag_sink: Sink) -> TerminalCapability:
        """Line-clearing style for the diagnostic destination."""
        if isinstance(diag_sink, FileDescriptorSink):
            return detect_terminal(diag_sink.fd, self._settings.term)
        return self._settings.terminal_capability(sink_isatty(diag_sink))

    def receive(self, raw_sink: Sink, diag_sink: Sink, label: str) -> SidebandResult:
        """Demultiplex incoming packets until the stream ends.

        Raises:
            ConnectionError: If the connection is closed or has no input.
            TransportError: If a packet cannot be read.
        """
        if not self._connected:
            raise ConnectionError("Sideband connection is closed")
        if self._reader is None:
            raise ConnectionError("Sideband connection has no input stream")

        demux = BandDemultiplexer(
            LineColorizer(self.color_policy(diag_sink)),
            self.terminal_for(diag_sink),
            self._settings.display_prefix,
        )
        return demux.receive(self._reader, raw_sink, diag_sink, label)

    def _require_writer(self) -> PktLineWriter:
        if not self._connected:
            raise ConnectionError("Sideband connection is closed")
        if self._writer is None:
            raise ConnectionError("Sideband connection has no output stream")
        return self._writer

    def send(self, band: int, data: bytes) -> int:
        """Send ``data`` on ``band``. Returns the number of packets written."""
        writer = self._require_writer()
        count = send_sideband(writer, band, data, self._settings.packet_max)
        writer.flush()
        return count

    def send_flush(self) -> None:
        writer = self._require_writer()
        writer.write_flush()
        writer.flush()

    def close(self) -> None:
        """Close both streams."""
        if not self._connected:
            return

        try:
            for stream in (self._outstream, self._instream):
                if stream is not None:
                    stream.close()
        except OSError as e:
            logger.warning("Error closing stream: %s", e)
        finally:
            self._reader = None
            self._writer = None
            self._connected = False
            logger.info("Closed sideband connection")

    def __enter__(self) -> SidebandConnection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
