"""Tests for stream transports and the fd sink."""

import io
import os
from unittest.mock import patch

import pytest

from sideband_mcp.models.settings import ColorMode, SidebandSettings
from sideband_mcp.protocol.bands import Band, SidebandStatus
from sideband_mcp.protocol.pktline import encode_flush, encode_packet
from sideband_mcp.protocol.sideband import TerminalCapability
from sideband_mcp.transport.streams import (
    FileDescriptorSink,
    SidebandConnection,
    detect_terminal,
    sink_isatty,
)

PLAIN = SidebandSettings(color_remote=ColorMode.NEVER, term="dumb")


class RecordingSink:
    def __init__(self, tty=False):
        self.writes = []
        self._tty = tty

    def write(self, data):
        self.writes.append(bytes(data))
        return len(data)

    def isatty(self):
        return self._tty


def test_fd_sink_writes_through_pipe():
    read_fd, write_fd = os.pipe()
    try:
        sink = FileDescriptorSink(write_fd)
        assert sink.write(b"remote: hello\n") == 14
        assert os.read(read_fd, 100) == b"remote: hello\n"
    finally:
        os.close(read_fd)
        os.close(write_fd)


def test_fd_sink_retries_partial_writes():
    chunks = []

    def short_write(fd, view):
        chunks.append(bytes(view[:3]))
        return min(3, len(view))

    with patch("sideband_mcp.transport.streams.os.write", side_effect=short_write):
        FileDescriptorSink(2).write(b"abcdefgh")
    assert chunks == [b"abc", b"def", b"gh"]


def test_sink_isatty():
    assert not sink_isatty(io.BytesIO())
    assert not sink_isatty(object())
    assert sink_isatty(RecordingSink(tty=True))


def test_detect_terminal():
    with patch("sideband_mcp.transport.streams.os.isatty", return_value=True):
        assert detect_terminal(2, "xterm") is TerminalCapability.ANSI_CLEAR
        assert detect_terminal(2, "dumb") is TerminalCapability.PADDED_CLEAR
    with patch("sideband_mcp.transport.streams.os.isatty", return_value=False):
        assert detect_terminal(2, "xterm") is TerminalCapability.PADDED_CLEAR


def test_connection_send():
    out = io.BytesIO()
    conn = SidebandConnection(None, out, PLAIN)
    assert conn.send(Band.DATA, b"abc") == 1
    conn.send_flush()
    assert out.getvalue() == b"0008\x01abc0000"


def test_connection_send_uses_packet_max():
    out = io.BytesIO()
    conn = SidebandConnection(None, out, SidebandSettings(packet_max=10))
    assert conn.send(Band.DATA, b"x" * 12) == 3


def test_connection_receive():
    wire = (
        encode_packet(b"\x01payload")
        + encode_packet(b"\x02remote text\n")
        + encode_flush()
    )
    conn = SidebandConnection(io.BytesIO(wire), None, PLAIN)
    raw = io.BytesIO()
    diag = RecordingSink()
    result = conn.receive(raw, diag, "fetch")
    assert result.status is SidebandStatus.SUCCESS
    assert raw.getvalue() == b"payload"
    assert diag.writes == [b"remote: remote text" + b" " * 8 + b"\n"]


def test_connection_colors_tty_sink():
    settings = SidebandSettings(color_remote=ColorMode.AUTO, term="xterm")
    wire = encode_packet(b"\x02error: x\n") + encode_flush()
    conn = SidebandConnection(io.BytesIO(wire), None, settings)
    diag = RecordingSink(tty=True)
    conn.receive(io.BytesIO(), diag, "fetch")
    assert diag.writes == [b"remote: \033[1;31merror\033[m: x\033[K\n"]


def test_connection_color_policy_resolved_once():
    conn = SidebandConnection(io.BytesIO(), None, PLAIN)
    sink = RecordingSink()
    assert conn.color_policy(sink) is conn.color_policy(sink)


def test_connection_missing_streams():
    with pytest.raises(ConnectionError):
        SidebandConnection(None, io.BytesIO(), PLAIN).receive(io.BytesIO(), RecordingSink(), "x")
    with pytest.raises(ConnectionError):
        SidebandConnection(io.BytesIO(), None, PLAIN).send(Band.DATA, b"x")


def test_connection_close():
    instream, outstream = io.BytesIO(), io.BytesIO()
    with SidebandConnection(instream, outstream, PLAIN) as conn:
        assert conn.connected
    assert not conn.connected
    assert instream.closed
    assert outstream.closed
    with pytest.raises(ConnectionError):
        conn.send_flush()
    conn.close()


def test_connection_detects_terminal_for_fd_sink():
    wire = encode_packet(b"\x02hello\n") + encode_flush()
    settings = SidebandSettings(color_remote=ColorMode.NEVER, term="xterm")
    conn = SidebandConnection(io.BytesIO(wire), None, settings)
    read_fd, write_fd = os.pipe()
    try:
        with patch("sideband_mcp.transport.streams.os.isatty", return_value=True):
            assert conn.terminal_for(FileDescriptorSink(write_fd)) is (
                TerminalCapability.ANSI_CLEAR
            )
            conn.receive(io.BytesIO(), FileDescriptorSink(write_fd), "fetch")
        assert os.read(read_fd, 100) == b"remote: hello\033[K\n"
    finally:
        os.close(read_fd)
        os.close(write_fd)
