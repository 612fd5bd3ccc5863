"""Tests for the MCP server tools and resources."""

from __future__ import annotations

import json
import sys
from unittest.mock import MagicMock, patch

from sideband_mcp.models.settings import SidebandSettings
from sideband_mcp.protocol.pktline import encode_flush, encode_packet

PAD = " " * 8


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_instance.prompt.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch.dict(sys.modules, {}):
        with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
            # Remove cached server module so it re-imports with our mock
            sys.modules.pop("sideband_mcp.server", None)
            import sideband_mcp.server as server_mod

    server_mod._settings = SidebandSettings()
    return server_mod


def _wire(*packets: bytes) -> str:
    return b"".join(packets).hex()


def test_demultiplex_success():
    server = _get_server_module()
    stream = _wire(
        encode_packet(b"\x01data"),
        encode_packet(b"\x02hello\n"),
        encode_flush(),
    )
    result = server.demultiplex(stream_hex=stream)
    assert result["status"] == "success"
    assert result["ok"] is True
    assert result["error"] is None
    assert bytes.fromhex(result["raw_hex"]) == b"data"
    assert result["raw_length"] == 4
    assert result["diagnostic"] == "remote: hello" + PAD + "\n"
    assert result["diagnostic_writes"] == 1


def test_demultiplex_unknown_band():
    server = _get_server_module()
    result = server.demultiplex(stream_hex=_wire(encode_packet(b"\x09x")), label="clone")
    assert result["status"] == "protocol_error"
    assert result["band"] == 9
    assert result["diagnostic"] == "clone: protocol error: bad band #9\n"


def test_demultiplex_remote_error_colored():
    server = _get_server_module()
    result = server.demultiplex(stream_hex=_wire(encode_packet(b"\x03error: no")), color=True)
    assert result["status"] == "remote_error"
    assert result["error"] == "error: no"
    assert "\033[1;31merror\033[m" in result["diagnostic"]


def test_demultiplex_truncated_stream():
    server = _get_server_module()
    result = server.demultiplex(stream_hex=_wire(encode_packet(b"\x02partial"), b"00"))
    assert result["status"] == "transport_error"
    assert result["ok"] is False
    assert result["diagnostic"] == "remote: partial\n"


def test_demultiplex_from_file(tmp_path):
    server = _get_server_module()
    path = tmp_path / "capture.bin"
    path.write_bytes(encode_packet(b"\x01abc") + encode_flush())
    result = server.demultiplex(input_path=str(path))
    assert result["raw_hex"] == b"abc".hex()


def test_demultiplex_input_errors():
    server = _get_server_module()
    assert "error" in server.demultiplex()
    assert "error" in server.demultiplex(stream_hex="00", input_path="/x")
    assert "error" in server.demultiplex(stream_hex="zz")
    assert "error" in server.demultiplex(input_path="/nonexistent/capture.bin")


def test_multiplex_text():
    server = _get_server_module()
    result = server.multiplex(text="hello world\n", band=2, max_frame_size=10)
    assert result["packets"] == 3
    assert result["data_length"] == 12
    wire = bytes.fromhex(result["wire_hex"])
    assert wire.startswith(b"000a\x02hello")
    assert wire.endswith(encode_flush())
    assert result["wire_length"] == len(wire)


def test_multiplex_then_demultiplex():
    server = _get_server_module()
    data = bytes(range(256)) * 8
    encoded = server.multiplex(data_hex=data.hex(), max_frame_size=100)
    decoded = server.demultiplex(stream_hex=encoded["wire_hex"])
    assert decoded["ok"]
    assert bytes.fromhex(decoded["raw_hex"]) == data


def test_multiplex_without_flush_to_file(tmp_path):
    server = _get_server_module()
    path = tmp_path / "out.bin"
    result = server.multiplex(text="hi", band=-5, flush=False, output_path=str(path))
    assert result["band"] == -1
    assert path.read_bytes() == b"0006hi"
    assert result["path"] == str(path)


def test_multiplex_default_frame_size():
    server = _get_server_module()
    result = server.multiplex(data_hex=(b"x" * 70000).hex())
    # 65515 payload bytes fit in each 65520-byte packet
    assert result["packets"] == 2
    assert bytes.fromhex(result["wire_hex"]).startswith(b"fff0\x01")


def test_multiplex_invalid_frame_size():
    server = _get_server_module()
    assert "error" in server.multiplex(text="hi", max_frame_size=5)


def test_colorize_line():
    server = _get_server_module()
    result = server.colorize_line("warning: disk full")
    assert result["changed"] is True
    assert result["styled"] == "\033[1;33mwarning\033[m: disk full"
    assert server.colorize_line("warnings")["changed"] is False
    assert server.colorize_line("error", color=False)["changed"] is False


def test_resources():
    server = _get_server_module()
    bands = json.loads(server.resource_bands())["bands"]
    assert [b["band"] for b in bands] == [1, 2, 3]
    keywords = json.loads(server.resource_keywords())["keywords"]
    assert keywords[0] == {"keyword": "hint", "style": "info"}
    settings = json.loads(server.resource_settings())["settings"]
    assert settings["display_prefix"] == "remote: "


def test_explain_stream_prompt():
    server = _get_server_module()
    assert "abcd" in server.explain_stream("abcd")
