"""MCP server entry point for the sideband codec.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .models.settings import SidebandSettings
from .protocol.bands import BAND_DESCRIPTIONS, NO_BAND
from .protocol.colorize import KEYWORDS, ColorPolicy, LineColorizer, colorize
from .protocol.errors import TransportError
from .protocol.pktline import LARGE_PACKET_MAX, PktLineReader, encode_flush
from .protocol.sideband import BandDemultiplexer, TerminalCapability, iter_sideband_frames

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "sideband",
    instructions="Decode and build band-multiplexed pkt-line streams",
)

_settings: SidebandSettings | None = None


def _get_settings() -> SidebandSettings:
    """Load settings from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = SidebandSettings.from_env()
    return _settings


class _CaptureSink:
    """Collects every write call separately."""

    def __init__(self) -> None:
        self.writes: list[bytes] = []

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def getvalue(self) -> bytes:
        return b"".join(self.writes)


def _load_bytes(
    hex_value: str | None, path: str | None, text: str | None = None
) -> bytes | dict[str, Any]:
    """Pick exactly one input source; returns an error dict on misuse."""
    given = [v for v in (hex_value, path, text) if v is not None]
    if len(given) != 1:
        return {"error": "Provide exactly one input"}
    if path is not None:
        if not Path(path).exists():
            return {"error": f"File not found: {path}"}
        return Path(path).read_bytes()
    if text is not None:
        return text.encode("utf-8")
    try:
        return bytes.fromhex(hex_value)
    except ValueError as e:
        return {"error": f"Invalid hex input: {e}"}


# ─── CODEC TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def demultiplex(
    stream_hex: str | None = None,
    input_path: str | None = None,
    label: str = "sideband",
    color: bool = False,
) -> dict[str, Any]:
    """Split a captured banded packet stream into payload and remote messages.

    Args:
        stream_hex: The raw stream as hex (packet headers included).
        input_path: A file holding the raw stream instead.
        label: Name used in protocol error messages.
        color: Highlight hint/warning/success/error keywords.
    """
    data = _load_bytes(stream_hex, input_path)
    if isinstance(data, dict):
        return data

    settings = _get_settings()
    reader = PktLineReader(io.BytesIO(data), settings.packet_max)
    raw = io.BytesIO()
    diag = _CaptureSink()
    demux = BandDemultiplexer(
        LineColorizer(ColorPolicy.fixed(color)),
        TerminalCapability.PADDED_CLEAR,
        settings.display_prefix,
    )

    result: dict[str, Any]
    try:
        outcome = demux.receive(reader, raw, diag, label)
    except TransportError as e:
        logger.warning("Transport error while demultiplexing: %s", e)
        result = {"status": "transport_error", "ok": False, "error": str(e), "band": None}
    else:
        result = {
            "status": outcome.status.name.lower(),
            "ok": outcome.ok,
            "error": str(outcome.error) if outcome.error else None,
            "band": outcome.band,
        }

    payload = raw.getvalue()
    result.update({
        "raw_hex": payload.hex(),
        "raw_length": len(payload),
        "diagnostic": diag.getvalue().decode("utf-8", errors="replace"),
        "diagnostic_writes": len(diag.writes),
    })
    return result


@mcp.tool()
def multiplex(
    data_hex: str | None = None,
    text: str | None = None,
    band: int = 1,
    max_frame_size: int = LARGE_PACKET_MAX,
    flush: bool = True,
    output_path: str | None = None,
) -> dict[str, Any]:
    """Encode a buffer as band-tagged packets.

    Args:
        data_hex: Bytes to send, as hex.
        text: UTF-8 text to send instead.
        band: Band number (1 data, 2 progress, 3 fatal); negative for plain packets.
        max_frame_size: Largest packet to produce, header included.
        flush: Append a flush packet at the end.
        output_path: Also write the encoded stream to this file.
    """
    data = _load_bytes(data_hex, None, text)
    if isinstance(data, dict):
        return data

    try:
        packets = list(iter_sideband_frames(band, data, max_frame_size))
    except ValueError as e:
        return {"error": str(e)}

    wire = b"".join(packets) + (encode_flush() if flush else b"")
    result: dict[str, Any] = {
        "band": band if band >= 0 else NO_BAND,
        "packets": len(packets),
        "data_length": len(data),
        "wire_length": len(wire),
        "wire_hex": wire.hex(),
    }
    if output_path is not None:
        Path(output_path).write_bytes(wire)
        result["path"] = output_path
    return result


@mcp.tool()
def colorize_line(line: str, color: bool = True) -> dict[str, Any]:
    """Show how a line of remote output would be highlighted.

    Args:
        line: A single line of text.
        color: Whether coloring is enabled.
    """
    original = line.encode("utf-8")
    styled = colorize(original, color)
    return {
        "styled": styled.decode("utf-8", errors="replace"),
        "changed": styled != original,
    }


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("sideband://bands")
def resource_bands() -> str:
    """Band numbers and what each carries."""
    bands = [
        {"band": int(band), "name": band.name.lower(), "description": description}
        for band, description in BAND_DESCRIPTIONS.items()
    ]
    return json.dumps({"bands": bands})


@mcp.resource("sideband://keywords")
def resource_keywords() -> str:
    """Keywords highlighted at the start of remote output lines."""
    keywords = [
        {"keyword": keyword.decode("ascii"), "style": style.name.lower()}
        for keyword, style in KEYWORDS
    ]
    return json.dumps({"keywords": keywords})


@mcp.resource("sideband://settings")
def resource_settings() -> str:
    """Active settings loaded from the environment."""
    return json.dumps({"settings": _get_settings().to_dict()})


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def explain_stream(stream_hex: str) -> str:
    """Walk through a captured packet stream and explain what the remote said.

    Args:
        stream_hex: The raw stream as hex.
    """
    return f"""Explain this banded packet stream: {stream_hex}

Use the demultiplex tool on it, then describe:
- How much primary payload (band 1) arrived
- The progress messages (band 2), in order
- Whether the stream ended cleanly, with a fatal remote error (band 3),
  or with a protocol error, and what the caller should do next"""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
