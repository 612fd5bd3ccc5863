"""Protocol layer: packet framing, band demultiplexing, keyword coloring."""

from .pktline import Frame, FrameKind, PktLineReader, PktLineWriter, encode_flush, encode_packet
from .bands import Band, SidebandResult, SidebandStatus
from .colorize import ColorPolicy, LineColorizer, colorize
from .sideband import BandDemultiplexer, TerminalCapability, recv_sideband, send_sideband
