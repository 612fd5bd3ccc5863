"""Exception types for the sideband protocol."""

from __future__ import annotations


class TransportError(OSError):
    """I/O failure at the frame layer. Never produced by the demultiplexer itself."""


class PacketLineError(TransportError):
    """A packet could not be read: EOF, bad header, or oversized length."""


class SidebandError(Exception):
    """Base class for failures detected while demultiplexing."""


class ProtocolError(SidebandError):
    """The remote side violated the band framing."""

    def __init__(self, message: str, label: str) -> None:
        super().__init__(message)
        self.label = label


class MissingBandDesignator(ProtocolError):
    """A non-flush frame arrived with no room for a band byte."""

    def __init__(self, label: str) -> None:
        super().__init__(f"{label}: protocol error: no band designator", label)


class UnknownBand(ProtocolError):
    """A frame named a band outside 1-3."""

    def __init__(self, band: int, label: str) -> None:
        super().__init__(f"{label}: protocol error: bad band #{band}", label)
        self.band = band


class RemoteFatal(SidebandError):
    """The remote side reported a fatal error on band 3."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
