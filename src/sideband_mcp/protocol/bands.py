"""Band designators and receive status values.

The first payload byte of every non-flush frame names the logical stream
the rest of the frame belongs to.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .errors import ProtocolError, RemoteFatal, SidebandError


class Band(IntEnum):
    """Band identifiers."""

    DATA = 1
    PROGRESS = 2
    ERROR = 3


# Passing this as the band to the send path writes plain, untagged packets.
NO_BAND = -1

BAND_DESCRIPTIONS: dict[Band, str] = {
    Band.DATA: "primary payload, passed through byte-exact",
    Band.PROGRESS: "progress and diagnostic text, shown line by line",
    Band.ERROR: "fatal message from the remote, ends the stream",
}


class SidebandStatus(IntEnum):
    """How a receive loop ended. Values match the classic C return codes."""

    SUCCESS = 0
    REMOTE_ERROR = -1
    PROTOCOL_ERROR = -2


@dataclass
class SidebandResult:
    """Outcome of one receive call."""

    status: SidebandStatus = SidebandStatus.SUCCESS
    error: SidebandError | None = None

    @property
    def ok(self) -> bool:
        return self.status is SidebandStatus.SUCCESS

    @property
    def band(self) -> int | None:
        """The offending band number for an unknown-band protocol error."""
        return getattr(self.error, "band", None)

    def raise_for_status(self) -> None:
        """Raise the carried error, if the loop did not end cleanly."""
        if self.error is not None:
            raise self.error

    def __repr__(self) -> str:
        if self.error is None:
            return f"SidebandResult(status={self.status.name})"
        return f"SidebandResult(status={self.status.name}, error={self.error!s})"


def status_for(error: SidebandError) -> SidebandStatus:
    """Map an in-core error to the status the receive loop reports."""
    if isinstance(error, RemoteFatal):
        return SidebandStatus.REMOTE_ERROR
    if isinstance(error, ProtocolError):
        return SidebandStatus.PROTOCOL_ERROR
    raise TypeError(f"Not a sideband error: {error!r}")
