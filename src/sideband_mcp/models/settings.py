"""Host environment settings: color mode, terminal type, packet limits."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from ..protocol.pktline import LARGE_PACKET_MAX, MAX_ENCODABLE_LENGTH, PKT_HEADER_SIZE
from ..protocol.sideband import DISPLAY_PREFIX, TerminalCapability

logger = logging.getLogger(__name__)

ENV_COLOR_REMOTE = "SIDEBAND_COLOR_REMOTE"
ENV_PACKET_MAX = "SIDEBAND_PACKET_MAX"
ENV_PREFIX = "SIDEBAND_PREFIX"


class ColorMode(Enum):
    """Tri-state color setting in the style of git's colorbool values."""

    NEVER = "never"
    ALWAYS = "always"
    AUTO = "auto"


_COLORBOOL_VALUES: dict[str, ColorMode] = {
    "never": ColorMode.NEVER,
    "false": ColorMode.NEVER,
    "no": ColorMode.NEVER,
    "off": ColorMode.NEVER,
    "0": ColorMode.NEVER,
    "always": ColorMode.ALWAYS,
    "auto": ColorMode.AUTO,
    "true": ColorMode.AUTO,
    "yes": ColorMode.AUTO,
    "on": ColorMode.AUTO,
    "1": ColorMode.AUTO,
}


def parse_colorbool(value: str | None) -> ColorMode:
    """Parse a color setting. An unset or empty value means ``auto``.

    Raises:
        ValueError: If the value is not a recognized color setting.
    """
    if value is None or not value.strip():
        return ColorMode.AUTO
    try:
        return _COLORBOOL_VALUES[value.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Invalid color value '{value}'. Valid: {sorted(_COLORBOOL_VALUES)}"
        ) from None


def is_terminal_dumb(term: str | None) -> bool:
    """A missing ``TERM`` or ``TERM=dumb`` cannot handle escape sequences."""
    return not term or term == "dumb"


@dataclass
class SidebandSettings:
    """Settings consulted when displaying and sending sideband streams."""

    color_remote: ColorMode = ColorMode.AUTO
    term: str | None = None
    packet_max: int = LARGE_PACKET_MAX
    display_prefix: str = DISPLAY_PREFIX

    def __post_init__(self) -> None:
        if not PKT_HEADER_SIZE + 1 < self.packet_max <= MAX_ENCODABLE_LENGTH:
            raise ValueError(
                f"Packet max must be {PKT_HEADER_SIZE + 2}-{MAX_ENCODABLE_LENGTH}, "
                f"got {self.packet_max}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SidebandSettings:
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        packet_max = env.get(ENV_PACKET_MAX)
        settings = cls(
            color_remote=parse_colorbool(env.get(ENV_COLOR_REMOTE)),
            term=env.get("TERM"),
            packet_max=int(packet_max, 0) if packet_max else LARGE_PACKET_MAX,
            display_prefix=env.get(ENV_PREFIX, DISPLAY_PREFIX),
        )
        logger.debug("Loaded settings: %s", settings)
        return settings

    @property
    def terminal_is_dumb(self) -> bool:
        return is_terminal_dumb(self.term)

    def want_color(self, isatty: bool) -> bool:
        """Resolve the color mode for a destination."""
        if self.color_remote is ColorMode.AUTO:
            return isatty and not self.terminal_is_dumb
        return self.color_remote is ColorMode.ALWAYS

    def terminal_capability(self, isatty: bool) -> TerminalCapability:
        if isatty and not self.terminal_is_dumb:
            return TerminalCapability.ANSI_CLEAR
        return TerminalCapability.PADDED_CLEAR

    def to_dict(self) -> dict:
        return {
            "color_remote": self.color_remote.value,
            "term": self.term,
            "packet_max": self.packet_max,
            "display_prefix": self.display_prefix,
        }
