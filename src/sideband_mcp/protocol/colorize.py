"""Keyword highlighting for human-readable remote output.

A recognized keyword at the start of a line (after any leading whitespace)
is wrapped in an ANSI color. Everything else passes through untouched.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from ..models.settings import SidebandSettings

logger = logging.getLogger(__name__)

COLOR_RESET = b"\033[m"

_WHITESPACE = b" \t\n\v\f\r"


class Style(Enum):
    """Display styles, valued by their ANSI SGR sequence."""

    INFO = b"\033[33m"
    WARN = b"\033[1;33m"
    OK = b"\033[1;32m"
    FATAL = b"\033[1;31m"


# Checked in order; the first match wins.
KEYWORDS: tuple[tuple[bytes, Style], ...] = (
    (b"hint", Style.INFO),
    (b"warning", Style.WARN),
    (b"success", Style.OK),
    (b"error", Style.FATAL),
)


def colorize(
    line: bytes,
    enabled: bool,
    keywords: tuple[tuple[bytes, Style], ...] = KEYWORDS,
) -> bytes:
    """Highlight a leading keyword in ``line``.

    Args:
        line: One line of remote output, without its terminator.
        enabled: Whether color is wanted at all.
        keywords: Ordered (lowercase keyword, style) pairs.

    Returns:
        The line with at most one keyword wrapped in color codes.
    """
    if not enabled:
        return line

    start = 0
    while start < len(line) and line[start] in _WHITESPACE:
        start += 1

    for keyword, style in keywords:
        end = start + len(keyword)
        candidate = line[start:end]
        if len(candidate) != len(keyword) or candidate.lower() != keyword:
            continue
        if line[end:end + 1].isalnum():
            continue
        return line[:start] + style.value + candidate + COLOR_RESET + line[end:]

    return line


class ColorPolicy:
    """Color-enabled flag, looked up lazily once and then cached.

    Usage::

        policy = ColorPolicy(lambda: settings.want_color(os.isatty(2)))
        policy.enabled  # queries the lookup on first access only
    """

    def __init__(self, lookup: Callable[[], bool]) -> None:
        self._lookup = lookup
        self._enabled: bool | None = None

    @classmethod
    def fixed(cls, enabled: bool) -> ColorPolicy:
        policy = cls(lambda: enabled)
        policy._enabled = enabled
        return policy

    @classmethod
    def from_settings(
        cls, settings: SidebandSettings, isatty: Callable[[], bool]
    ) -> ColorPolicy:
        """Defer the color decision until the first line needs it."""
        return cls(lambda: settings.want_color(isatty()))

    @property
    def resolved(self) -> bool:
        return self._enabled is not None

    @property
    def enabled(self) -> bool:
        if self._enabled is None:
            self._enabled = bool(self._lookup())
            logger.debug("Remote output color %s", "enabled" if self._enabled else "disabled")
        return self._enabled


class LineColorizer:
    """Applies :func:`colorize` under a shared :class:`ColorPolicy`."""

    def __init__(
        self,
        policy: ColorPolicy | None = None,
        keywords: tuple[tuple[bytes, Style], ...] = KEYWORDS,
    ) -> None:
        self.policy = policy if policy is not None else ColorPolicy.fixed(False)
        self.keywords = keywords

    def __call__(self, line: bytes) -> bytes:
        return colorize(line, self.policy.enabled, self.keywords)
