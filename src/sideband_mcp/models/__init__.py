"""Data models for runtime settings."""

from .settings import ColorMode, SidebandSettings, parse_colorbool
