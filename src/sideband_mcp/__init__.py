"""Sideband multiplexing over length-prefixed packet streams."""

__version__ = "0.1.0"
