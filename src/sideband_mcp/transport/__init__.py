"""Stream transports carrying banded packets."""
