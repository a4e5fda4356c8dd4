"""V4 network compatibility engine."""

__version__ = "0.3.0"
