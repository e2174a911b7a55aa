"""Live text-to-speech relay server and client."""

__version__ = "0.1.0"
