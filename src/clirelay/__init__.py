"""clirelay — route a chat turn to an external AI engine CLI and stream normalized events."""

__version__ = "0.1.0"
