"""Relay for an external CLI analysis engine with chunked response delivery."""

__version__ = "0.1.0"
