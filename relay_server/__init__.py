"""Code Pairing Relay: pair two WebSocket peers with a short code and relay their frames."""

__version__ = "0.1.0"
