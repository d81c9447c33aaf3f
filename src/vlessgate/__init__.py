"""vlessgate - WebSocket tunnel relay for VLESS-style TCP connects."""

__version__ = "0.1.0"
