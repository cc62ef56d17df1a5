"""JSON-RPC gateway exposing Gemini text generation over WebSockets."""

__version__ = "0.1.0"

__all__ = ["__version__"]
