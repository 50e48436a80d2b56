"""Model Context Protocol server core: JSON-RPC dispatch, URI templates, pagination, sessions and SSE session helpers."""

__version__ = "0.1.0"

__all__ = ["protocol", "uritemplate", "session", "pagination", "server", "sse_session"]