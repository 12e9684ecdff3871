"""API routes for the report pipeline."""

from reportflow.api import routes, websocket

__all__ = ["routes", "websocket"]
