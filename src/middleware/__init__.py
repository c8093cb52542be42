"""HTTP middleware for the MCP server."""

from src.middleware.auth import BearerAuthMiddleware
from src.middleware.setup import setup_middleware

__all__ = ["BearerAuthMiddleware", "setup_middleware"]
