"""Transports carrying JSON-RPC messages to an McpServer."""

from src.transports.http import create_app
from src.transports.stdio import run_stdio

__all__ = ["create_app", "run_stdio"]
