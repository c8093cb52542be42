"""Logging for the MCP server.

Records go to stderr because stdout carries protocol frames in stdio mode.
While a request is being handled its JSON-RPC id is bound in
``request_id_ctx`` and rendered as a ``[id]`` prefix on every record.
"""

import contextlib
import logging
import os
import sys
from collections.abc import Iterator
from contextvars import ContextVar
from typing import IO, Any

LOGGER_NAME = "mcp-server"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(request_id)s%(message)s"

# Libraries that log every HTTP exchange at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


@contextlib.contextmanager
def bound_request_id(request_id: Any) -> Iterator[None]:
    """Bind ``request_id`` to log records emitted inside the block."""
    token = request_id_ctx.set(str(request_id) if request_id is not None else None)
    try:
        yield
    finally:
        request_id_ctx.reset(token)


class RequestIdFilter(logging.Filter):
    """Adds ``request_id`` to every record passing through a handler."""

    def filter(self, record):
        request_id = request_id_ctx.get()
        record.request_id = f"[{request_id}] " if request_id else ""
        return True


def _debug_from_env() -> bool:
    return os.getenv("MCP_DEBUG", "").lower() in ("true", "1", "yes")


def configure_logging(debug: bool | None = None, stream: IO[str] | None = None) -> logging.Logger:
    """
    Configure root logging and return the application logger.

    Safe to call more than once: the request id filter is attached to each
    root handler only once, and a later call can switch debug on or off.

    Args:
        debug: Log at DEBUG (read from ``MCP_DEBUG`` when None)
        stream: Destination of the default handler (stderr when None)
    """
    if debug is None:
        debug = _debug_from_env()
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(stream or sys.stderr)],
    )
    logging.root.setLevel(level)

    for handler in logging.root.handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level)
    if debug:
        app_logger.debug("Debug mode enabled")
    return app_logger


logger = configure_logging()
