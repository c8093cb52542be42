"""Request-scoped context objects injected into MCP handlers.

Handlers may declare parameters annotated with :class:`McpContext`,
:class:`CancellationToken` or ``CallerIdentity``; the dispatcher fills them
before binding wire parameters.
"""

import asyncio
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Delivers out-of-band notifications to the connected client.

    Implementations own the connection and must serialize writes themselves.
    """

    async def send_notification(
        self,
        method: str,
        params: dict[str, Any] | None = None,
    ) -> None: ...


class NullNotificationSink:
    """Sink used when the transport cannot deliver notifications."""

    async def send_notification(
        self,
        method: str,
        params: dict[str, Any] | None = None,
    ) -> None:
        logger.debug("Dropping notification %s (no sink attached)", method)


class CancellationToken:
    """Cooperative cancellation flag for a single request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("Request was cancelled")

    async def wait(self) -> None:
        await self._event.wait()


class McpContext:
    """Access to the current request and the client session.

    Args:
        request_id: JSON-RPC id of the current request
        sink: Notification sink of the session
        cancellation: Cancellation token of the request
    """

    def __init__(
        self,
        request_id: Any,
        sink: NotificationSink | None = None,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self.request_id = request_id
        self.sink = sink or NullNotificationSink()
        self.cancellation = cancellation or CancellationToken()

    async def log(self, level: str, message: str, logger_name: str = "tool") -> None:
        """Send a log message to the client."""
        await self.sink.send_notification(
            "notifications/message",
            {"level": level.lower(), "logger": logger_name, "data": message},
        )

    async def debug(self, message: str) -> None:
        await self.log("debug", message)

    async def info(self, message: str) -> None:
        await self.log("info", message)

    async def warning(self, message: str) -> None:
        await self.log("warning", message)

    async def error(self, message: str) -> None:
        await self.log("error", message)

    async def report_progress(self, progress: float, total: float | None = None) -> None:
        """Report progress of a long-running operation.

        The request id doubles as the progress token.
        """
        await self.sink.send_notification(
            "notifications/progress",
            {"progressToken": self.request_id, "progress": progress, "total": total},
        )
