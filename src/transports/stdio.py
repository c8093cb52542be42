"""Line-delimited JSON-RPC over stdin/stdout.

Each inbound line is one request. Requests run concurrently; responses and
server notifications are written one JSON document per line through a
single lock so lines never interleave. stdout carries protocol traffic only,
all logging goes to stderr.
"""

import asyncio
import json
import logging
import sys
from typing import IO, Any

from src.core.context import CancellationToken
from src.protocol.messages import make_notification
from src.server.server import McpServer

logger = logging.getLogger(__name__)

CANCELLED_NOTIFICATION = "notifications/cancelled"


class LineWriter:
    """Serializes whole-line writes to a text stream."""

    def __init__(self, stream: IO[str]) -> None:
        self._stream = stream
        self._lock = asyncio.Lock()

    async def write_line(self, line: str) -> None:
        async with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()


class StdioNotificationSink:
    """Writes server notifications to stdout between responses."""

    def __init__(self, writer: LineWriter) -> None:
        self._writer = writer

    async def send_notification(
        self,
        method: str,
        params: dict[str, Any] | None = None,
    ) -> None:
        message = make_notification(method, params)
        await self._writer.write_line(json.dumps(message, separators=(",", ":")))


def _peek(line: str) -> dict[str, Any]:
    """Decode a line just far enough to route it. Invalid JSON yields {}."""
    try:
        payload = json.loads(line)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _request_id(payload: dict[str, Any]) -> Any:
    request_id = payload.get("id")
    if isinstance(request_id, (str, int)) and not isinstance(request_id, bool):
        return request_id
    return None


async def run_stdio(
    server: McpServer,
    stdin: IO[str] | None = None,
    stdout: IO[str] | None = None,
) -> None:
    """Serve ``server`` until stdin is closed.

    Calls carry no caller identity, so authorization-protected methods are
    reachable only when the server allows anonymous transport.
    """
    reader = stdin or sys.stdin
    writer = LineWriter(stdout or sys.stdout)
    sink = StdioNotificationSink(writer)
    in_flight: dict[Any, CancellationToken] = {}
    tasks: set[asyncio.Task] = set()

    async def handle(line: str, token: CancellationToken, request_id: Any) -> None:
        try:
            response = await server.handle_message(line, sink=sink, cancellation=token)
            if response is not None:
                await writer.write_line(response.to_json())
        except Exception:
            logger.exception("Unhandled error while serving stdio request")
        finally:
            if request_id is not None and in_flight.get(request_id) is token:
                del in_flight[request_id]

    logger.info("Serving %s over stdio", server.name)
    while True:
        line = await asyncio.to_thread(reader.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue

        payload = _peek(line)
        if payload.get("method") == CANCELLED_NOTIFICATION:
            params = payload.get("params")
            cancelled_id = params.get("requestId") if isinstance(params, dict) else None
            token = in_flight.get(cancelled_id) if isinstance(cancelled_id, (str, int)) else None
            if token is not None:
                logger.info("Cancelling request %s", cancelled_id)
                token.cancel()
            continue

        request_id = _request_id(payload)
        token = CancellationToken()
        if request_id is not None:
            in_flight[request_id] = token
        task = asyncio.create_task(handle(line, token, request_id))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    if tasks:
        await asyncio.gather(*tasks)
    logger.info("stdin closed, stdio transport stopped")

