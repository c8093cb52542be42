"""
Basic tools for the MCP server.

This module contains general-purpose MCP tools including:
- add: Add two integers
- echo: Return a message unchanged
- countdown: Long-running tool reporting progress and honouring cancellation
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from src.core.context import McpContext

if TYPE_CHECKING:
    from src.server import McpServer

logger = logging.getLogger(__name__)


def register_basic_tools(server: "McpServer") -> None:
    """
    Register general-purpose MCP tools.

    Args:
        server: McpServer instance to register tools with
    """

    @server.tool()
    def add(a: int, b: int) -> int:
        """Add two integers.

        Args:
            a: First addend
            b: Second addend

        Returns:
            The sum of both numbers
        """
        return a + b

    @server.tool()
    def echo(message: str, uppercase: bool = False) -> str:
        """Return the message, optionally upper-cased."""
        return message.upper() if uppercase else message

    @server.tool()
    async def countdown(ctx: McpContext, start: int = 3, delay: float = 0.0) -> dict:
        """Count down from ``start``, reporting progress after each step.

        Args:
            ctx: MCP context (injected)
            start: Number to count down from (default: 3)
            delay: Seconds to wait between steps (default: 0)

        Returns:
            Steps completed and whether the run was cancelled
        """
        if start < 0:
            msg = "start must be non-negative"
            raise ValueError(msg)

        await ctx.info(f"Counting down from {start}")
        completed = 0
        for remaining in range(start, 0, -1):
            if ctx.cancellation.cancelled:
                logger.info("countdown cancelled with %d step(s) left", remaining)
                return {"completed": completed, "cancelled": True}
            if delay:
                await asyncio.sleep(delay)
            completed += 1
            await ctx.report_progress(completed, start)
        return {"completed": completed, "cancelled": False}
