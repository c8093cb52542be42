"""
MCP Tools Package.

This package contains the capabilities served by default, organized by category:
- basic: add, echo and a progress-reporting countdown
- resources: configuration and server info resources
- prompts: code review prompt
- admin: tools guarded by authorization requirements

Each module provides a register_*() function taking the McpServer.
"""

import logging
from typing import TYPE_CHECKING, Optional

from src.tools.admin import register_admin_tools
from src.tools.basic import register_basic_tools
from src.tools.prompts import register_prompts
from src.tools.resources import register_resources

if TYPE_CHECKING:
    from src.config import Settings
    from src.server import McpServer, TelemetryMiddleware

logger = logging.getLogger(__name__)


def register_tools(
    server: "McpServer",
    settings: Optional["Settings"] = None,
    telemetry: Optional["TelemetryMiddleware"] = None,
) -> None:
    """
    Register all default capabilities with the server.

    Args:
        server: McpServer instance
        settings: Settings exposed through the config resource
        telemetry: Telemetry interceptor reported by admin tools
    """
    register_basic_tools(server)
    register_resources(server, settings)
    register_prompts(server)
    register_admin_tools(server, telemetry)
    logger.info("✓ Registered %d capabilities", len(server.registry))


__all__ = [
    "register_admin_tools",
    "register_basic_tools",
    "register_prompts",
    "register_resources",
    "register_tools",
]
