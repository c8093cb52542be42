"""
Resources exposed by the MCP server.

- config://server: Non-secret summary of the active configuration
- info://server: Server name, version and registered capability counts
"""

import logging
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from src.config import Settings
    from src.server import McpServer

logger = logging.getLogger(__name__)


def register_resources(server: "McpServer", settings: Optional["Settings"] = None) -> None:
    """
    Register read-only MCP resources.

    Args:
        server: McpServer instance to register resources with
        settings: Settings summarized by the config resource (omitted if None)
    """
    if settings is not None:

        @server.resource("config://server", name="config", mime_type="application/json")
        def config() -> dict:
            """Active configuration without secrets."""
            return settings.to_dict()

    @server.resource("info://server", name="server_info", mime_type="application/json")
    def server_info() -> dict:
        """Server identity and capability counts."""
        registry = server.registry
        return {
            "name": server.name,
            "version": server.version,
            "tools": len(registry.tools),
            "resources": len(registry.resources),
            "prompts": len(registry.prompts),
        }
