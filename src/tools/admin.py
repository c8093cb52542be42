"""
Tools that require an authenticated caller.

- whoami: Describe the calling identity (any authenticated caller)
- server_stats: Telemetry counters (``admin`` role or ``mcp:admin`` scope)
"""

import logging
from typing import TYPE_CHECKING, Optional

from src.server.authorization import AuthorizationRequirement, CallerIdentity, require_scopes

if TYPE_CHECKING:
    from src.server import McpServer, TelemetryMiddleware

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
ADMIN_SCOPE = "mcp:admin"
ADMIN_POLICY = "admin"


def register_admin_tools(
    server: "McpServer",
    telemetry: Optional["TelemetryMiddleware"] = None,
) -> None:
    """
    Register tools guarded by authorization requirements.

    Adds an ``admin`` named policy satisfied by the ``admin`` role or the
    ``mcp:admin`` scope.

    Args:
        server: McpServer instance to register tools with
        telemetry: Telemetry interceptor reported by server_stats
    """
    has_admin_scope = require_scopes(ADMIN_SCOPE)
    server.add_policy(
        ADMIN_POLICY,
        lambda identity: identity.has_role(ADMIN_ROLE) or has_admin_scope(identity),
    )

    @server.tool(authorization=AuthorizationRequirement())
    def whoami(identity: Optional[CallerIdentity] = None) -> dict:
        """Describe the authenticated caller."""
        if identity is None:
            return {"authenticated": False}
        return {
            "authenticated": identity.is_authenticated,
            "subject": identity.subject,
            "scheme": identity.authentication_type,
            "roles": sorted(identity.roles),
            "scopes": sorted(identity.scopes),
        }

    @server.tool(authorization=AuthorizationRequirement.of(policy=ADMIN_POLICY))
    def server_stats() -> dict:
        """Per-method and per-tool call counters."""
        if telemetry is None:
            return {"methods": {}, "tools": {}}
        return telemetry.snapshot()
