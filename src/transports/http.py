"""
Streamable HTTP transport built on Starlette.

Routes:
- POST {mcp_path}: one JSON-RPC request per body; notifications get 202
- GET /health: liveness probe
- OAuth proxy endpoints when a proxy is supplied

The caller identity comes from BearerAuthMiddleware via
``request.state.identity``; without verifiers every call is anonymous, so
HTTP never takes the identity-less path reserved for stdio. An authorization denial is returned as a JSON-RPC
error with HTTP 401 (no valid credential, plus a ``WWW-Authenticate``
challenge) or 403 (authenticated but not permitted).
"""

import contextlib
import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from src.core.exceptions import AUTHORIZATION_ERROR
from src.middleware.auth import bearer_challenge
from src.middleware.setup import setup_middleware
from src.server.authorization import CallerIdentity
from src.server.server import McpServer

if TYPE_CHECKING:
    from src.auth.proxy import OAuthProxy
    from src.auth.verifier import TokenVerifier
    from src.config import Settings

logger = logging.getLogger(__name__)


def _status_for(response, identity) -> int:
    if response.error is None or response.error.code != AUTHORIZATION_ERROR:
        return 200
    if identity is not None and identity.is_authenticated:
        return 403
    return 401


def create_app(
    server: McpServer,
    settings: "Settings",
    verifiers: Sequence["TokenVerifier"] = (),
    proxy: Optional["OAuthProxy"] = None,
    extra_middleware: Optional[List[Middleware]] = None,
) -> Starlette:
    """
    Build the ASGI application serving ``server``.

    Args:
        server: MCP server handling requests
        settings: Application settings (paths, auth options)
        verifiers: Token verifiers for the bearer middleware
        proxy: OAuth proxy whose endpoints and reaper are attached
        extra_middleware: Middleware placed outside authentication

    Returns:
        Configured Starlette application
    """
    resource_metadata_url = f"{settings.base_url}/.well-known/oauth-protected-resource"

    async def mcp_endpoint(request: Request):
        body = await request.body()
        identity = getattr(request.state, "identity", None) or CallerIdentity.anonymous()
        response = await server.handle_message(body, identity=identity)
        if response is None:
            return Response(status_code=202)

        status_code = _status_for(response, identity)
        headers = {}
        if status_code == 401:
            headers["WWW-Authenticate"] = bearer_challenge(resource_metadata_url, "invalid_token")
        return JSONResponse(response.to_dict(), status_code=status_code, headers=headers)

    async def health(request: Request):
        return JSONResponse({"status": "ok", "server": server.name, "version": server.version})

    routes = [
        Route(settings.mcp_path, mcp_endpoint, methods=["POST"]),
        Route("/health", health, methods=["GET"]),
    ]
    if proxy is not None:
        from src.auth.setup import setup_oauth_routes

        routes.extend(setup_oauth_routes(proxy, verifiers[0] if verifiers else None, settings))

    middleware = list(extra_middleware or [])
    middleware.extend(setup_middleware(settings, verifiers))

    @contextlib.asynccontextmanager
    async def lifespan(app):
        server.build()
        if proxy is not None:
            proxy.start(settings.oauth_reaper_interval_seconds)
        try:
            yield
        finally:
            if proxy is not None:
                await proxy.stop()

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    logger.info("✓ HTTP transport ready at %s", settings.mcp_path)
    return app
