"""
Main entry point for the MCP server.

Builds the server from settings, wires token verification and the optional
OAuth proxy, then serves over streamable HTTP (uvicorn) or stdio.
"""

import asyncio
import sys
import traceback

import httpx
import uvicorn

from src.auth.setup import build_oauth_proxy, build_token_verifiers
from src.config import Settings, get_settings
from src.core import configure_logging, logger
from src.core.exceptions import ConfigurationError
from src.server import LoggingMiddleware, McpServer, TelemetryMiddleware
from src.tools import register_tools
from src.transports import create_app, run_stdio


def create_mcp_server(settings: Settings) -> McpServer:
    """
    Create the MCP server with the default interceptors and capabilities.
    """
    telemetry = TelemetryMiddleware()
    server = McpServer(
        settings.server_name,
        settings.server_version,
        middleware=[LoggingMiddleware(log_params=settings.debug), telemetry],
        allow_anonymous_transport=settings.allow_anonymous_transport,
    )
    register_tools(server, settings, telemetry)
    logger.info("MCP server %s %s initialized", server.name, server.version)
    return server


async def serve_http(server: McpServer, settings: Settings) -> None:
    """Serve the streamable HTTP transport until shutdown."""
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
        verifiers = build_token_verifiers(settings, http=http)

        proxy = None
        if settings.oauth_proxy_enabled:
            proxy = build_oauth_proxy(
                settings,
                token_verifier=verifiers[0] if verifiers else None,
                http=http,
            )
            logger.info("✓ OAuth proxy enabled")
            logger.info("  - Upstream: %s", settings.upstream_authorization_endpoint)
            logger.info("  - Callback: %s%s", settings.base_url, settings.redirect_path)
            logger.info("  - Endpoints:")
            logger.info("    - /.well-known/oauth-authorization-server")
            logger.info("    - /oauth/register (DCR)")
            logger.info("    - /oauth/authorize")
            logger.info("    - /oauth/token")
            logger.info("    - /oauth/revoke")

        app = create_app(server, settings, verifiers, proxy)
        logger.info("Setting up HTTP server on %s:%s...", settings.host, settings.port)
        config = uvicorn.Config(
            app,
            host=settings.host,
            port=settings.port,
            log_level="debug" if settings.debug else "info",
        )
        await uvicorn.Server(config).serve()


async def main() -> None:
    """
    Main async function to run the MCP server.
    """
    try:
        settings = get_settings()
        configure_logging(settings.debug)
        server = create_mcp_server(settings)

        logger.info("Transport mode: %s", settings.transport)
        sys.stderr.flush()

        if settings.transport == "stdio":
            logger.info("Setting up stdio server...")
            await run_stdio(server)
        elif settings.transport == "http":
            await serve_http(server, settings)
        else:
            raise ConfigurationError(f"Unknown TRANSPORT: {settings.transport}")

    except Exception as e:
        logger.error("Error in main function: %s", e)
        logger.error("Traceback: %s", traceback.format_exc())
        raise


def run() -> None:
    """Console script entry point."""
    try:
        logger.info("Starting main function...")
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception:
        sys.exit(1)


if __name__ == "__main__":
    run()
