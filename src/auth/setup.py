"""
OAuth route registration and auth component factories.

This module provides a clean interface to build the token verifiers and the
OAuth proxy from settings, and to register the proxy endpoints as Starlette
routes using the handlers from src.auth.routes.

Architecture:
- Separates route registration (this module) from route handlers (routes.py)
- Creates closure adapters to inject the proxy/verifier dependencies
- Maintains single responsibility principle
"""

from typing import TYPE_CHECKING, List, Optional

from starlette.routing import Route

from src.auth.client_store import ClientStore, FileClientStore, InMemoryClientStore
from src.auth.introspection import IntrospectionTokenVerifier
from src.auth.jwt_verifier import JWTTokenVerifier
from src.auth.proxy import OAuthProxy, OAuthProxyOptions
from src.auth.verifier import StaticTokenVerifier, TokenVerifier
from src.core import logger
from src.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    import httpx

    from src.config import Settings


def build_token_verifiers(
    settings: "Settings",
    http: Optional["httpx.AsyncClient"] = None,
) -> List[TokenVerifier]:
    """
    Create the token verifiers enabled by settings, in the order they are tried.

    Modes (``AUTH_MODE``):
    - ``jwt``: JWT validated against the issuer's JWKS
    - ``introspection``: opaque tokens checked via RFC 7662
    - ``none``: no upstream verifier

    A static API key (``MCP_API_KEY``) is always appended when configured.

    Raises:
        ConfigurationError: If the selected mode is missing required settings
    """
    verifiers: List[TokenVerifier] = []
    required_scopes = settings.get_required_scopes_list()

    if settings.auth_mode == "jwt":
        if not settings.jwt_issuer and not settings.jwt_jwks_uri:
            raise ConfigurationError("AUTH_MODE=jwt requires JWT_ISSUER or JWT_JWKS_URI")
        verifiers.append(
            JWTTokenVerifier(
                issuer=settings.jwt_issuer,
                audience=settings.jwt_audience,
                jwks_uri=settings.jwt_jwks_uri,
                algorithms=settings.get_jwt_algorithms_list(),
                required_scopes=required_scopes,
                clock_skew_seconds=settings.jwt_clock_skew_seconds,
                cache_ttl=settings.jwks_cache_ttl_seconds,
                timeout=settings.http_timeout_seconds,
                http=http,
            ),
        )
        logger.info("✓ JWT token verification enabled")

    elif settings.auth_mode == "introspection":
        if not (
            settings.introspection_endpoint
            and settings.introspection_client_id
            and settings.introspection_client_secret
        ):
            raise ConfigurationError(
                "AUTH_MODE=introspection requires INTROSPECTION_ENDPOINT, "
                "INTROSPECTION_CLIENT_ID and INTROSPECTION_CLIENT_SECRET",
            )
        verifiers.append(
            IntrospectionTokenVerifier(
                introspection_endpoint=settings.introspection_endpoint,
                client_id=settings.introspection_client_id,
                client_secret=settings.introspection_client_secret,
                required_scopes=required_scopes,
                timeout=settings.http_timeout_seconds,
                http=http,
            ),
        )
        logger.info("✓ Token introspection enabled")

    elif settings.auth_mode != "none":
        raise ConfigurationError(f"Unknown AUTH_MODE: {settings.auth_mode}")

    if settings.mcp_api_key:
        verifiers.append(
            StaticTokenVerifier(
                {settings.mcp_api_key: {"client_id": "api-key", "scopes": required_scopes}},
            ),
        )
        logger.info("✓ API Key authentication enabled")

    if not verifiers:
        logger.warning("⚠ No token verifiers configured")
    return verifiers


def build_oauth_proxy(
    settings: "Settings",
    token_verifier: Optional[TokenVerifier] = None,
    client_store: Optional[ClientStore] = None,
    http: Optional["httpx.AsyncClient"] = None,
) -> OAuthProxy:
    """
    Create the OAuth proxy from the upstream settings.

    Raises:
        ConfigurationError: If the upstream endpoints or client id are missing
    """
    if not settings.has_upstream_config():
        raise ConfigurationError(
            "OAUTH_PROXY_ENABLED requires UPSTREAM_AUTHORIZATION_ENDPOINT, "
            "UPSTREAM_TOKEN_ENDPOINT and UPSTREAM_CLIENT_ID",
        )

    if client_store is None:
        if settings.oauth_storage_dir:
            client_store = FileClientStore(settings.oauth_storage_dir)
        else:
            client_store = InMemoryClientStore()

    options = OAuthProxyOptions(
        upstream_authorization_endpoint=settings.upstream_authorization_endpoint,
        upstream_token_endpoint=settings.upstream_token_endpoint,
        upstream_revocation_endpoint=settings.upstream_revocation_endpoint,
        upstream_client_id=settings.upstream_client_id,
        upstream_client_secret=settings.upstream_client_secret,
        base_url=settings.base_url,
        redirect_path=settings.redirect_path,
        allowed_client_redirect_uris=settings.get_allowed_redirect_patterns_list() or None,
        valid_scopes=settings.get_valid_scopes_list() or None,
        forward_pkce=settings.forward_pkce,
        http_timeout_seconds=settings.http_timeout_seconds,
    )
    return OAuthProxy(
        options,
        client_store=client_store,
        token_verifier=token_verifier,
        http=http,
    )


def setup_oauth_routes(
    proxy: OAuthProxy,
    verifier: Optional[TokenVerifier],
    settings: "Settings",
) -> List[Route]:
    """
    Build the OAuth proxy endpoints as Starlette routes.

    This function creates closure adapters around the route handlers
    from src.auth.routes, injecting the proxy and verifier.

    Registers:
    - /.well-known/oauth-authorization-server (RFC 8414)
    - /.well-known/openid-configuration
    - /.well-known/oauth-protected-resource and {mcp_path}/.well-known/protected-resource (RFC 9728)
    - /oauth/register (RFC 7591 - Dynamic Client Registration)
    - /oauth/authorize (GET - redirect upstream)
    - {redirect_path} (GET - upstream callback)
    - /oauth/token (POST - token exchange and refresh)
    - /oauth/userinfo (GET)
    - /oauth/revoke (POST - RFC 7009)

    Args:
        proxy: OAuthProxy instance
        verifier: Verifier used by the userinfo endpoint
        settings: Application settings (paths and public base URL)

    Returns:
        List of routes to mount on the HTTP application
    """
    from src.auth.routes import (
        authorization_server_metadata,
        authorize,
        oauth_callback,
        openid_configuration,
        protected_resource_metadata,
        register_client,
        revoke_token,
        token_endpoint,
        userinfo,
    )

    resource_url = f"{settings.base_url}{settings.mcp_path}"

    async def _authorization_server_metadata(request):
        return await authorization_server_metadata(request, proxy)

    async def _openid_configuration(request):
        return await openid_configuration(request, proxy)

    async def _protected_resource_metadata(request):
        return await protected_resource_metadata(request, proxy, resource_url)

    async def _register_client(request):
        return await register_client(request, proxy)

    async def _authorize(request):
        return await authorize(request, proxy)

    async def _oauth_callback(request):
        return await oauth_callback(request, proxy)

    async def _token_endpoint(request):
        return await token_endpoint(request, proxy)

    async def _userinfo(request):
        return await userinfo(request, verifier)

    async def _revoke_token(request):
        return await revoke_token(request, proxy)

    mcp_path = settings.mcp_path.rstrip("/")
    routes = [
        Route("/.well-known/oauth-authorization-server", _authorization_server_metadata, methods=["GET"]),
        Route("/.well-known/openid-configuration", _openid_configuration, methods=["GET"]),
        Route("/.well-known/oauth-protected-resource", _protected_resource_metadata, methods=["GET"]),
        Route(f"{mcp_path}/.well-known/protected-resource", _protected_resource_metadata, methods=["GET"]),
        Route("/oauth/register", _register_client, methods=["POST"]),
        Route("/oauth/authorize", _authorize, methods=["GET"]),
        Route(settings.redirect_path, _oauth_callback, methods=["GET"]),
        Route("/oauth/token", _token_endpoint, methods=["POST"]),
        Route("/oauth/userinfo", _userinfo, methods=["GET"]),
        Route("/oauth/revoke", _revoke_token, methods=["POST"]),
    ]

    logger.info("✓ OAuth proxy endpoints registered (%d routes)", len(routes))
    return routes
