"""Authentication for the MCP server.

Token verifiers (JWT/JWKS, RFC 7662 introspection, static API keys) and an
OAuth proxy that offers Dynamic Client Registration in front of a single
upstream identity provider.
"""

from src.auth.client_store import (
    ClientStore,
    FileClientStore,
    InMemoryClientStore,
    OAuthClientRegistration,
    validate_redirect_uri,
)
from src.auth.introspection import IntrospectionTokenVerifier
from src.auth.jwt_verifier import JWKSCache, JWTTokenVerifier
from src.auth.proxy import (
    OAuthProxy,
    OAuthProxyOptions,
    ProxyErrorKind,
    ProxyResult,
)
from src.auth.tokens import AccessToken
from src.auth.verifier import StaticTokenVerifier, TokenVerifier

__all__ = [
    "AccessToken",
    "ClientStore",
    "FileClientStore",
    "InMemoryClientStore",
    "IntrospectionTokenVerifier",
    "JWKSCache",
    "JWTTokenVerifier",
    "OAuthClientRegistration",
    "OAuthProxy",
    "OAuthProxyOptions",
    "ProxyErrorKind",
    "ProxyResult",
    "StaticTokenVerifier",
    "TokenVerifier",
    "validate_redirect_uri",
]
