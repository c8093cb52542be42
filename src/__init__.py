"""
MCP Server - JSON-RPC 2.0 server framework with OAuth 2.0 bearer authorization.

This package provides request dispatch with a composable middleware pipeline,
per-method authorization, token verification (JWT/JWKS and RFC 7662
introspection) and an OAuth proxy that bridges Dynamic Client Registration
and PKCE to a single upstream identity provider.
"""

__version__ = "0.1.0"
