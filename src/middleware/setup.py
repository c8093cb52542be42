"""
Middleware configuration for the HTTP transport.

This module provides a clean interface to configure authentication
middleware based on application settings.

Architecture:
- Separates middleware configuration from main application logic
- Supports JWT, introspection and API key verifiers in one chain
- Single responsibility: middleware setup
"""

from typing import TYPE_CHECKING, List, Optional, Sequence

from starlette.middleware import Middleware

from src.core import logger
from src.middleware.auth import BearerAuthMiddleware

if TYPE_CHECKING:
    from src.auth.verifier import TokenVerifier
    from src.config import Settings


def setup_middleware(
    settings: "Settings",
    verifiers: Optional[Sequence["TokenVerifier"]] = None,
) -> List[Middleware]:
    """
    Configure authentication middleware based on settings.

    Authentication modes:
    1. Verifiers configured: BearerAuthMiddleware resolves caller identities
       (and rejects missing tokens when REQUIRE_BEARER_TOKEN is set)
    2. No verifiers: empty list, requests carry no identity

    Args:
        settings: Application settings
        verifiers: Token verifiers tried in order

    Returns:
        List of configured Middleware instances

    Raises:
        ValueError: If REQUIRE_BEARER_TOKEN is set but no verifier is available

    Example:
        >>> from src.auth.setup import build_token_verifiers
        >>> from src.middleware.setup import setup_middleware
        >>>
        >>> middleware = setup_middleware(settings, build_token_verifiers(settings))
    """
    middleware = []
    verifiers = list(verifiers or [])

    if verifiers:
        resource_metadata_url = f"{settings.base_url}/.well-known/oauth-protected-resource"
        middleware.append(
            Middleware(
                BearerAuthMiddleware,
                verifiers=verifiers,
                require_token=settings.require_bearer_token,
                resource_metadata_url=resource_metadata_url,
                bypass_paths=(settings.redirect_path,),
            ),
        )
        logger.info(
            "✓ Bearer authentication enabled (%d verifier(s), token %s)",
            len(verifiers),
            "required" if settings.require_bearer_token else "optional",
        )

    elif settings.require_bearer_token:
        raise ValueError("REQUIRE_BEARER_TOKEN is set but no token verifier is configured")

    else:
        # No authentication configured
        logger.warning("⚠ No authentication middleware configured")

    return middleware
