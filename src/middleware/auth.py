"""Bearer token authentication middleware.

Resolves the ``Authorization: Bearer`` header into a
:class:`~src.server.authorization.CallerIdentity` stored on
``request.state.identity``. Per-method decisions are left to the dispatcher's
authorization gate; this middleware only rejects requests outright when
``require_token`` is set.
"""

import logging
from typing import Optional, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from src.auth.verifier import TokenVerifier
from src.server.authorization import CallerIdentity

logger = logging.getLogger(__name__)

BYPASS_PATHS = ("/health", "/ping", "/healthz")
BYPASS_PREFIXES = ("/.well-known/", "/oauth/")


def bearer_challenge(resource_metadata_url: Optional[str], error: Optional[str] = None) -> str:
    """Build the ``WWW-Authenticate`` header value for a 401 response."""
    parts = []
    if error:
        parts.append(f'error="{error}"')
    if resource_metadata_url:
        parts.append(f'resource_metadata="{resource_metadata_url}"')
    return "Bearer " + ", ".join(parts) if parts else 'Bearer realm="MCP Server"'


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Middleware verifying bearer tokens with a chain of verifiers.

    Verifiers are tried in order; the first that accepts the token wins.
    A request whose token is rejected by every verifier proceeds with an
    unauthenticated identity, so methods with authorization requirements
    are denied while open methods still work.
    """

    def __init__(
        self,
        app,
        verifiers: Sequence[TokenVerifier],
        require_token: bool = False,
        resource_metadata_url: Optional[str] = None,
        bypass_paths: Sequence[str] = (),
    ):
        """
        Initialize middleware.

        Args:
            app: ASGI application
            verifiers: Token verifiers tried in order
            require_token: Reject requests without a valid token with 401
            resource_metadata_url: Advertised in WWW-Authenticate challenges
            bypass_paths: Extra paths served without authentication
        """
        super().__init__(app)
        self.verifiers = list(verifiers)
        self.require_token = require_token
        self.resource_metadata_url = resource_metadata_url
        self.bypass_paths = set(BYPASS_PATHS) | set(bypass_paths)

    def _is_bypassed(self, path: str) -> bool:
        return path in self.bypass_paths or any(path.startswith(p) for p in BYPASS_PREFIXES)

    async def dispatch(self, request: Request, call_next):
        """Process request with bearer authentication."""
        if self._is_bypassed(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            if self.require_token:
                return self._unauthorized_response("Missing or invalid Authorization header")
            # No verifiers means this transport carries no authentication at all
            request.state.identity = CallerIdentity.anonymous() if self.verifiers else None
            return await call_next(request)

        token = auth_header[7:].strip()
        for verifier in self.verifiers:
            access_token = await verifier.verify_token(token)
            if access_token is not None:
                request.state.identity = access_token.to_identity("Bearer")
                request.state.access_token = access_token
                logger.debug("Authenticated %s via %s", access_token.client_id, type(verifier).__name__)
                return await call_next(request)

        if self.require_token:
            return self._unauthorized_response("Invalid access token", error="invalid_token")

        logger.info("Bearer token rejected by all verifiers; continuing unauthenticated")
        request.state.identity = CallerIdentity.anonymous()
        return await call_next(request)

    def _unauthorized_response(self, message: str, error: Optional[str] = None) -> JSONResponse:
        """Create 401 Unauthorized response with WWW-Authenticate header."""
        return JSONResponse(
            {
                "error": "Unauthorized",
                "message": message,
            },
            status_code=401,
            headers={"WWW-Authenticate": bearer_challenge(self.resource_metadata_url, error)},
        )
