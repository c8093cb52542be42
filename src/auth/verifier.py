"""Token verifier contract.

Every verifier returns an :class:`AccessToken` for a valid token and None for
anything else (malformed, expired, revoked or lacking a required scope). A
verifier never raises.
"""

import hmac
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from src.auth.tokens import AccessToken, parse_scopes, scopes_satisfy

logger = logging.getLogger(__name__)


class TokenVerifier(ABC):
    """Base class for bearer token verification strategies."""

    def __init__(self, required_scopes: Iterable[str] | None = None) -> None:
        self.required_scopes: list[str] = list(required_scopes or [])

    @abstractmethod
    async def verify_token(self, token: str) -> AccessToken | None:
        """Verify ``token`` and return the access token, or None if invalid."""

    def _passes_scope_check(self, token: AccessToken) -> bool:
        if scopes_satisfy(token.scopes, self.required_scopes):
            return True
        logger.info(
            "Token for %s lacks required scopes (required: %s)",
            token.client_id,
            " ".join(self.required_scopes),
        )
        return False


class StaticTokenVerifier(TokenVerifier):
    """Verifier backed by a fixed table of tokens (API keys, tests).

    Args:
        tokens: Map of raw token to ``{"client_id", "scopes", "expires_at"}``
        required_scopes: Scopes every token must carry
    """

    def __init__(
        self,
        tokens: Mapping[str, Mapping[str, Any]],
        required_scopes: Iterable[str] | None = None,
    ) -> None:
        super().__init__(required_scopes)
        self._tokens = {key: dict(value) for key, value in tokens.items()}

    async def verify_token(self, token: str) -> AccessToken | None:
        for candidate, data in self._tokens.items():
            if hmac.compare_digest(candidate.encode(), token.encode()):
                access_token = AccessToken(
                    token=token,
                    client_id=data.get("client_id", "static-client"),
                    scopes=parse_scopes(data.get("scopes")),
                    expires_at=data.get("expires_at"),
                    claims=dict(data.get("claims", {})),
                )
                if access_token.is_expired():
                    return None
                if not self._passes_scope_check(access_token):
                    return None
                return access_token
        return None
