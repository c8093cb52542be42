"""Verified bearer credential model."""

import time
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field

from src.server.authorization import CallerIdentity


def parse_scopes(value: Any) -> list[str]:
    """Normalize a ``scope``/``scopes`` value (space-delimited string or list)."""
    if value is None:
        return []
    if isinstance(value, str):
        return [s for s in value.split() if s]
    if isinstance(value, (list, tuple, set)):
        return [str(s) for s in value if s]
    return []


def scopes_satisfy(granted: Iterable[str], required: Iterable[str]) -> bool:
    """True when every required scope is granted (case-insensitive)."""
    owned = {s.lower() for s in granted}
    return all(s.lower() in owned for s in required)


class AccessToken(BaseModel):
    """Result of a successful token verification. Scoped to one request."""

    token: str
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    expires_at: int | None = None
    claims: dict[str, Any] = Field(default_factory=dict)

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def has_required_scopes(self, required: Iterable[str]) -> bool:
        return scopes_satisfy(self.scopes, required)

    def roles(self) -> frozenset[str]:
        roles: set[str] = set()
        for claim in ("roles", "role"):
            value = self.claims.get(claim)
            if isinstance(value, str):
                roles.update(r for r in value.replace(",", " ").split() if r)
            elif isinstance(value, (list, tuple)):
                roles.update(str(r) for r in value)
        return frozenset(roles)

    def to_identity(self, scheme: str = "Bearer") -> CallerIdentity:
        """Project the token onto the identity seen by the dispatcher."""
        claims = dict(self.claims)
        claims.setdefault("client_id", self.client_id)
        return CallerIdentity(
            subject=str(self.claims.get("sub") or self.client_id),
            authentication_type=scheme,
            roles=self.roles(),
            scopes=frozenset(self.scopes),
            claims=claims,
        )
