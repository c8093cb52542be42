"""Per-method authorization.

A :class:`MethodDescriptor` may carry an :class:`AuthorizationRequirement`.
The gate evaluates it against the caller identity produced by the transport's
authentication step. Evaluation is a pure function of the requirement, the
identity and the configured named policies.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from src.core.exceptions import AuthorizationError

logger = logging.getLogger(__name__)

Policy = Callable[["CallerIdentity"], bool]


@dataclass(frozen=True)
class CallerIdentity:
    """Already-authenticated caller as seen by the dispatcher.

    ``authentication_type`` is None for a caller that presented no valid
    credential; such an identity is present but unauthenticated.
    """

    subject: str | None = None
    authentication_type: str | None = None
    roles: frozenset[str] = frozenset()
    scopes: frozenset[str] = frozenset()
    claims: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def anonymous(cls) -> "CallerIdentity":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.authentication_type is not None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_scopes(self, scopes: Iterable[str]) -> bool:
        owned = {s.lower() for s in self.scopes}
        return all(s.lower() in owned for s in scopes)


@dataclass(frozen=True)
class AuthorizationRequirement:
    """Requirement declared on a method.

    An instance that names no roles, policy or schemes still requires an
    authenticated caller.
    """

    roles: frozenset[str] = frozenset()
    policy: str | None = None
    schemes: frozenset[str] = frozenset()
    require_authenticated: bool = True

    @classmethod
    def of(
        cls,
        roles: Iterable[str] | str | None = None,
        policy: str | None = None,
        schemes: Iterable[str] | str | None = None,
    ) -> "AuthorizationRequirement":
        """Build a requirement, accepting comma-separated strings for sets."""
        return cls(
            roles=_as_set(roles),
            policy=policy or None,
            schemes=_as_set(schemes),
        )


def _as_set(value: Iterable[str] | str | None) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(v.strip() for v in value if v and v.strip())


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str = ""
    authenticated: bool = False

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise AuthorizationError(self.reason, authenticated=self.authenticated)


ALLOW = AuthorizationDecision(allowed=True)


def require_scopes(*scopes: str) -> Policy:
    """Policy factory: caller token must carry every given scope."""

    def _policy(identity: CallerIdentity) -> bool:
        return identity.has_scopes(scopes)

    return _policy


def require_claim(name: str, *values: Any) -> Policy:
    """Policy factory: claim must be present (and equal one of ``values``)."""

    def _policy(identity: CallerIdentity) -> bool:
        if name not in identity.claims:
            return False
        return not values or identity.claims[name] in values

    return _policy


def evaluate_requirement(
    requirement: AuthorizationRequirement | None,
    identity: CallerIdentity | None,
    policies: Mapping[str, Policy],
    *,
    allow_anonymous_transport: bool,
) -> AuthorizationDecision:
    """Decide whether ``identity`` satisfies ``requirement``.

    Args:
        requirement: Requirement declared on the method (None means public)
        identity: Caller identity, or None when the transport has no notion
            of per-call identity
        policies: Named policies available to requirements
        allow_anonymous_transport: Whether a missing identity passes

    Returns:
        The authorization decision
    """
    if requirement is None:
        return ALLOW
    if not (
        requirement.require_authenticated
        or requirement.roles
        or requirement.policy
        or requirement.schemes
    ):
        return ALLOW

    if identity is None:
        if allow_anonymous_transport:
            return ALLOW
        return AuthorizationDecision(False, "Authentication required")

    if not identity.is_authenticated:
        return AuthorizationDecision(False, "Authentication required")

    if requirement.schemes:
        scheme = (identity.authentication_type or "").lower()
        if scheme not in {s.lower() for s in requirement.schemes}:
            return AuthorizationDecision(
                False,
                f"Authentication scheme '{identity.authentication_type}' not accepted",
                authenticated=True,
            )

    if requirement.roles and not any(identity.has_role(r) for r in requirement.roles):
        return AuthorizationDecision(
            False,
            f"Caller lacks required role (one of: {', '.join(sorted(requirement.roles))})",
            authenticated=True,
        )

    if requirement.policy:
        policy = policies.get(requirement.policy)
        if policy is None:
            logger.warning("Unknown authorization policy '%s'; denying", requirement.policy)
            return AuthorizationDecision(
                False,
                f"Policy '{requirement.policy}' is not defined",
                authenticated=True,
            )
        if not policy(identity):
            return AuthorizationDecision(
                False,
                f"Policy '{requirement.policy}' not satisfied",
                authenticated=True,
            )

    return ALLOW


class AuthorizationGate:
    """Evaluates method requirements with a fixed set of named policies."""

    def __init__(
        self,
        policies: Mapping[str, Policy] | None = None,
        *,
        allow_anonymous_transport: bool = True,
    ) -> None:
        self._policies = dict(policies or {})
        self.allow_anonymous_transport = allow_anonymous_transport
        if allow_anonymous_transport:
            logger.debug(
                "Calls without a caller identity will pass authorization requirements",
            )

    @property
    def policies(self) -> Mapping[str, Policy]:
        return self._policies

    def add_policy(self, name: str, policy: Policy) -> None:
        self._policies[name] = policy

    def evaluate(
        self,
        requirement: AuthorizationRequirement | None,
        identity: CallerIdentity | None,
    ) -> AuthorizationDecision:
        return evaluate_requirement(
            requirement,
            identity,
            self._policies,
            allow_anonymous_transport=self.allow_anonymous_transport,
        )

    def enforce(
        self,
        requirement: AuthorizationRequirement | None,
        identity: CallerIdentity | None,
    ) -> None:
        """Raise :class:`AuthorizationError` when the call is denied."""
        self.evaluate(requirement, identity).raise_for_denial()
