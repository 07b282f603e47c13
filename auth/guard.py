"""
auth/guard.py -- Two-stage authorization gate, framework-free.

Stage 1 (authentication): a bearer token must be presented; MissingTokenError
when it is absent or malformed, InvalidTokenError when it does not resolve to
an active user. Both are 401s with fixed messages.

Stage 2 (role check): the caller's role must be in the required set. A miss
writes an UNAUTHORIZED_ACCESS_ATTEMPT entry at WARNING with the path and the
required roles *before* AuthorizationError is raised. The audit write is
best-effort (AuditSink never raises), so it cannot turn a denial into a 500.

auth/dependencies.py wraps this class for FastAPI routes.

Layer rule: no imports from api/, core/, or standards/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.audit import AuditSink
from auth.errors import AuthorizationError, InvalidTokenError, MissingTokenError
from auth.models import AuditAction, Role, Severity, User
from auth.sessions import SessionRegistry

logger = logging.getLogger("lablims.auth")

_BEARER_PREFIX = "Bearer "


def extract_bearer(authorization: str | None) -> str:
    """Return the token from an Authorization header value.

    Raises MissingTokenError when the header is absent, uses another scheme,
    or carries an empty token.
    """
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        raise MissingTokenError()
    token = authorization[len(_BEARER_PREFIX) :].strip()
    if not token:
        raise MissingTokenError()
    return token


class AuthorizationGuard:
    def __init__(self, registry: SessionRegistry, audit: AuditSink) -> None:
        self._registry = registry
        self._audit = audit

    def authenticate(self, token: str | None) -> User:
        """Resolve a raw token to the active user, password hash stripped."""
        if not token:
            raise MissingTokenError()
        user = self._registry.authenticate(token)
        if user is None:
            raise InvalidTokenError()
        return user.public()

    def check_roles(
        self,
        user: User,
        required_roles: Iterable[Role],
        path: str | None = None,
        ip_address: str | None = None,
    ) -> User:
        """Raise AuthorizationError (after auditing) unless user.role is allowed."""
        allowed = frozenset(Role(r) for r in required_roles)
        if user.role in allowed:
            return user

        required = sorted(r.value for r in allowed)
        logger.warning("Denied %s (%s) on %s; requires %s", user.email, user.role.value, path, required)
        self._audit.record_for(
            user,
            AuditAction.UNAUTHORIZED_ACCESS_ATTEMPT,
            severity=Severity.WARNING,
            ip_address=ip_address,
            metadata={"requiredRoles": required, "path": path},
        )
        raise AuthorizationError()

    def authorize(
        self,
        token: str | None,
        required_roles: Iterable[Role],
        path: str | None = None,
        ip_address: str | None = None,
    ) -> User:
        """Authenticate the token and enforce role membership in one call."""
        user = self.authenticate(token)
        return self.check_roles(user, required_roles, path=path, ip_address=ip_address)
