"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: the Authorization: Bearer <token> header issued
by POST /api/v1/auth/login.

get_current_user() resolves the token to an active User (hash stripped) and
stores it on request.state.user for downstream use.
require_roles(*roles) builds a dependency that also enforces role membership;
denials are audited by AuthorizationGuard before the 403 goes out.

Errors are raised as auth.errors exceptions; api/main.py turns them into the
shared JSON error envelope.

Layer rule: may import from fastapi (for Depends/Request) because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.guard import AuthorizationGuard, extract_bearer
from auth.models import Role, User


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _guard(request: Request) -> AuthorizationGuard:
    return request.app.state.guard


def get_bearer_token(request: Request) -> str:
    """Require a Bearer header and return the raw token (no verification)."""
    return extract_bearer(request.headers.get("Authorization"))


def get_current_user(request: Request) -> User:
    """Require authentication. Raises MissingTokenError / InvalidTokenError (401).

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = get_bearer_token(request)
    user = _guard(request).authenticate(token)
    request.state.user = user
    return user


def require_roles(*roles: Role) -> Callable[..., User]:
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.post("/users")
        def route(user: User = Depends(require_roles(Role.ADMIN, Role.PROFESSOR))): ...
    """
    allowed = frozenset(roles)

    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        return _guard(request).check_roles(
            user,
            allowed,
            path=request.url.path,
            ip_address=client_ip(request),
        )

    return dependency
