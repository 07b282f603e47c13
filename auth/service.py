"""
auth/service.py -- Login, logout, password change and current-user operations.

AuthService composes the pieces in the order a login needs them:
credential check (bcrypt) -> token + session (SessionRegistry) -> audit.
Route handlers in api/routes/v1/auth.py are thin wrappers around it.

Enumeration resistance [C1]:
  Unknown email, inactive account and wrong password all raise the same
  CredentialError, and all three run one bcrypt verification so response
  time stays flat. The audit entry records the real reason; the client never
  sees it.

Layer rule: no imports from api/, core/, or standards/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.audit import AuditSink
from auth.errors import CredentialError, InputValidationError
from auth.guard import AuthorizationGuard
from auth.models import AuditAction, AuditEvent, Role, Severity, User
from auth.sessions import SessionRegistry
from auth.store import AuthStore
from auth.tokens import DUMMY_HASH, hash_password, hash_token, verify_password

logger = logging.getLogger("lablims.auth")

MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class LoginResult:
    token: str
    session_id: str
    user: User  # password hash stripped
    must_change_password: bool


def validate_new_password(password: str | None) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise InputValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")


class AuthService:
    def __init__(
        self,
        store: AuthStore,
        registry: SessionRegistry,
        audit: AuditSink,
        guard: AuthorizationGuard,
    ) -> None:
        self._store = store
        self._registry = registry
        self._audit = audit
        self._guard = guard

    def login(
        self,
        email: str,
        password: str,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        """Verify credentials and open a session.

        Raises InputValidationError when a field is missing and CredentialError
        for every authentication failure.
        """
        if not email or not password:
            raise InputValidationError("Email and password are required.")

        user = self._store.get_user_by_email(email)
        if user is None or not user.active:
            verify_password(password, DUMMY_HASH)
            self._audit.record(
                AuditEvent(
                    action=AuditAction.AUTH_LOGIN_FAILED,
                    severity=Severity.WARNING,
                    user_id=user.id if user else None,
                    user_email=email,
                    ip_address=client_ip,
                    metadata={"reason": "USER_INACTIVE" if user else "USER_NOT_FOUND"},
                )
            )
            raise CredentialError()

        if not verify_password(password, user.password_hash):
            self._store.increment_failed_logins(user.id)
            self._audit.record(
                AuditEvent(
                    action=AuditAction.AUTH_LOGIN_FAILED,
                    severity=Severity.WARNING,
                    user_id=user.id,
                    user_email=user.email,
                    ip_address=client_ip,
                    metadata={"reason": "INVALID_PASSWORD"},
                )
            )
            raise CredentialError()

        if user.failed_login_attempts:
            self._store.update_user(user.id, failed_login_attempts=0)
            user.failed_login_attempts = 0

        session_id, token = self._registry.create(user.id, client_ip, user_agent)
        self._audit.record_for(user, AuditAction.AUTH_LOGIN_SUCCESS, ip_address=client_ip)
        logger.info("Login succeeded for user %s", user.id)
        return LoginResult(
            token=token,
            session_id=session_id,
            user=user.public(),
            must_change_password=user.must_change_password,
        )

    def logout(self, token: str | None, client_ip: str | None = None) -> None:
        """Drop the session for this token. Never fails from the caller's view."""
        if not token:
            return
        token_hash = hash_token(token)
        session = self._store.get_session_by_token_hash(token_hash)
        self._registry.revoke_by_token_hash(token_hash)
        if session is not None:
            owner = self._store.get_user_by_id(session.user_id)
            self._audit.record_for(owner, AuditAction.AUTH_LOGOUT, ip_address=client_ip)

    def change_password(
        self,
        token: str | None,
        current_password: str,
        new_password: str,
        client_ip: str | None = None,
    ) -> None:
        """Replace the caller's password and clear must_change_password.

        Input is validated before anything is read from the store.
        """
        if not current_password or not new_password:
            raise InputValidationError("Current password and new password are required.")
        validate_new_password(new_password)

        caller = self._guard.authenticate(token)
        user = self._store.get_user_by_id(caller.id)
        if user is None or not verify_password(current_password, user.password_hash):
            raise CredentialError("Current password is incorrect.")

        self._store.update_user(
            user.id,
            password_hash=hash_password(new_password),
            must_change_password=False,
        )
        self._audit.record_for(
            user,
            AuditAction.PASSWORD_CHANGED,
            severity=Severity.WARNING,
            entity_type="users",
            entity_id=str(user.id),
            ip_address=client_ip,
        )

    def current_user(self, token: str | None) -> User:
        return self._guard.authenticate(token)

    def ensure_seed_admin(self, email: str, password: str) -> int | None:
        """Create the first ADMIN when the users table is empty.

        Returns the new user id, or None if users already exist. The account
        is flagged must_change_password so the default password is short-lived.
        """
        if self._store.has_users():
            return None
        user_id = self._store.create_user(
            User(
                email=email,
                role=Role.ADMIN,
                full_name="Administrator",
                password_hash=hash_password(password),
                must_change_password=True,
            )
        )
        logger.warning("First run: created ADMIN account %s -- change its password after first login", email)
        return user_id
