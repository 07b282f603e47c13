"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the session
registry and routes do the work; role hierarchy rules live in auth/policy.py.

Layer rule: no imports from api/, core/, or standards/.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles. Values are the strings stored in the DB."""

    ADMIN = "ADMIN"
    PROFESSOR = "PROFESSOR"
    TECNICO = "TÉCNICO"
    VOLUNTARIO = "VOLUNTÁRIO"


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AuditAction(str, Enum):
    """Fixed vocabulary of audited actions."""

    AUTH_LOGIN_SUCCESS = "AUTH_LOGIN_SUCCESS"
    AUTH_LOGIN_FAILED = "AUTH_LOGIN_FAILED"
    AUTH_LOGOUT = "AUTH_LOGOUT"
    UNAUTHORIZED_ACCESS_ATTEMPT = "UNAUTHORIZED_ACCESS_ATTEMPT"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    ADMIN_REVOKE_SESSION = "ADMIN_REVOKE_SESSION"
    ADMIN_REVOKE_ALL_USER_SESSIONS = "ADMIN_REVOKE_ALL_USER_SESSIONS"
    ADMIN_RESET_USER_PASSWORD = "ADMIN_RESET_USER_PASSWORD"
    ADMIN_UNLOCK_USER = "ADMIN_UNLOCK_USER"
    ADMIN_CLEANUP_SESSIONS = "ADMIN_CLEANUP_SESSIONS"
    ADMIN_EXPORT_AUDIT_LOGS = "ADMIN_EXPORT_AUDIT_LOGS"
    REFERENCE_RULES_REPLACED = "REFERENCE_RULES_REPLACED"


@dataclass
class User:
    """A laboratory account.

    email is the login identifier and is matched case-sensitively.
    password_hash is a bcrypt digest; it is set to None on copies handed to
    route handlers and response bodies (see public()).

    Accounts are never removed: "deleting" a user flips active to False.
    created_by is the id of the ADMIN or PROFESSOR that created the account,
    None for the seeded first administrator.
    """

    email: str
    role: Role
    full_name: str = ""
    id: int | None = None
    password_hash: str | None = None
    active: bool = True
    must_change_password: bool = True
    failed_login_attempts: int = 0
    created_by: int | None = None
    created_at: str | None = None

    def public(self) -> User:
        """Return a copy with the password hash stripped."""
        return replace(self, password_hash=None)

    def snapshot(self) -> dict:
        """JSON-ready view used for audit before/after state."""
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "full_name": self.full_name,
            "active": self.active,
        }


@dataclass
class Session:
    """One issued login.

    token_hash is the hex SHA-256 of the raw bearer token. The raw token is
    returned to the client once and never persisted, so a leaked sessions
    table cannot be replayed.
    """

    id: str
    user_id: int
    token_hash: str
    expires_at: str  # ISO 8601, issue time + token TTL
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None


@dataclass
class AuditEvent:
    """Caller-built description of something to audit.

    state_before / state_after / metadata are arbitrary JSON-serializable
    values; the sink stores them as opaque text.
    """

    action: AuditAction | str
    severity: Severity = Severity.INFO
    user_id: int | None = None
    user_email: str | None = None
    user_role: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    state_before: object | None = None
    state_after: object | None = None
    ip_address: str | None = None
    metadata: dict | None = field(default=None)


@dataclass
class AuditLogEntry:
    """A persisted audit row. JSON columns are kept as text.

    user_name is the current full_name of the acting user, joined at read
    time; None for system entries and deleted users.
    """

    id: int
    timestamp: str
    user_email: str
    action: str
    severity: str
    user_id: int | None = None
    user_role: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    state_before: str | None = None
    state_after: str | None = None
    ip_address: str | None = None
    metadata: str | None = None
    user_name: str | None = None
