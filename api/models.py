"""
API request and response models for LabLIMS REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
standards/models.py, which own the internal domain representation. Route
handlers map between the two.

No response model has a password field; the hash never leaves auth/.
"""

import json
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from auth.models import AuditLogEntry, Role, Session, User
from standards.models import ReferenceRule, ReferenceStandard

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    # Fields are optional so a missing value reaches AuthService and gets the
    # same 400 as an empty one, instead of a 422 schema error.
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = Field(default=None, alias="currentPassword", max_length=128)
    new_password: Optional[str] = Field(default=None, alias="newPassword", max_length=128)

    model_config = ConfigDict(populate_by_name=True)


class UserResponse(BaseModel):
    """Public view of a User. Built with from_user() so the hash can't leak."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: Role
    full_name: str
    active: bool
    must_change_password: bool
    failed_login_attempts: int
    created_by: Optional[int]
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            full_name=user.full_name,
            active=user.active,
            must_change_password=user.must_change_password,
            failed_login_attempts=user.failed_login_attempts,
            created_by=user.created_by,
            created_at=user.created_at or "",
        )


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
    must_change_password: bool = Field(serialization_alias="mustChangePassword")


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    # Only the identity fields are trimmed. The password is stored exactly as
    # sent, because login compares it unmodified.
    email: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255)]
    password: str = Field(max_length=128)
    role: Role
    full_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


class UserPatch(BaseModel):
    role: Optional[Role] = None
    active: Optional[bool] = None


class AdminUserRow(UserResponse):
    active_sessions: int
    created_by_name: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    new_password: Optional[str] = Field(default=None, alias="newPassword", max_length=128)

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """An active session. token_hash is deliberately not exposed."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: int
    ip_address: Optional[str]
    user_agent: Optional[str]
    expires_at: str
    created_at: str
    user_email: str
    user_name: str
    user_role: Role

    @classmethod
    def from_pair(cls, session: Session, owner: User) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            expires_at=session.expires_at,
            created_at=session.created_at or "",
            user_email=owner.email,
            user_name=owner.full_name,
            user_role=owner.role,
        )


class CleanupResponse(BaseModel):
    message: str
    removed: int


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


def _load(text: Optional[str]) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class AuditLogRow(BaseModel):
    """One audit entry with its JSON columns decoded for display."""

    model_config = ConfigDict(frozen=True)

    id: int
    timestamp: str
    user_id: Optional[int]
    user_email: str
    user_role: Optional[str]
    action: str
    entity_type: Optional[str]
    entity_id: Optional[str]
    state_before: Any = None
    state_after: Any = None
    ip_address: Optional[str]
    severity: str
    metadata: Any = None
    user_name: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogRow":
        return cls(
            id=entry.id,
            timestamp=entry.timestamp,
            user_id=entry.user_id,
            user_email=entry.user_email,
            user_role=entry.user_role,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            state_before=_load(entry.state_before),
            state_after=_load(entry.state_after),
            ip_address=entry.ip_address,
            severity=entry.severity,
            metadata=_load(entry.metadata),
            user_name=entry.user_name,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")


class AuditLogPage(BaseModel):
    data: list[AuditLogRow]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Dashboard statistics
# ---------------------------------------------------------------------------


class UserTotals(BaseModel):
    total: int
    active: int
    inactive: int


class RoleCount(BaseModel):
    role: Role
    count: int


class AuditTotals(BaseModel):
    total: int
    critical: int
    warning: int
    today: int


class DayCount(BaseModel):
    date: str
    count: int


class ActionCount(BaseModel):
    action: str
    count: int


class ActorCount(BaseModel):
    user_email: str
    actions: int


class SystemStatsResponse(BaseModel):
    """Response for GET /api/v1/admin/stats."""

    users: UserTotals
    users_by_role: list[RoleCount]
    active_sessions: int
    audit: AuditTotals
    activity_last_7_days: list[DayCount]
    top_actions: list[ActionCount]
    top_users: list[ActorCount]
    server_time: str


# ---------------------------------------------------------------------------
# Reference standards
# ---------------------------------------------------------------------------


class ConditionTypeEnum(str, Enum):
    MAX = "MAX"
    MIN = "MIN"
    RANGE = "RANGE"
    EXACT_TEXT = "EXACT_TEXT"
    ABSENCE = "ABSENCE"


class RuleIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    parameter_key: str = Field(min_length=1, max_length=100)
    condition_type: ConditionTypeEnum
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    expected_text: Optional[str] = Field(default=None, max_length=500)
    display_reference: Optional[str] = Field(default=None, max_length=500)

    def to_rule(self) -> ReferenceRule:
        return ReferenceRule(
            parameter_key=self.parameter_key,
            condition_type=self.condition_type.value,
            min_value=self.min_value,
            max_value=self.max_value,
            expected_text=self.expected_text,
            display_reference=self.display_reference,
        )


class RulesReplace(BaseModel):
    """Request body for POST /reference-standards/{id}/rules. Replaces all rules."""

    rules: list[RuleIn]


class RuleOut(BaseModel):
    id: int
    parameter_key: str
    condition_type: str
    min_value: Optional[float]
    max_value: Optional[float]
    expected_text: Optional[str]
    display_reference: Optional[str]


class StandardCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)
    is_active: bool = True


class StandardPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None

    @field_validator("name", "is_active")
    @classmethod
    def reject_null(cls, value):
        # Omitting a field leaves it unchanged; an explicit null is an error.
        if value is None:
            raise ValueError("may not be null")
        return value


class StandardResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    category: Optional[str]
    is_active: bool
    created_at: str
    rules: Optional[list[RuleOut]] = None

    @classmethod
    def from_standard(cls, standard: ReferenceStandard, with_rules: bool = False) -> "StandardResponse":
        rules = None
        if with_rules:
            rules = [
                RuleOut(
                    id=r.id,
                    parameter_key=r.parameter_key,
                    condition_type=r.condition_type,
                    min_value=r.min_value,
                    max_value=r.max_value,
                    expected_text=r.expected_text,
                    display_reference=r.display_reference,
                )
                for r in standard.rules
            ]
        return cls(
            id=standard.id,
            name=standard.name,
            description=standard.description,
            category=standard.category,
            is_active=standard.is_active,
            created_at=standard.created_at,
            rules=rules,
        )
