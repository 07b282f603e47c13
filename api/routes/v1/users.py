"""
api/routes/v1/users.py -- User administration REST endpoints.

Routes:
  GET    /api/v1/users       -- list accounts (ADMIN, PROFESSOR)
  POST   /api/v1/users       -- create account (ADMIN, PROFESSOR)
  PATCH  /api/v1/users/{id}  -- change role / active flag (ADMIN)
  DELETE /api/v1/users/{id}  -- soft delete: sets active = false (ADMIN, PROFESSOR)

Role membership is checked by require_roles() (denials audited there). The
finer hierarchy in auth/policy.py is checked here, per target:
  - PROFESSOR cannot create an ADMIN.
  - PROFESSOR can only deactivate TÉCNICO and VOLUNTÁRIO accounts.
  - Nobody deactivates or re-roles their own account.

Every successful write is audited with before/after snapshots.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError

from api.models import MessageResponse, UserCreate, UserPatch, UserResponse
from auth import policy
from auth.audit import AuditSink
from auth.dependencies import client_ip, require_roles
from auth.errors import AuthorizationError, ConflictError, InputValidationError, NotFoundError
from auth.models import AuditAction, Role, Severity, User
from auth.service import validate_new_password
from auth.store import AuthStore
from auth.tokens import hash_password

logger = logging.getLogger("lablims.api")

router = APIRouter()

_managers = require_roles(Role.ADMIN, Role.PROFESSOR)
_admin = require_roles(Role.ADMIN)


def _load_target(store: AuthStore, user_id: int) -> User:
    target = store.get_user_by_id(user_id)
    if target is None:
        raise NotFoundError("User not found.")
    return target


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(_managers)) -> list[UserResponse]:
    """List every account, inactive included, newest first."""
    store: AuthStore = request.app.state.auth_store
    return [UserResponse.from_user(u) for u in store.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(_managers),
) -> UserResponse:
    """Create an account. It starts active with must_change_password set."""
    if not policy.can_create(current_user, body.role):
        raise AuthorizationError(f"{current_user.role.value} cannot create {body.role.value} accounts.")
    validate_new_password(body.password)

    store: AuthStore = request.app.state.auth_store
    audit: AuditSink = request.app.state.audit

    new_user = User(
        email=body.email,
        role=body.role,
        full_name=body.full_name,
        password_hash=hash_password(body.password),
        must_change_password=True,
        created_by=current_user.id,
    )
    try:
        user_id = store.create_user(new_user)
    except IntegrityError as exc:
        raise ConflictError("A user with that email already exists.") from exc

    created = store.get_user_by_id(user_id)
    audit.record_for(
        current_user,
        AuditAction.USER_CREATED,
        severity=Severity.WARNING,
        entity_type="users",
        entity_id=str(user_id),
        state_after=created.snapshot(),
        ip_address=client_ip(request),
        metadata={"newUserRole": body.role.value, "newUserEmail": body.email},
    )
    logger.info("User %s created %s account %s", current_user.id, body.role.value, user_id)
    return UserResponse.from_user(created)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: User = Depends(_admin),
) -> UserResponse:
    """Change a user's role or active flag. ADMIN only.

    Deactivating an account also drops its open sessions.
    """
    store: AuthStore = request.app.state.auth_store
    audit: AuditSink = request.app.state.audit

    target = _load_target(store, user_id)
    updates: dict = {}
    if body.role is not None and body.role is not target.role:
        if not policy.can_change_role(current_user, target):
            raise AuthorizationError("You cannot change your own role.")
        updates["role"] = body.role
    if body.active is not None and body.active != target.active:
        if not body.active:
            if target.id == current_user.id:
                raise InputValidationError("You cannot deactivate your own account.")
            if not policy.can_deactivate(current_user, target):
                raise AuthorizationError()
        elif not policy.can_reactivate(current_user):
            raise AuthorizationError()
        updates["active"] = body.active

    if not updates:
        raise InputValidationError("No fields to update.")

    store.update_user(user_id, **updates)
    if updates.get("active") is False:
        request.app.state.sessions.revoke_by_user(user_id)

    updated = store.get_user_by_id(user_id)
    audit.record_for(
        current_user,
        AuditAction.USER_UPDATED,
        severity=Severity.WARNING,
        entity_type="users",
        entity_id=str(user_id),
        state_before=target.snapshot(),
        state_after=updated.snapshot(),
        ip_address=client_ip(request),
    )
    return UserResponse.from_user(updated)


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(_managers),
) -> MessageResponse:
    """Soft-delete an account (active = false) and drop its sessions."""
    store: AuthStore = request.app.state.auth_store
    audit: AuditSink = request.app.state.audit

    target = _load_target(store, user_id)
    if target.id == current_user.id:
        raise InputValidationError("You cannot delete your own account.")
    if not policy.can_deactivate(current_user, target):
        raise AuthorizationError(f"{current_user.role.value} cannot deactivate {target.role.value} accounts.")

    store.update_user(user_id, active=False)
    revoked = request.app.state.sessions.revoke_by_user(user_id)
    audit.record_for(
        current_user,
        AuditAction.USER_DELETED,
        severity=Severity.CRITICAL,
        entity_type="users",
        entity_id=str(user_id),
        state_before=target.snapshot(),
        ip_address=client_ip(request),
        metadata={"sessionsRevoked": revoked},
    )
    return MessageResponse(message="User deactivated.")
