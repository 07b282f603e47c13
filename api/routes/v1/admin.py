"""
api/routes/v1/admin.py -- Administration console REST endpoints. ADMIN only.

Routes:
  GET    /api/v1/admin/audit-logs                   -- paginated, filterable audit log
  GET    /api/v1/admin/audit-logs/actions           -- distinct action names (filter dropdown)
  GET    /api/v1/admin/audit-logs/export            -- CSV download of a date window
  GET    /api/v1/admin/sessions                     -- unexpired sessions with their owners
  DELETE /api/v1/admin/sessions/{session_id}        -- revoke one session
  DELETE /api/v1/admin/sessions/user/{user_id}      -- revoke all sessions of a user
  GET    /api/v1/admin/users                        -- users with live session counts
  GET    /api/v1/admin/stats                        -- dashboard aggregates
  PATCH  /api/v1/admin/users/{user_id}/reset-password
  PATCH  /api/v1/admin/users/{user_id}/unlock
  POST   /api/v1/admin/cleanup-sessions             -- delete expired session rows

The router-level dependency applies require_roles(ADMIN) to every route, so a
non-admin gets one audited 403 no matter which path it hits.
"""

from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from api.models import (
    AdminUserRow,
    AuditLogPage,
    AuditLogRow,
    CleanupResponse,
    MessageResponse,
    Pagination,
    ResetPasswordRequest,
    SessionResponse,
    SystemStatsResponse,
    UserResponse,
)
from auth.audit import SYSTEM_ACTOR, AuditSink
from auth.dependencies import client_ip, get_current_user, require_roles
from auth.errors import NotFoundError
from auth.models import AuditAction, Role, Severity, User
from auth.service import validate_new_password
from auth.sessions import SessionRegistry
from auth.store import AuthStore
from auth.tokens import hash_password, utc_now
from core.csvexport import to_csv

router = APIRouter(prefix="/admin", dependencies=[Depends(require_roles(Role.ADMIN))])

_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

EXPORT_HEADERS = ["Data/Hora", "Usuário", "Papel", "Ação", "Entidade", "ID Entidade", "Severidade", "IP"]


def _store(request: Request) -> AuthStore:
    return request.app.state.auth_store


def _audit(request: Request) -> AuditSink:
    return request.app.state.audit


def _sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _load_user(store: AuthStore, user_id: int) -> User:
    user = store.get_user_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return user


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@router.get("/audit-logs", response_model=AuditLogPage)
def list_audit_logs(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    action: Optional[str] = None,
    severity: Optional[Severity] = None,
    user_id: Optional[int] = None,
    start_date: Optional[str] = Query(None, pattern=_DATE_PATTERN),
    end_date: Optional[str] = Query(None, pattern=_DATE_PATTERN),
    search: Optional[str] = Query(None, max_length=200),
) -> AuditLogPage:
    """Return one page of audit entries, newest first, with JSON columns decoded."""
    entries, total = _store(request).query_audit_entries(
        action=action,
        severity=severity.value if severity else None,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )
    return AuditLogPage(
        data=[AuditLogRow.from_entry(e) for e in entries],
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.get("/audit-logs/actions", response_model=list[str])
def list_audit_actions(request: Request) -> list[str]:
    return _store(request).list_audit_actions()


@router.get("/audit-logs/export")
def export_audit_logs(
    request: Request,
    start_date: Optional[str] = Query(None, pattern=_DATE_PATTERN),
    end_date: Optional[str] = Query(None, pattern=_DATE_PATTERN),
    current_user: User = Depends(get_current_user),
) -> Response:
    """Download the audit log as a ';'-separated, BOM-prefixed CSV.

    The export itself is audited, with the record count and date window.
    """
    entries = _store(request).export_audit_entries(start_date=start_date, end_date=end_date)
    body = to_csv(
        EXPORT_HEADERS,
        (
            [
                e.timestamp,
                e.user_email,
                e.user_role or "",
                e.action,
                e.entity_type or "",
                e.entity_id or "",
                e.severity,
                e.ip_address or "",
            ]
            for e in entries
        ),
    )
    _audit(request).record_for(
        current_user,
        AuditAction.ADMIN_EXPORT_AUDIT_LOGS,
        severity=Severity.WARNING,
        ip_address=client_ip(request),
        metadata={"recordCount": len(entries), "startDate": start_date, "endDate": end_date},
    )
    filename = f"audit-logs-{utc_now().date().isoformat()}.csv"
    return Response(
        content=body.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.get("/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request) -> list[SessionResponse]:
    """Unexpired sessions, newest first. Token hashes are not exposed."""
    return [SessionResponse.from_pair(s, owner) for s, owner in _sessions(request).list_active()]


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
def revoke_session(
    request: Request,
    session_id: str,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    removed = _sessions(request).revoke_session(session_id)
    if removed is None:
        raise NotFoundError("Session not found.")
    _audit(request).record_for(
        current_user,
        AuditAction.ADMIN_REVOKE_SESSION,
        severity=Severity.CRITICAL,
        entity_type="sessions",
        entity_id=session_id,
        ip_address=client_ip(request),
        metadata={"revokedUserId": removed.user_id},
    )
    return MessageResponse(message="Session revoked.")


@router.delete("/sessions/user/{user_id}", response_model=CleanupResponse)
def revoke_user_sessions(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> CleanupResponse:
    target = _load_user(_store(request), user_id)
    removed = _sessions(request).revoke_by_user(user_id)
    _audit(request).record_for(
        current_user,
        AuditAction.ADMIN_REVOKE_ALL_USER_SESSIONS,
        severity=Severity.CRITICAL,
        entity_type="users",
        entity_id=str(user_id),
        ip_address=client_ip(request),
        metadata={"targetEmail": target.email, "sessionsRevoked": removed},
    )
    return CleanupResponse(message=f"{removed} session(s) revoked.", removed=removed)


@router.post("/cleanup-sessions", response_model=CleanupResponse)
def cleanup_sessions(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> CleanupResponse:
    """Delete expired session rows. They are already inert; this only reclaims space."""
    removed = _sessions(request).purge_expired()
    _audit(request).record_for(
        current_user,
        AuditAction.ADMIN_CLEANUP_SESSIONS,
        ip_address=client_ip(request),
        metadata={"sessionsRemoved": removed},
    )
    return CleanupResponse(message=f"{removed} expired session(s) removed.", removed=removed)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[AdminUserRow])
def list_users(request: Request) -> list[AdminUserRow]:
    pairs = _store(request).list_users_with_session_counts(utc_now().isoformat())
    return [
        AdminUserRow(**UserResponse.from_user(u).model_dump(), active_sessions=count, created_by_name=creator)
        for u, count, creator in pairs
    ]


@router.patch("/users/{user_id}/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    user_id: int,
    body: ResetPasswordRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Set a temporary password, force a change on next login and drop all sessions."""
    validate_new_password(body.new_password)
    store = _store(request)
    target = _load_user(store, user_id)

    store.update_user(
        user_id,
        password_hash=hash_password(body.new_password),
        must_change_password=True,
        failed_login_attempts=0,
    )
    revoked = _sessions(request).revoke_by_user(user_id)
    _audit(request).record_for(
        current_user,
        AuditAction.ADMIN_RESET_USER_PASSWORD,
        severity=Severity.CRITICAL,
        entity_type="users",
        entity_id=str(user_id),
        ip_address=client_ip(request),
        metadata={"targetEmail": target.email, "sessionsRevoked": revoked},
    )
    return MessageResponse(message="Password reset. The user must change it at next login.")


@router.patch("/users/{user_id}/unlock", response_model=MessageResponse)
def unlock_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Reset the failed-login counter."""
    store = _store(request)
    target = _load_user(store, user_id)
    store.update_user(user_id, failed_login_attempts=0)
    _audit(request).record_for(
        current_user,
        AuditAction.ADMIN_UNLOCK_USER,
        severity=Severity.WARNING,
        entity_type="users",
        entity_id=str(user_id),
        ip_address=client_ip(request),
        metadata={"targetEmail": target.email, "previousAttempts": target.failed_login_attempts},
    )
    return MessageResponse(message="User unlocked.")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=SystemStatsResponse)
def system_stats(request: Request) -> SystemStatsResponse:
    """User, session and audit aggregates for the admin dashboard."""
    now = utc_now()
    stats = _store(request).system_stats(now, exclude_email=SYSTEM_ACTOR)
    return SystemStatsResponse(**stats, server_time=now.isoformat())
