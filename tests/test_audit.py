"""
tests/test_audit.py -- Unit tests for AuditSink.

Covers:
  - defaults: user_email "system", severity INFO
  - snapshots and metadata are stored as JSON text
  - a failing store is logged on lablims.audit and never raises
  - store read side: actor name join and the dashboard aggregates
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from auth.audit import SYSTEM_ACTOR, AuditSink
from auth.models import AuditAction, AuditEvent, Role, Session, Severity


def test_unattributed_event_defaults(audit: AuditSink, auth_store) -> None:
    assert audit.record(AuditEvent(action=AuditAction.ADMIN_CLEANUP_SESSIONS)) is True

    entries, total = auth_store.query_audit_entries()
    assert total == 1
    entry = entries[0]
    assert entry.user_email == SYSTEM_ACTOR
    assert entry.user_id is None
    assert entry.severity == "INFO"
    assert entry.action == "ADMIN_CLEANUP_SESSIONS"
    assert entry.state_before is None and entry.metadata is None


def test_snapshots_and_metadata_serialized(audit: AuditSink, auth_store, make_user) -> None:
    actor = make_user("prof@lab.test", Role.PROFESSOR)
    when = datetime(2026, 1, 5, tzinfo=timezone.utc)
    audit.record_for(
        actor,
        AuditAction.USER_UPDATED,
        severity=Severity.WARNING,
        entity_type="users",
        entity_id=42,
        state_before={"active": True},
        state_after={"active": False, "at": when},
        metadata={"papel": "TÉCNICO"},
    )

    entry = auth_store.query_audit_entries()[0][0]
    assert entry.user_id == actor.id
    assert entry.user_role == "PROFESSOR"
    assert entry.entity_id == "42"
    assert json.loads(entry.state_before) == {"active": True}
    assert json.loads(entry.state_after)["at"] == str(when)
    assert "TÉCNICO" in entry.metadata
    assert entry.severity == "WARNING"


def test_store_failure_is_swallowed_and_logged(caplog) -> None:
    store = MagicMock()
    store.insert_audit_entry.side_effect = RuntimeError("disk full")
    sink = AuditSink(store)

    with caplog.at_level(logging.ERROR, logger="lablims.audit"):
        ok = sink.record(AuditEvent(action=AuditAction.AUTH_LOGOUT))

    assert ok is False
    assert any("AUTH_LOGOUT" in r.getMessage() for r in caplog.records)


def test_unserializable_metadata_does_not_raise(audit: AuditSink) -> None:
    circular: dict = {}
    circular["self"] = circular
    assert audit.record(AuditEvent(action=AuditAction.AUTH_LOGOUT, metadata=circular)) is False


def test_query_filters(audit: AuditSink, auth_store) -> None:
    audit.record(AuditEvent(action=AuditAction.AUTH_LOGIN_FAILED, severity=Severity.WARNING, user_email="x@lab.test"))
    audit.record(AuditEvent(action=AuditAction.AUTH_LOGIN_SUCCESS, user_email="y@lab.test"))
    audit.record(AuditEvent(action=AuditAction.AUTH_LOGIN_SUCCESS, user_email="z@lab.test"))

    _, total = auth_store.query_audit_entries(action="AUTH_LOGIN_SUCCESS")
    assert total == 2
    _, total = auth_store.query_audit_entries(severity="WARNING")
    assert total == 1
    entries, total = auth_store.query_audit_entries(search="z@lab")
    assert total == 1 and entries[0].user_email == "z@lab.test"
    entries, total = auth_store.query_audit_entries(page=2, limit=2)
    assert total == 3 and len(entries) == 1
    assert auth_store.list_audit_actions() == ["AUTH_LOGIN_FAILED", "AUTH_LOGIN_SUCCESS"]


# ---------------------------------------------------------------------------
# Dashboard aggregates
# ---------------------------------------------------------------------------


def _entry_at(auth_store, when: datetime, action: str, email: str = "ana@lab.test", severity: str = "INFO") -> None:
    auth_store.insert_audit_entry(timestamp=when.isoformat(), action=action, user_email=email, severity=severity)


def test_system_stats_windows(auth_store, make_user, clock) -> None:
    now = clock()
    make_user("ana@lab.test", Role.ADMIN)
    make_user("bia@lab.test", Role.TECNICO)
    make_user("caio@lab.test", Role.TECNICO, active=False)

    _entry_at(auth_store, now, "AUTH_LOGIN_SUCCESS")
    _entry_at(auth_store, now, "AUTH_LOGIN_SUCCESS", email="bia@lab.test")
    _entry_at(auth_store, now - timedelta(days=3), "USER_DELETED", severity="CRITICAL")
    _entry_at(auth_store, now - timedelta(days=20), "AUTH_LOGIN_FAILED", severity="WARNING")
    _entry_at(auth_store, now - timedelta(days=45), "AUTH_LOGIN_FAILED", email="old@lab.test")
    _entry_at(auth_store, now, "SESSIONS_PURGED", email=SYSTEM_ACTOR)

    stats = auth_store.system_stats(now, exclude_email=SYSTEM_ACTOR)

    assert stats["users"] == {"total": 3, "active": 2, "inactive": 1}
    assert stats["users_by_role"] == [{"role": "ADMIN", "count": 1}, {"role": "TÉCNICO", "count": 1}]
    assert stats["audit"] == {"total": 6, "critical": 1, "warning": 1, "today": 3}

    day = now.date()
    assert stats["activity_last_7_days"] == [
        {"date": (day - timedelta(days=3)).isoformat(), "count": 1},
        {"date": day.isoformat(), "count": 3},
    ]
    # The 45-day-old failure is outside the 30-day window.
    assert stats["top_actions"][0] == {"action": "AUTH_LOGIN_SUCCESS", "count": 2}
    assert {"action": "AUTH_LOGIN_FAILED", "count": 1} in stats["top_actions"]
    assert stats["top_users"] == [
        {"user_email": "ana@lab.test", "actions": 3},
        {"user_email": "bia@lab.test", "actions": 1},
    ]


def test_system_stats_counts_only_live_sessions(auth_store, make_user, clock) -> None:
    now = clock()
    user = make_user("ana@lab.test", Role.ADMIN)
    for sid, offset in (("live", 1), ("stale", -1)):
        auth_store.insert_session(
            Session(
                id=sid,
                user_id=user.id,
                token_hash=sid * 8,
                expires_at=(now + timedelta(hours=offset)).isoformat(),
            )
        )

    stats = auth_store.system_stats(now, exclude_email=SYSTEM_ACTOR)
    assert stats["active_sessions"] == 1
    assert stats["audit"]["total"] == 0
    assert stats["top_users"] == []


def test_query_joins_actor_name(audit: AuditSink, auth_store, make_user) -> None:
    actor = make_user("named@lab.test", Role.PROFESSOR, full_name="Prof. Named")
    audit.record_for(actor, AuditAction.USER_CREATED)
    audit.record(AuditEvent(action=AuditAction.AUTH_LOGIN_FAILED, user_email="ghost@lab.test"))

    entries, _ = auth_store.query_audit_entries()
    names = {e.user_email: e.user_name for e in entries}
    assert names == {"named@lab.test": "Prof. Named", "ghost@lab.test": None}
