"""
auth/audit.py -- Best-effort audit trail writer.

AuditSink.record() must never fail the operation it observes. Every
persistence or serialization error is logged on the "lablims.audit" channel
and swallowed; the boolean return value tells the caller whether the entry
landed, and callers are free to ignore it.

Snapshots and metadata are stored as opaque JSON text built from whatever the
caller hands in. default=str keeps datetimes and enums from breaking the dump.

Layer rule: no imports from api/, core/, or standards/.
"""

from __future__ import annotations

import json
import logging

from auth.models import AuditEvent, Severity, User
from auth.store import AuthStore

logger = logging.getLogger("lablims.audit")

SYSTEM_ACTOR = "system"


def _dump(value: object | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str, ensure_ascii=False)


class AuditSink:
    def __init__(self, store: AuthStore) -> None:
        self._store = store

    def record(self, event: AuditEvent) -> bool:
        """Append one audit entry. Returns False (and logs) on any failure."""
        try:
            self._store.insert_audit_entry(
                user_id=event.user_id,
                user_email=event.user_email or SYSTEM_ACTOR,
                user_role=_enum_value(event.user_role),
                action=_enum_value(event.action),
                entity_type=event.entity_type,
                entity_id=str(event.entity_id) if event.entity_id is not None else None,
                state_before=_dump(event.state_before),
                state_after=_dump(event.state_after),
                ip_address=event.ip_address,
                severity=_enum_value(event.severity or Severity.INFO),
                metadata=_dump(event.metadata),
            )
        except Exception:
            logger.exception("Failed to write audit entry for action %s", event.action)
            return False
        return True

    def record_for(self, actor: User | None, action, severity: Severity = Severity.INFO, **fields) -> bool:
        """Shorthand for events attributed to an authenticated user."""
        event = AuditEvent(
            action=action,
            severity=severity,
            user_id=actor.id if actor else None,
            user_email=actor.email if actor else None,
            user_role=actor.role if actor else None,
            **fields,
        )
        return self.record(event)


def _enum_value(value):
    return getattr(value, "value", value)
