"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as standards/store.py).
AuthStore is the repository; _row_to_user / _row_to_session / _row_to_audit
are the mappers. Services and routes never touch SQL directly.

This is the narrow record-access contract the auth core consumes: fetch a
user by email or id, insert and update users, insert and delete sessions,
append audit entries. Every method is a single statement except where noted.

Security:
  All queries use bound parameters. No f-strings in SQL.
  audit_logs is append-only: this class has no update or delete method for it.

DB location: Settings.database_url (SQLite file next to the project by default).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import AuditLogEntry, Role, Session, Severity, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_role_values = ", ".join(f"'{r.value}'" for r in Role)

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), nullable=False),
    Column("full_name", String(255), nullable=False, server_default=""),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("must_change_password", Integer, nullable=False, server_default="1"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("created_by", Integer, ForeignKey("users.id")),
    CheckConstraint(f"role IN ({_role_values})", name="ck_users_role"),
)

_sessions = Table(
    "sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("timestamp", String(32), nullable=False, index=True),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("user_email", String(255), nullable=False),
    Column("user_role", String(30)),
    Column("action", String(64), nullable=False, index=True),
    Column("entity_type", String(64)),
    Column("entity_id", String(64)),
    Column("state_before", Text),  # JSON, opaque
    Column("state_after", Text),  # JSON, opaque
    Column("ip_address", String(64)),
    Column("severity", String(16), nullable=False, server_default="INFO"),
    Column("metadata", Text),  # JSON, opaque
)

# Columns accepted by update_user(). Anything else is a programming error.
_USER_MUTABLE_FIELDS = {
    "password_hash",
    "role",
    "full_name",
    "active",
    "must_change_password",
    "failed_login_attempts",
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind login writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite tweaks every store in this project uses."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, Session and audit entities.

    Usage:
        store = AuthStore("sqlite:///lablims.db")
        uid = store.create_user(User(email="a@lab.com", role=Role.ADMIN, password_hash=hash_password("x")))
        user = store.get_user_by_email("a@lab.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists (first-run detection)."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).limit(1)).fetchone()
        return row is not None

    def create_user(self, user: User) -> int:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError on a duplicate email; the unique
        index is the authority, not a prior SELECT.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    role=Role(user.role).value,
                    full_name=user.full_name,
                    active=1 if user.active else 0,
                    must_change_password=1 if user.must_change_password else 0,
                    failed_login_attempts=user.failed_login_attempts,
                    created_at=user.created_at or _now_iso(),
                    created_by=user.created_by,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id_if_active(self, user_id: int) -> User | None:
        """Like get_user_by_id(), but inactive accounts read as missing."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & (_users.c.active == 1))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first, inactive included."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_users_with_session_counts(self, now_iso: str) -> list[tuple[User, int, str | None]]:
        """Return (user, live session count, creator's full_name) for the admin user table."""
        live = (
            select(_sessions.c.user_id, func.count().label("live_sessions"))
            .where(_sessions.c.expires_at > now_iso)
            .group_by(_sessions.c.user_id)
            .subquery()
        )
        creator = _users.alias("creator")
        query = (
            select(
                _users,
                func.coalesce(live.c.live_sessions, 0).label("live_sessions"),
                creator.c.full_name.label("created_by_name"),
            )
            .select_from(
                _users.outerjoin(live, live.c.user_id == _users.c.id).outerjoin(
                    creator, creator.c.id == _users.c.created_by
                )
            )
            .order_by(_users.c.created_at.desc(), _users.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [(_row_to_user(r), int(r.live_sessions), r.created_by_name) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: see _USER_MUTABLE_FIELDS. Booleans are converted to
        0/1 and Role members to their stored string.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        values = dict(fields)
        for flag in ("active", "must_change_password"):
            if flag in values:
                values[flag] = 1 if values[flag] else 0
        if "role" in values:
            values["role"] = Role(values["role"]).value
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def increment_failed_logins(self, user_id: int) -> None:
        """Add one to the failed-login counter in a single atomic statement."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_attempts=_users.c.failed_login_attempts + 1)
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: Session) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    expires_at=session.expires_at,
                    created_at=session.created_at or _now_iso(),
                )
            )
            conn.commit()

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_session_by_token_hash(self, token_hash: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, session_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount

    def delete_session_by_token_hash(self, token_hash: str) -> int:
        """Delete the session with this exact token hash. Zero rows is not an error."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount

    def delete_sessions_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def delete_expired_sessions(self, now_iso: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < now_iso))
            conn.commit()
        return result.rowcount

    def count_sessions_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.user_id == user_id)
            ).scalar()
        return result or 0

    def list_active_sessions(self, now_iso: str) -> list[tuple[Session, User]]:
        """Return unexpired sessions joined with their owners, newest first."""
        query = (
            select(_sessions, _users)
            .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
            .where(_sessions.c.expires_at > now_iso)
            .order_by(_sessions.c.created_at.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        pairs = []
        for row in rows:
            m = row._mapping
            session = Session(
                id=m[_sessions.c.id],
                user_id=m[_sessions.c.user_id],
                token_hash=m[_sessions.c.token_hash],
                ip_address=m[_sessions.c.ip_address],
                user_agent=m[_sessions.c.user_agent],
                expires_at=m[_sessions.c.expires_at],
                created_at=m[_sessions.c.created_at],
            )
            owner = User(
                id=m[_users.c.id],
                email=m[_users.c.email],
                role=Role(m[_users.c.role]),
                full_name=m[_users.c.full_name],
                active=bool(m[_users.c.active]),
            )
            pairs.append((session, owner))
        return pairs

    # ------------------------------------------------------------------
    # Audit log (append-only)
    # ------------------------------------------------------------------

    def insert_audit_entry(self, **values) -> int:
        """Append one audit row and return its id. timestamp defaults to now."""
        values.setdefault("timestamp", _now_iso())
        with self.engine.connect() as conn:
            result = conn.execute(_audit_logs.insert().values(**values))
            conn.commit()
            return result.inserted_primary_key[0]

    def query_audit_entries(
        self,
        action: str | None = None,
        severity: str | None = None,
        user_id: int | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[AuditLogEntry], int]:
        """Return one page of audit entries (newest first) and the filtered total.

        start_date / end_date are YYYY-MM-DD and compare against the date part
        of the stored ISO timestamp, both ends inclusive.
        """
        conditions = _audit_conditions(action, severity, user_id, start_date, end_date, search)
        count_query = select(func.count()).select_from(_audit_logs)
        data_query = _audit_select()
        for cond in conditions:
            count_query = count_query.where(cond)
            data_query = data_query.where(cond)
        data_query = (
            data_query.order_by(_audit_logs.c.timestamp.desc(), _audit_logs.c.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        with self.engine.connect() as conn:
            total = conn.execute(count_query).scalar() or 0
            rows = conn.execute(data_query).fetchall()
        return [_row_to_audit(r) for r in rows], total

    def list_audit_actions(self) -> list[str]:
        """Distinct action names present in the log, alphabetical."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(_audit_logs.c.action).distinct().order_by(_audit_logs.c.action)).fetchall()
        return [r.action for r in rows]

    def export_audit_entries(self, start_date: str | None = None, end_date: str | None = None) -> list[AuditLogEntry]:
        """All entries in the (inclusive) date window, newest first, unpaginated."""
        query = _audit_select()
        for cond in _audit_conditions(start_date=start_date, end_date=end_date):
            query = query.where(cond)
        query = query.order_by(_audit_logs.c.timestamp.desc(), _audit_logs.c.id.desc())
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in rows]

    # ------------------------------------------------------------------
    # Dashboard aggregates
    # ------------------------------------------------------------------

    def system_stats(self, now: datetime, exclude_email: str) -> dict:
        """Return user, session and audit aggregates for the admin dashboard.

        Day buckets use the date prefix of the stored UTC timestamps. The
        activity window covers the last 7 days plus today; top actions and
        top users cover the last 30 days. exclude_email keeps the system
        actor out of the top users list.

        Uses conditional aggregation (COUNT(CASE WHEN ... THEN 1 END)) so each
        block is one SELECT.
        """
        today = now.date().isoformat()
        week_start = (now.date() - timedelta(days=7)).isoformat()
        month_start = (now.date() - timedelta(days=30)).isoformat()
        day = func.substr(_audit_logs.c.timestamp, 1, 10)

        users_stmt = select(
            func.count().label("total"),
            func.count(case((_users.c.active == 1, 1))).label("active"),
            func.count(case((_users.c.active == 0, 1))).label("inactive"),
        ).select_from(_users)
        by_role_stmt = (
            select(_users.c.role, func.count().label("n"))
            .where(_users.c.active == 1)
            .group_by(_users.c.role)
            .order_by(_users.c.role)
        )
        sessions_stmt = (
            select(func.count()).select_from(_sessions).where(_sessions.c.expires_at > now.isoformat())
        )
        audit_stmt = select(
            func.count().label("total"),
            func.count(case((_audit_logs.c.severity == Severity.CRITICAL.value, 1))).label("critical"),
            func.count(case((_audit_logs.c.severity == Severity.WARNING.value, 1))).label("warning"),
            func.count(case((day == today, 1))).label("today"),
        ).select_from(_audit_logs)
        activity_stmt = (
            select(day.label("day"), func.count().label("n")).where(day >= week_start).group_by(day).order_by(day)
        )
        top_actions_stmt = (
            select(_audit_logs.c.action, func.count().label("n"))
            .where(day >= month_start)
            .group_by(_audit_logs.c.action)
            .order_by(func.count().desc(), _audit_logs.c.action)
            .limit(10)
        )
        top_users_stmt = (
            select(_audit_logs.c.user_email, func.count().label("n"))
            .where((day >= month_start) & (_audit_logs.c.user_email != exclude_email))
            .group_by(_audit_logs.c.user_email)
            .order_by(func.count().desc(), _audit_logs.c.user_email)
            .limit(5)
        )

        with self.engine.connect() as conn:
            users = conn.execute(users_stmt).one()
            by_role = conn.execute(by_role_stmt).fetchall()
            live_sessions = conn.execute(sessions_stmt).scalar() or 0
            audit = conn.execute(audit_stmt).one()
            activity = conn.execute(activity_stmt).fetchall()
            top_actions = conn.execute(top_actions_stmt).fetchall()
            top_users = conn.execute(top_users_stmt).fetchall()

        return {
            "users": {"total": users.total, "active": users.active, "inactive": users.inactive},
            "users_by_role": [{"role": r.role, "count": r.n} for r in by_role],
            "active_sessions": live_sessions,
            "audit": {
                "total": audit.total,
                "critical": audit.critical,
                "warning": audit.warning,
                "today": audit.today,
            },
            "activity_last_7_days": [{"date": r.day, "count": r.n} for r in activity],
            "top_actions": [{"action": r.action, "count": r.n} for r in top_actions],
            "top_users": [{"user_email": r.user_email, "actions": r.n} for r in top_users],
        }

    def close(self) -> None:
        self.engine.dispose()


def _audit_select():
    """SELECT audit_logs.* plus the acting user's full_name (outer join)."""
    return select(_audit_logs, _users.c.full_name.label("user_name")).select_from(
        _audit_logs.outerjoin(_users, _users.c.id == _audit_logs.c.user_id)
    )


def _audit_conditions(
    action: str | None = None,
    severity: str | None = None,
    user_id: int | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    search: str | None = None,
) -> list:
    day = func.substr(_audit_logs.c.timestamp, 1, 10)
    conditions = []
    if action:
        conditions.append(_audit_logs.c.action == action)
    if severity:
        conditions.append(_audit_logs.c.severity == severity)
    if user_id is not None:
        conditions.append(_audit_logs.c.user_id == user_id)
    if start_date:
        conditions.append(day >= start_date)
    if end_date:
        conditions.append(day <= end_date)
    if search:
        conditions.append(
            _audit_logs.c.user_email.contains(search, autoescape=True)
            | _audit_logs.c.action.contains(search, autoescape=True)
            | _audit_logs.c["metadata"].contains(search, autoescape=True)
        )
    return conditions


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        full_name=row.full_name,
        active=bool(row.active),
        must_change_password=bool(row.must_change_password),
        failed_login_attempts=row.failed_login_attempts,
        created_by=row.created_by,
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_audit(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        timestamp=row.timestamp,
        user_id=row.user_id,
        user_email=row.user_email,
        user_role=row.user_role,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        state_before=row.state_before,
        state_after=row.state_after,
        ip_address=row.ip_address,
        severity=row.severity,
        metadata=row._mapping["metadata"],
        user_name=row._mapping.get("user_name"),
    )
