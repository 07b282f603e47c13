"""
auth/sessions.py -- Server-side session registry.

One row per successful login, keyed by the SHA-256 of the issued token. The
raw token goes back to the client once and is never stored.

Revocation model:
  Logout deletes the row whose token_hash matches the presented token. By
  default (require_live_session=False) authenticate() only checks the token
  signature, expiry and that the user is still active -- a logged-out token
  keeps working until its own exp. With require_live_session=True the row
  must also exist and be unexpired, which turns logout into a hard revoke.
  See DESIGN.md for why the default stays permissive.

Expired rows are inert: authenticate() ignores them and purge_expired() is
an admin-triggered cleanup, not a background reaper.

Layer rule: no imports from api/, core/, or standards/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from auth.models import Session, User
from auth.store import AuthStore
from auth.tokens import TokenCodec, hash_token

logger = logging.getLogger("lablims.auth")


class SessionRegistry:
    def __init__(
        self,
        store: AuthStore,
        codec: TokenCodec,
        require_live_session: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._codec = codec
        self.require_live_session = require_live_session
        self._clock = clock or codec.clock

    def _now(self) -> datetime:
        return self._clock()

    def create(self, user_id: int, ip_address: str | None, user_agent: str | None) -> tuple[str, str]:
        """Issue a token for user_id and persist its session row.

        Returns (session_id, raw_token). Raises LookupError if the user does
        not exist; callers only reach this after a successful credential check.
        """
        user = self._store.get_user_by_id(user_id)
        if user is None:
            raise LookupError(f"user {user_id} does not exist")

        now = self._now()
        token = self._codec.issue(user.id, user.email, user.role)
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user.id,
            token_hash=hash_token(token),
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=(now + self._codec.ttl).isoformat(),
            created_at=now.isoformat(),
        )
        self._store.insert_session(session)
        logger.info("Session %s created for user %s", session.id, user.id)
        return session.id, token

    def revoke_by_token_hash(self, token_hash: str) -> bool:
        """Delete the matching session. Idempotent; returns True if a row went away."""
        return self._store.delete_session_by_token_hash(token_hash) > 0

    def revoke_token(self, token: str) -> bool:
        return self.revoke_by_token_hash(hash_token(token))

    def revoke_by_user(self, user_id: int) -> int:
        """Delete every session owned by user_id. Returns the number removed."""
        removed = self._store.delete_sessions_for_user(user_id)
        if removed:
            logger.info("Revoked %d session(s) for user %s", removed, user_id)
        return removed

    def revoke_session(self, session_id: str) -> Session | None:
        """Delete one session by id. Returns the removed row, or None if absent."""
        session = self._store.get_session(session_id)
        if session is None:
            return None
        self._store.delete_session(session_id)
        return session

    def authenticate(self, token: str) -> User | None:
        """Resolve a bearer token to an active user, or None.

        A correctly signed, unexpired token for an inactive or missing user
        fails here: the user row is always re-read.
        """
        claims = self._codec.verify(token)
        if claims is None:
            return None
        if self.require_live_session and not self.is_live(token):
            return None
        return self._store.get_user_by_id_if_active(claims.user_id)

    def is_live(self, token: str) -> bool:
        """True if an unexpired session row exists for this token."""
        session = self._store.get_session_by_token_hash(hash_token(token))
        if session is None:
            return False
        return datetime.fromisoformat(session.expires_at) > self._now()

    def list_active(self) -> list[tuple[Session, User]]:
        return self._store.list_active_sessions(self._now().isoformat())

    def purge_expired(self) -> int:
        return self._store.delete_expired_sessions(self._now().isoformat())
