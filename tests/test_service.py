"""
tests/test_service.py -- Unit tests for AuthService.

Covers:
  - login: success, then current_user; generic failure for unknown email,
    inactive account and wrong password; failure reasons only in the audit log
  - failed_login_attempts increments on a bad password and resets on success
  - logout always succeeds and only audits when a session existed
  - change_password: length rule checked before any store access, wrong
    current password, must_change_password cleared on success
  - ensure_seed_admin() only runs on an empty users table
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from auth.errors import CredentialError, InputValidationError, InvalidTokenError
from auth.models import Role
from auth.service import AuthService
from auth.tokens import hash_token, verify_password

PASSWORD = "correct-horse-9"


def _audit_reasons(auth_store) -> list[str]:
    entries, _ = auth_store.query_audit_entries(action="AUTH_LOGIN_FAILED")
    return [json.loads(e.metadata)["reason"] for e in entries]


class TestLogin:
    def test_login_then_current_user(self, service: AuthService, make_user) -> None:
        user = make_user("ana@lab.test", Role.PROFESSOR, password=PASSWORD)
        result = service.login("ana@lab.test", PASSWORD, client_ip="10.0.0.5", user_agent="pytest")

        assert result.user.id == user.id
        assert result.user.password_hash is None
        assert result.must_change_password is True

        current = service.current_user(result.token)
        assert current.id == user.id
        assert current.role is Role.PROFESSOR

    def test_login_creates_session_and_audits(self, service, make_user, auth_store) -> None:
        make_user("ana@lab.test", password=PASSWORD)
        result = service.login("ana@lab.test", PASSWORD, client_ip="10.0.0.5")

        session = auth_store.get_session_by_token_hash(hash_token(result.token))
        assert session is not None and session.id == result.session_id
        assert auth_store.list_audit_actions() == ["AUTH_LOGIN_SUCCESS"]

    @pytest.mark.parametrize("email,password", [("", PASSWORD), ("a@lab.test", ""), (None, None)])
    def test_missing_fields(self, service, email, password) -> None:
        with pytest.raises(InputValidationError):
            service.login(email, password)

    def test_failures_are_indistinguishable(self, service, make_user, auth_store) -> None:
        make_user("active@lab.test", password=PASSWORD)
        make_user("gone@lab.test", password=PASSWORD, active=False)

        messages = []
        for email, password in [
            ("nobody@lab.test", PASSWORD),
            ("gone@lab.test", PASSWORD),
            ("active@lab.test", "wrong-password"),
        ]:
            with pytest.raises(CredentialError) as exc_info:
                service.login(email, password)
            messages.append((exc_info.value.status_code, exc_info.value.message))

        assert len(set(messages)) == 1
        assert messages[0] == (401, "Invalid email or password.")
        assert sorted(_audit_reasons(auth_store)) == ["INVALID_PASSWORD", "USER_INACTIVE", "USER_NOT_FOUND"]

    def test_email_match_is_case_sensitive(self, service, make_user) -> None:
        make_user("ana@lab.test", password=PASSWORD)
        with pytest.raises(CredentialError):
            service.login("ANA@lab.test", PASSWORD)

    def test_failed_attempts_count_and_reset(self, service, make_user, auth_store) -> None:
        user = make_user("ana@lab.test", password=PASSWORD)
        for _ in range(3):
            with pytest.raises(CredentialError):
                service.login("ana@lab.test", "wrong-password")
        assert auth_store.get_user_by_id(user.id).failed_login_attempts == 3

        service.login("ana@lab.test", PASSWORD)
        assert auth_store.get_user_by_id(user.id).failed_login_attempts == 0

    def test_deactivated_user_token_stops_working(self, service, make_user, auth_store) -> None:
        user = make_user("ana@lab.test", password=PASSWORD)
        token = service.login("ana@lab.test", PASSWORD).token
        auth_store.update_user(user.id, active=False)
        with pytest.raises(InvalidTokenError):
            service.current_user(token)


class TestLogout:
    def test_logout_removes_session_and_audits(self, service, make_user, auth_store) -> None:
        make_user("ana@lab.test", password=PASSWORD)
        token = service.login("ana@lab.test", PASSWORD).token

        service.logout(token, client_ip="10.0.0.5")

        assert auth_store.get_session_by_token_hash(hash_token(token)) is None
        assert "AUTH_LOGOUT" in auth_store.list_audit_actions()

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_logout_never_fails(self, service, auth_store, token) -> None:
        service.logout(token)
        assert "AUTH_LOGOUT" not in auth_store.list_audit_actions()

    def test_token_still_authenticates_after_logout(self, service, make_user) -> None:
        make_user("ana@lab.test", password=PASSWORD)
        token = service.login("ana@lab.test", PASSWORD).token
        service.logout(token)
        assert service.current_user(token).email == "ana@lab.test"


class TestChangePassword:
    def test_success_clears_flag_and_audits(self, service, make_user, auth_store) -> None:
        user = make_user("ana@lab.test", password=PASSWORD)
        token = service.login("ana@lab.test", PASSWORD).token

        service.change_password(token, PASSWORD, "new-password-1", client_ip="10.0.0.5")

        stored = auth_store.get_user_by_id(user.id)
        assert stored.must_change_password is False
        assert verify_password("new-password-1", stored.password_hash)
        entries, total = auth_store.query_audit_entries(action="PASSWORD_CHANGED")
        assert total == 1
        assert entries[0].severity == "WARNING"
        assert entries[0].entity_id == str(user.id)

    def test_wrong_current_password(self, service, make_user, auth_store) -> None:
        user = make_user("ana@lab.test", password=PASSWORD)
        token = service.login("ana@lab.test", PASSWORD).token
        with pytest.raises(CredentialError):
            service.change_password(token, "not-my-password", "new-password-1")
        assert verify_password(PASSWORD, auth_store.get_user_by_id(user.id).password_hash)

    @pytest.mark.parametrize("new_password", ["", "short", "1234567"])
    def test_short_password_rejected(self, service, make_user, new_password) -> None:
        make_user("ana@lab.test", password=PASSWORD)
        token = service.login("ana@lab.test", PASSWORD).token
        with pytest.raises(InputValidationError):
            service.change_password(token, PASSWORD, new_password)

    def test_exactly_eight_characters_accepted(self, service, make_user) -> None:
        make_user("ana@lab.test", password=PASSWORD)
        token = service.login("ana@lab.test", PASSWORD).token
        service.change_password(token, PASSWORD, "8chars!!")

    def test_validation_happens_before_store_access(self) -> None:
        store, registry, audit, guard = MagicMock(), MagicMock(), MagicMock(), MagicMock()
        svc = AuthService(store, registry, audit, guard)

        with pytest.raises(InputValidationError):
            svc.change_password("any-token", PASSWORD, "short")

        assert store.mock_calls == []
        assert guard.mock_calls == []
        assert audit.mock_calls == []


class TestSeedAdmin:
    def test_seeds_once(self, service: AuthService, auth_store) -> None:
        uid = service.ensure_seed_admin("admin@lab.com", "admin123")
        assert uid is not None
        admin = auth_store.get_user_by_id(uid)
        assert admin.role is Role.ADMIN
        assert admin.must_change_password is True
        assert verify_password("admin123", admin.password_hash)

        assert service.ensure_seed_admin("other@lab.com", "whatever1") is None

    def test_no_seed_when_users_exist(self, service, make_user) -> None:
        make_user("someone@lab.test")
        assert service.ensure_seed_admin("admin@lab.com", "admin123") is None
