"""
tests/test_config.py -- Unit tests for core/config.py Settings.

Settings is instantiated directly (not via the cached get_settings()) so each
test sees its own environment.
"""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from core.config import INSECURE_DEFAULT_SECRET, Settings


def test_defaults(monkeypatch) -> None:
    monkeypatch.delenv("REQUIRE_LIVE_SESSION", raising=False)
    monkeypatch.delenv("TOKEN_TTL_SECONDS", raising=False)
    s = Settings(_env_file=None)
    assert s.token_ttl_seconds == 8 * 3600
    assert s.require_live_session is False
    assert s.seed_admin_email == "admin@lab.com"
    assert s.login_rate_limit == "10/minute"


def test_missing_secret_falls_back_with_warning(monkeypatch, caplog) -> None:
    monkeypatch.setenv("JWT_SECRET", "")
    with caplog.at_level(logging.WARNING, logger="lablims.config"):
        s = Settings(_env_file=None)
    assert s.jwt_secret == INSECURE_DEFAULT_SECRET
    assert any("JWT_SECRET" in r.getMessage() for r in caplog.records)


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("JWT_SECRET", "from-env")
    monkeypatch.setenv("REQUIRE_LIVE_SESSION", "true")
    monkeypatch.setenv("TOKEN_TTL_SECONDS", "60")
    s = Settings(_env_file=None)
    assert s.jwt_secret == "from-env"
    assert s.require_live_session is True
    assert s.token_ttl_seconds == 60


def test_non_positive_ttl_rejected(monkeypatch) -> None:
    monkeypatch.setenv("TOKEN_TTL_SECONDS", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
