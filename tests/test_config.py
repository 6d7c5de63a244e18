"""
tests/test_config.py -- Unit tests for core/config.py (Settings).

Covers:
  - Defaults: 15 minute access tokens, 24 hour sessions, 5 attempts / 15 minutes
  - SECRET_KEY policy: generated in debug, required in production, >= 32 chars
  - Environment variables override defaults
  - policy_summary never exposes the secret key
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_defaults() -> None:
    s = Settings(debug=True)
    assert s.access_token_expire_seconds == 900
    assert s.session_expire_seconds == 86400
    assert s.max_login_attempts == 5
    assert s.lockout_duration_seconds == 900
    assert s.refresh_ip_policy == "log"
    assert s.admin_roles == ["admin"]


def test_debug_generates_secret_key() -> None:
    assert len(Settings(debug=True).secret_key) >= 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(debug=False, secret_key="short")


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_SECONDS", "60")
    monkeypatch.setenv("REFRESH_IP_POLICY", "reject")
    s = Settings(debug=True)
    assert s.access_token_expire_seconds == 60
    assert s.refresh_ip_policy == "reject"


def test_invalid_ip_policy_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(debug=True, refresh_ip_policy="block")


def test_policy_summary_hides_secret() -> None:
    s = Settings(debug=True, secret_key="k" * 40)
    summary = s.policy_summary()
    assert "secret_key" not in summary
    assert "k" * 40 not in summary.values()
