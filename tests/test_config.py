"""Settings tests: required secret, validation and immutability."""

import pytest
from pydantic import ValidationError

from conftest import TEST_SECRET, make_settings
from ekonsulta.config import Settings


def test_defaults():
    s = make_settings()
    assert s.jwt_algorithm == "HS256"
    assert s.jwt_expire_days == 30
    assert s.port == 5000
    assert s.rate_limit_max == 100
    assert s.rate_limit_auth_max == 5
    assert s.max_request_bytes == 1_000_000
    assert s.request_timeout_seconds == 30.0
    assert s.api_keys == []
    assert not s.is_production


def test_secret_is_required(monkeypatch):
    monkeypatch.delenv("EKONSULTA_JWT_SECRET", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_short_secret_rejected():
    with pytest.raises(ValidationError):
        make_settings(jwt_secret="too-short")


def test_placeholder_secret_rejected():
    with pytest.raises(ValidationError):
        make_settings(jwt_secret="change-me-in-production")


def test_bcrypt_rounds_bounds():
    with pytest.raises(ValidationError):
        make_settings(bcrypt_rounds=3)
    with pytest.raises(ValidationError):
        make_settings(bcrypt_rounds=32)


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("EKONSULTA_JWT_SECRET", TEST_SECRET)
    monkeypatch.setenv("EKONSULTA_ENVIRONMENT", "production")
    monkeypatch.setenv("EKONSULTA_API_KEYS", '["k1", "k2"]')
    s = Settings(_env_file=None)
    assert s.is_production
    assert s.api_keys == ["k1", "k2"]


def test_frozen():
    s = make_settings()
    with pytest.raises(ValidationError):
        s.jwt_secret = "x" * 40
