"""
tests/test_config.py -- Unit tests for Settings startup policy.

Covers the SECRET_KEY / DATABASE_URL rules (dev fallbacks vs production
refusal) and the derived cookie and store properties.
"""

from __future__ import annotations

import pytest

from core.config import Settings
from conftest import TEST_SECRET, memory_url


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DEBUG", "SECRET_KEY", "DATABASE_URL", "CROSS_SITE", "SECURE_COOKIES"):
        monkeypatch.delenv(name, raising=False)


def test_debug_generates_secret_and_memory_store() -> None:
    settings = Settings(_env_file=None, debug=True)
    assert len(settings.secret_key) >= 32
    assert "mode=memory" in settings.database_url
    assert settings.persistent_store is False


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValueError, match="SECRET_KEY"):
        Settings(_env_file=None, database_url="sqlite:///mauto.db")


def test_production_requires_database_url() -> None:
    with pytest.raises(ValueError, match="DATABASE_URL"):
        Settings(_env_file=None, secret_key=TEST_SECRET)


def test_short_secret_rejected_even_in_debug() -> None:
    with pytest.raises(ValueError, match="32 characters"):
        Settings(_env_file=None, debug=True, secret_key="short")


def test_production_with_durable_store() -> None:
    settings = Settings(_env_file=None, secret_key=TEST_SECRET, database_url="postgresql://db/mauto")
    assert settings.persistent_store is True
    assert settings.session_ttl_seconds == 86400


@pytest.mark.parametrize("url", ["sqlite://", "sqlite:///:memory:", memory_url("cfg")])
def test_in_memory_urls_are_not_persistent(url: str) -> None:
    assert Settings(_env_file=None, secret_key=TEST_SECRET, database_url=url).persistent_store is False


def test_settings_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///mauto.db")
    monkeypatch.setenv("SESSION_TTL_SECONDS", "3600")
    settings = Settings(_env_file=None)
    assert settings.database_url == "sqlite:///mauto.db"
    assert settings.session_ttl_seconds == 3600


class TestCookiePolicy:
    def test_same_site_default(self) -> None:
        settings = Settings(_env_file=None, debug=True)
        assert settings.cookie_samesite == "lax"
        assert settings.cookie_secure is False

    def test_cross_site_forces_secure_none(self) -> None:
        settings = Settings(_env_file=None, debug=True, cross_site=True)
        assert settings.cookie_samesite == "none"
        assert settings.cookie_secure is True


def test_google_enabled_needs_both_credentials() -> None:
    assert not Settings(_env_file=None, debug=True, google_client_id="id").google_enabled
    assert Settings(_env_file=None, debug=True, google_client_id="id", google_client_secret="s").google_enabled
