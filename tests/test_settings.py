from datetime import timezone

import pytest

from todo_app.settings import get_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in [
        "PERSISTENCE_BACKEND",
        "PUBLIC_BASE_URL",
        "CORS_ALLOW_ORIGINS",
        "APP_TIMEZONE",
        "BOOTSTRAP_ADMIN_EMAILS",
        "SESSION_TTL_SECONDS",
        "LOG_LEVEL",
        "LOG_JSON",
    ]:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = get_settings()
    assert settings.persistence_backend == "memory"
    assert settings.cors_allow_origins == ["*"]
    assert settings.timezone == "UTC"
    assert settings.tzinfo is timezone.utc
    assert settings.bootstrap_admin_emails == frozenset()
    assert settings.session_ttl_seconds == 3600
    assert settings.log_level == "INFO"
    assert settings.log_json is False


def test_parses_environment(monkeypatch):
    monkeypatch.setenv("PERSISTENCE_BACKEND", " SQLite ")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://api.example.com/")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example.com, https://b.example.com,")
    monkeypatch.setenv("BOOTSTRAP_ADMIN_EMAILS", "Boss@Example.com, ")
    monkeypatch.setenv("SESSION_TTL_SECONDS", "60")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_JSON", "yes")

    settings = get_settings()
    assert settings.persistence_backend == "sqlite"
    assert settings.public_base_url == "https://api.example.com"
    assert settings.cors_allow_origins == ["https://a.example.com", "https://b.example.com"]
    assert settings.bootstrap_admin_emails == frozenset({"boss@example.com"})
    assert settings.session_ttl_seconds == 60
    assert settings.log_level == "DEBUG"
    assert settings.log_json is True


@pytest.mark.parametrize(
    "name, value, attr, expected",
    [
        ("PERSISTENCE_BACKEND", "postgres", "persistence_backend", "memory"),
        ("APP_TIMEZONE", "Mars/Olympus", "timezone", "UTC"),
        ("SESSION_TTL_SECONDS", "-5", "session_ttl_seconds", 3600),
        ("SESSION_TTL_SECONDS", "soon", "session_ttl_seconds", 3600),
        ("LOG_LEVEL", "LOUD", "log_level", "INFO"),
    ],
)
def test_invalid_values_fall_back(monkeypatch, name, value, attr, expected):
    monkeypatch.setenv(name, value)
    assert getattr(get_settings(), attr) == expected
