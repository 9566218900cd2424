from types import SimpleNamespace

import pytest

from api.config.settings import AuthMode, Settings, get_app_settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "Job Queue Service"
    assert settings.version == "1.0.0"
    assert settings.environment == "development"
    assert settings.debug is True
    assert settings.auth_mode == AuthMode.NONE


def test_queue_defaults():
    """Test job queue defaults."""
    settings = Settings()

    assert settings.job_concurrency == 5
    assert settings.job_max_attempts == 3
    assert settings.job_default_priority == 5
    assert settings.job_backoff_base_ms == 1000
    assert settings.job_reject_unknown_types is True
    assert settings.metrics_retention_ms == 24 * 60 * 60 * 1000
    assert settings.progress_milestone_step == 25


def test_environment_overrides(monkeypatch):
    """Test that settings are read from the environment."""
    monkeypatch.setenv("JOB_CONCURRENCY", "8")
    monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "http://hooks.test/jobs")

    settings = Settings()

    assert settings.job_concurrency == 8
    assert settings.notification_webhook_url == "http://hooks.test/jobs"


@pytest.mark.parametrize(
    "overrides",
    [
        {"job_concurrency": 0},
        {"job_default_priority": 11},
        {"job_max_attempts": 0},
        {"job_backoff_jitter": 1.5},
        {"progress_milestone_step": 0},
    ],
)
def test_invalid_queue_settings(overrides):
    """Test that out-of-range queue settings are rejected."""
    with pytest.raises(ValueError):
        Settings(**overrides)


def test_production_validation_blocks_none_auth():
    """Test that production environment blocks AUTH_MODE=none."""
    with pytest.raises(ValueError, match="AUTH_MODE=none is not allowed in production"):
        Settings(environment="production", auth_mode=AuthMode.NONE)


def test_production_allows_oidc_auth():
    """Test that production environment allows AUTH_MODE=oidc."""
    settings = Settings(environment="production", auth_mode=AuthMode.OIDC)
    assert settings.auth_mode == AuthMode.OIDC


def test_is_sqlite():
    assert Settings(database_url="sqlite+aiosqlite:///./jobs.db").is_sqlite is True
    assert Settings(database_url="postgresql+asyncpg://u:p@db/jobs").is_sqlite is False


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Job Queue Service"


def test_app_settings_dependency_prefers_app_state():
    """Requests see the settings the app was created with."""
    custom = Settings(environment="staging")
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(settings=custom)))
    assert get_app_settings(request) is custom

    bare = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))
    assert get_app_settings(bare) is get_settings()
