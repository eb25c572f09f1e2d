from unittest.mock import patch

import pytest

from taskqueue.config.settings import Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "Task Queue"
    assert settings.environment == "development"
    assert settings.worker_enabled is False
    assert settings.job_concurrency == 5
    assert settings.job_max_attempts == 3
    assert settings.job_backoff_base_ms == 1000
    assert settings.job_max_backoff_s == 300
    assert settings.job_visibility_timeout_s > settings.job_timeout_s


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError, match="JOB_CONCURRENCY must be at least 1"):
        Settings(job_concurrency=0)


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError, match="JOB_MAX_ATTEMPTS must be at least 1"):
        Settings(job_max_attempts=0)


def test_visibility_timeout_must_exceed_job_timeout():
    """A recovered job must not still be running in its executor."""
    with pytest.raises(ValueError, match="must be greater than JOB_TIMEOUT_S"):
        Settings(job_timeout_s=60, job_visibility_timeout_s=60)


def test_settings_from_environment():
    """Test environment variables override defaults."""
    with patch.dict(
        "os.environ",
        {"JOB_CONCURRENCY": "12", "JOB_RATE_LIMIT_PER_S": "2.5", "WORKER_ENABLED": "true"},
    ):
        settings = Settings()

    assert settings.job_concurrency == 12
    assert settings.job_rate_limit_per_s == 2.5
    assert settings.worker_enabled is True


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Task Queue"
