"""Tests for settings loading."""

import tempfile
from pathlib import Path

import pytest
import yaml

from msgguard.config import DEFAULT_RATE_LIMITS, RateLimitPolicy, load_settings
from msgguard.errors import ValidationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ["MSGGUARD_CONFIG", "MSGGUARD_DB_PATH", "MSGGUARD_ENV", "MSGGUARD_LOG_LEVEL", "MSGGUARD_DEPENDENCY_TIMEOUT"]:
        monkeypatch.delenv(name, raising=False)


def _write_yaml(tmpdir, data):
    path = Path(tmpdir) / "settings.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def test_defaults():
    settings = load_settings()
    assert settings.environment == "production"
    assert settings.rate_limits == DEFAULT_RATE_LIMITS
    assert settings.rate_limits["message_send"] == RateLimitPolicy(30, 60)


def test_yaml_values_and_rate_limit_override():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(
            tmpdir,
            {
                "db_path": str(Path(tmpdir) / "x.db"),
                "environment": "development",
                "log_level": "debug",
                "rate_limits": {"message_send": {"max_requests": 5, "window_seconds": 10}},
            },
        )
        settings = load_settings(path)

    assert settings.db_path.name == "x.db"
    assert settings.environment == "development"
    assert settings.log_level == "DEBUG"
    assert settings.rate_limits["message_send"] == RateLimitPolicy(5, 10)
    assert settings.rate_limits["thread_create"] == DEFAULT_RATE_LIMITS["thread_create"]


def test_environment_overrides_yaml(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(tmpdir, {"environment": "development"})
        monkeypatch.setenv("MSGGUARD_CONFIG", str(path))
        monkeypatch.setenv("MSGGUARD_ENV", "production")
        monkeypatch.setenv("MSGGUARD_DB_PATH", "/tmp/elsewhere.db")
        monkeypatch.setenv("MSGGUARD_DEPENDENCY_TIMEOUT", "1.5")
        settings = load_settings()

    assert settings.environment == "production"
    assert settings.db_path == Path("/tmp/elsewhere.db")
    assert settings.dependency_timeout == 1.5


@pytest.mark.parametrize(
    "rate_limits",
    [
        {"unknown_action": {"max_requests": 1, "window_seconds": 1}},
        {"message_send": {"max_requests": 0, "window_seconds": 60}},
        {"message_send": {"max_requests": 5}},
        ["message_send"],
    ],
)
def test_invalid_rate_limits(rate_limits):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_yaml(tmpdir, {"rate_limits": rate_limits})
        with pytest.raises(ValidationError):
            load_settings(path)
