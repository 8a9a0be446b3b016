"""Runtime settings for the messaging engine.

Settings come from an optional YAML file (``MSGGUARD_CONFIG``) and are then
overridden by environment variables.  Rate-limit policies default to the
values below and may be overridden per action under ``rate_limits`` in the
YAML file::

    db_path: /var/lib/msgguard/messaging.db
    environment: production
    rate_limits:
      message_send: {max_requests: 30, window_seconds: 60}
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from msgguard.errors import ValidationError

DEFAULT_DB_PATH = Path.home() / ".msgguard" / "messaging.db"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Fixed-window budget for one rate-limited action."""

    max_requests: int
    window_seconds: int


DEFAULT_RATE_LIMITS: dict[str, RateLimitPolicy] = {
    "thread_create": RateLimitPolicy(max_requests=10, window_seconds=60),
    "message_send": RateLimitPolicy(max_requests=30, window_seconds=60),
    "coach_contact_request": RateLimitPolicy(max_requests=6, window_seconds=300),
    "coach_contact_respond": RateLimitPolicy(max_requests=20, window_seconds=60),
}


@dataclass
class Settings:
    """Process-wide configuration."""

    db_path: Path = DEFAULT_DB_PATH
    environment: str = "production"  # production | development
    log_level: str = "INFO"
    dependency_timeout: float = 5.0  # seconds, applied to every storage call
    rate_limits: dict[str, RateLimitPolicy] = field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS)
    )


def _rate_limits_from_yaml(raw: object) -> dict[str, RateLimitPolicy]:
    limits = dict(DEFAULT_RATE_LIMITS)
    if not raw:
        return limits
    if not isinstance(raw, dict):
        raise ValidationError("rate_limits must be a mapping of action -> policy")
    for action, entry in raw.items():
        if action not in limits:
            raise ValidationError(f"Unknown rate-limited action '{action}'")
        try:
            policy = RateLimitPolicy(
                max_requests=int(entry["max_requests"]),
                window_seconds=int(entry["window_seconds"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid rate limit for '{action}': {exc}") from exc
        if policy.max_requests < 1 or policy.window_seconds < 1:
            raise ValidationError(f"Rate limit for '{action}' must be positive")
        limits[action] = policy
    return limits


def load_settings(path: Optional[str | Path] = None) -> Settings:
    """Build settings from the YAML file (if any) and the environment."""
    config_path = path or os.environ.get("MSGGUARD_CONFIG")
    data: dict = {}
    if config_path:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

    settings = Settings(
        db_path=Path(data.get("db_path", DEFAULT_DB_PATH)),
        environment=data.get("environment", "production"),
        log_level=str(data.get("log_level", "INFO")).upper(),
        dependency_timeout=float(data.get("dependency_timeout", 5.0)),
        rate_limits=_rate_limits_from_yaml(data.get("rate_limits")),
    )

    if os.environ.get("MSGGUARD_DB_PATH"):
        settings.db_path = Path(os.environ["MSGGUARD_DB_PATH"])
    if os.environ.get("MSGGUARD_ENV"):
        settings.environment = os.environ["MSGGUARD_ENV"]
    if os.environ.get("MSGGUARD_LOG_LEVEL"):
        settings.log_level = os.environ["MSGGUARD_LOG_LEVEL"].upper()
    if os.environ.get("MSGGUARD_DEPENDENCY_TIMEOUT"):
        settings.dependency_timeout = float(os.environ["MSGGUARD_DEPENDENCY_TIMEOUT"])

    return settings
