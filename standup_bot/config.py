# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Configuration management for the standup bot service.

Handles environment variables and process-level settings. Runtime bot
behaviour (projects, time estimates, timezone) lives in the BotConfig
document in the record store, not here.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class StandupBotConfig:
    """Configuration for the standup bot service."""

    # Slack API credentials (required)
    slack_bot_token: str
    slack_signing_secret: str

    # Record store (optional, in-memory store when unset)
    database_url: Optional[str] = None

    # Flow state store (optional, in-process store when unset)
    redis_url: Optional[str] = None

    # Logging configuration (optional)
    log_level: str = "INFO"
    log_format: str = "json"

    # Retry configuration (optional)
    max_retries: int = 3
    retry_backoff_base: float = 2.0

    # Standup session lifetime (optional)
    session_max_age_minutes: int = 60
    sweep_interval_minutes: int = 30

    # HTTP server (optional)
    port: int = 3000

    @classmethod
    def from_env(cls) -> "StandupBotConfig":
        """Load configuration from environment variables."""
        return cls(
            slack_bot_token=os.environ["SLACK_BOT_TOKEN"],
            slack_signing_secret=os.environ["SLACK_SIGNING_SECRET"],
            database_url=os.environ.get("DATABASE_URL") or None,
            redis_url=os.environ.get("REDIS_URL") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "json"),
            max_retries=int(os.environ.get("MAX_RETRIES", "3")),
            retry_backoff_base=float(os.environ.get("RETRY_BACKOFF_BASE", "2.0")),
            session_max_age_minutes=int(os.environ.get("SESSION_MAX_AGE_MINUTES", "60")),
            sweep_interval_minutes=int(os.environ.get("SWEEP_INTERVAL_MINUTES", "30")),
            port=int(os.environ.get("PORT", "3000")),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.slack_bot_token.startswith("xoxb-"):
            raise ValueError("SLACK_BOT_TOKEN must start with 'xoxb-'")

        if not self.slack_signing_secret:
            raise ValueError("SLACK_SIGNING_SECRET must not be empty")

        if self.database_url and not self.database_url.startswith(("postgres://", "postgresql://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL connection URL")

        if self.redis_url and not self.redis_url.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with 'redis://' or 'rediss://'")

        if self.max_retries < 0 or self.max_retries > 10:
            raise ValueError("MAX_RETRIES must be between 0 and 10")

        if self.session_max_age_minutes < 1:
            raise ValueError("SESSION_MAX_AGE_MINUTES must be at least 1")

        if self.sweep_interval_minutes < 1:
            raise ValueError("SWEEP_INTERVAL_MINUTES must be at least 1")

        if self.port < 1 or self.port > 65535:
            raise ValueError("PORT must be between 1 and 65535")
