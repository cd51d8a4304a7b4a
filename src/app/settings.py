"""Configuration helpers for the WordMaster runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass


DEFAULT_MODEL = "gpt-5-mini"
DEFAULT_DAILY_REVIEW_LIMIT = 20
MAX_DAILY_REVIEW_LIMIT = 200
DEFAULT_GOVERNOR_MAX_RETRIES = 3
DEFAULT_GOVERNOR_INITIAL_DELAY_SECONDS = 5.0
DEFAULT_GOVERNOR_COOLDOWN_SECONDS = 15 * 60


def _int_from_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc


def _float_from_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number.") from exc


@dataclass(frozen=True)
class AppSettings:
    """Strongly typed application settings loaded from environment variables."""

    app_name: str
    app_env: str
    log_level: str
    telegram_bot_token: str
    openai_api_key: str
    openai_model: str
    source_language: str
    target_language: str
    daily_review_limit: int
    governor_max_retries: int
    governor_initial_delay: float
    governor_cooldown_seconds: float

    @classmethod
    def from_env(cls) -> AppSettings:
        """Construct settings directly from environment variables."""
        telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
        openai_api_key = os.getenv("OPENAI_API_KEY")

        if not telegram_bot_token:
            raise RuntimeError(
                "TELEGRAM_BOT_TOKEN environment variable is required to start the Telegram bot."
            )

        if not openai_api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable is required to generate content.")

        daily_review_limit = _int_from_env("DAILY_REVIEW_LIMIT", DEFAULT_DAILY_REVIEW_LIMIT)
        if daily_review_limit < 1 or daily_review_limit > MAX_DAILY_REVIEW_LIMIT:
            raise RuntimeError(f"DAILY_REVIEW_LIMIT must be between 1 and {MAX_DAILY_REVIEW_LIMIT}.")

        governor_max_retries = _int_from_env("GOVERNOR_MAX_RETRIES", DEFAULT_GOVERNOR_MAX_RETRIES)
        if governor_max_retries < 0:
            raise RuntimeError("GOVERNOR_MAX_RETRIES must not be negative.")

        governor_initial_delay = _float_from_env(
            "GOVERNOR_INITIAL_DELAY_SECONDS", DEFAULT_GOVERNOR_INITIAL_DELAY_SECONDS
        )
        if governor_initial_delay <= 0:
            raise RuntimeError("GOVERNOR_INITIAL_DELAY_SECONDS must be positive.")

        governor_cooldown_seconds = _float_from_env(
            "GOVERNOR_COOLDOWN_SECONDS", DEFAULT_GOVERNOR_COOLDOWN_SECONDS
        )
        if governor_cooldown_seconds <= 0:
            raise RuntimeError("GOVERNOR_COOLDOWN_SECONDS must be positive.")

        return cls(
            app_name=os.getenv("APP_NAME", "WordMaster"),
            app_env=os.getenv("APP_ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            telegram_bot_token=telegram_bot_token,
            openai_api_key=openai_api_key,
            openai_model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
            source_language=os.getenv("SOURCE_LANGUAGE", "English"),
            target_language=os.getenv("TARGET_LANGUAGE", "Russian"),
            daily_review_limit=daily_review_limit,
            governor_max_retries=governor_max_retries,
            governor_initial_delay=governor_initial_delay,
            governor_cooldown_seconds=governor_cooldown_seconds,
        )
