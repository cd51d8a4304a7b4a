from __future__ import annotations

import pytest

from src.app import build_content_generator
from src.app.settings import AppSettings


@pytest.fixture
def required_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    for name in (
        "DAILY_REVIEW_LIMIT",
        "GOVERNOR_MAX_RETRIES",
        "GOVERNOR_INITIAL_DELAY_SECONDS",
        "GOVERNOR_COOLDOWN_SECONDS",
        "SOURCE_LANGUAGE",
        "TARGET_LANGUAGE",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(required_env: pytest.MonkeyPatch) -> None:
    settings = AppSettings.from_env()

    assert settings.daily_review_limit == 20
    assert settings.governor_max_retries == 3
    assert settings.governor_initial_delay == 5.0
    assert settings.governor_cooldown_seconds == 900
    assert settings.source_language == "English"


def test_missing_token_is_reported(required_env: pytest.MonkeyPatch) -> None:
    required_env.delenv("TELEGRAM_BOT_TOKEN")

    with pytest.raises(RuntimeError, match="TELEGRAM_BOT_TOKEN"):
        AppSettings.from_env()


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("DAILY_REVIEW_LIMIT", "0"),
        ("DAILY_REVIEW_LIMIT", "many"),
        ("GOVERNOR_MAX_RETRIES", "-1"),
        ("GOVERNOR_INITIAL_DELAY_SECONDS", "0"),
        ("GOVERNOR_COOLDOWN_SECONDS", "soon"),
    ],
)
def test_invalid_values_are_rejected(required_env: pytest.MonkeyPatch, name: str, value: str) -> None:
    required_env.setenv(name, value)

    with pytest.raises(RuntimeError, match=name):
        AppSettings.from_env()


def test_content_generator_uses_configured_governor(required_env: pytest.MonkeyPatch) -> None:
    required_env.setenv("GOVERNOR_COOLDOWN_SECONDS", "60")
    required_env.setenv("GOVERNOR_MAX_RETRIES", "0")

    generator = build_content_generator(AppSettings.from_env())

    assert generator.governor.cooldown_seconds == 60
    assert generator.governor.is_cooling_down() is False
