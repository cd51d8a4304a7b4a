"""Bootstrap logic for running the vocabulary tutor bot."""

from __future__ import annotations

import asyncio
import logging

from src.app.settings import AppSettings
from src.bot import VocabularyTutorAgent, build_application
from src.db import get_session_factory, run_migrations_if_needed
from src.services import ContentGenerator, RequestGovernor, build_openai_client


LOGGER = logging.getLogger(__name__)


def _configure_logging(log_level: str) -> None:
    """Set up project-wide logging configuration."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        level=log_level,
    )
    # httpx logs every OpenAI request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _ensure_event_loop() -> None:
    """Guarantee that an asyncio event loop exists for the current thread."""
    try:
        asyncio.get_event_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())


def build_content_generator(settings: AppSettings) -> ContentGenerator:
    """Wire the OpenAI client to a single governor shared by every content request."""
    governor = RequestGovernor(
        cooldown_seconds=settings.governor_cooldown_seconds,
        max_retries=settings.governor_max_retries,
        initial_delay=settings.governor_initial_delay,
    )
    return ContentGenerator(
        build_openai_client(settings.openai_api_key),
        settings.openai_model,
        governor,
        source_language=settings.source_language,
        target_language=settings.target_language,
    )


def run_bot(settings: AppSettings) -> None:
    """Start the Telegram bot using the provided settings."""
    _configure_logging(settings.log_level)

    try:
        run_migrations_if_needed()
    except Exception:
        LOGGER.exception("Database migrations failed. Aborting startup.")
        raise

    agent = VocabularyTutorAgent(
        build_content_generator(settings),
        session_factory=get_session_factory(),
        daily_review_limit=settings.daily_review_limit,
    )
    application = build_application(settings.telegram_bot_token, agent)

    _ensure_event_loop()

    LOGGER.info("Starting %s in %s mode.", settings.app_name, settings.app_env)
    application.run_polling()
