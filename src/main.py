"""Console entry point: ``wordmaster`` or ``python -m src.main``."""

from src.app import AppSettings, run_bot
from src.bot.agent import VocabularyTutorAgent

__all__ = ["main", "VocabularyTutorAgent"]


def main() -> None:
    """Load settings from the environment and poll Telegram until stopped."""
    run_bot(AppSettings.from_env())


if __name__ == "__main__":
    main()
