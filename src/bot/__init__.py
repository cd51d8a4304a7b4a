"""Telegram surface for review sessions and on-demand word explanations."""

from .agent import VocabularyTutorAgent
from .telegram import build_application

__all__ = ["VocabularyTutorAgent", "build_application"]
