"""Settings and startup wiring: one governor shared by every OpenAI request."""

from .runtime import build_content_generator, run_bot
from .settings import AppSettings

__all__ = ["AppSettings", "build_content_generator", "run_bot"]
