"""External service integrations for WordMaster."""

from .content import ContentGenerator, TermDescription
from .governor import FailureKind, GovernorFailure, GovernorResult, RequestGovernor
from .openai_client import build_openai_client

__all__ = [
    "ContentGenerator",
    "FailureKind",
    "GovernorFailure",
    "GovernorResult",
    "RequestGovernor",
    "TermDescription",
    "build_openai_client",
]
