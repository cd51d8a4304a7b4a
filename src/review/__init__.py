"""Spaced-repetition review scheduling."""

from .scheduler import (
    InvalidInputError,
    LearningRecord,
    StudyItem,
    apply_outcome,
    default_record,
    next_review_date,
    select_due,
)

__all__ = [
    "InvalidInputError",
    "LearningRecord",
    "StudyItem",
    "apply_outcome",
    "default_record",
    "next_review_date",
    "select_due",
]
