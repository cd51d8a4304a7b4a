"""Spaced-repetition scheduling for vocabulary reviews.

The scheduler is a set of pure functions over :class:`LearningRecord` values.
It never touches the database: callers load records, ask which items are due,
report an answer through :func:`apply_outcome` and persist the returned copy.

Stages 0-4 use a fixed interval table so new words come back quickly, while
stage 5 scales a two week base interval by the per-item ease factor.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from itertools import groupby
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Tuple


MIN_SRS_LEVEL = 0
MAX_SRS_LEVEL = 5
DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
MAX_EASE_FACTOR = 3.0
EASE_REWARD = 0.1
EASE_PENALTY = 0.2
FAST_RESPONSE_SECONDS = 5.0
MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 5
PROMOTION_STREAK = 2
MASTERY_LEVEL = 4
MASTERY_STREAK = 3
LONG_INTERVAL_BASE_DAYS = 14

# Days until the next review for the fixed early stages.
FIXED_INTERVALS: Dict[int, int] = {0: 0, 1: 1, 2: 3, 3: 7, 4: 14}


class InvalidInputError(ValueError):
    """Raised when the scheduler receives data that violates its preconditions."""


@dataclass(frozen=True, slots=True)
class LearningRecord:
    """Learning progress of a single vocabulary item."""

    item_id: Hashable
    srs_level: int = MIN_SRS_LEVEL
    ease_factor: float = DEFAULT_EASE_FACTOR
    consecutive_correct: int = 0
    total_reviews: int = 0
    average_response_time: float = 0.0
    last_reviewed_date: Optional[date] = None
    next_review_date: Optional[date] = None
    confidence_level: int = MIN_CONFIDENCE
    is_mastered: bool = False


@dataclass(slots=True)
class StudyItem:
    """Vocabulary item as seen by the scheduler."""

    item_id: Hashable
    term: str
    translation: str
    example: Optional[str] = None
    incorrect_count: int = 0
    is_user_added: bool = False


def default_record(item_id: Hashable) -> LearningRecord:
    """Return the record for an item that has never been reviewed."""
    return LearningRecord(item_id=item_id)


def is_mastered(srs_level: int, consecutive_correct: int) -> bool:
    return srs_level >= MASTERY_LEVEL and consecutive_correct >= MASTERY_STREAK


def review_interval_days(srs_level: int, ease_factor: float) -> int:
    """Return how many days to wait before the next review of a stage."""
    _check_level(srs_level)
    _check_ease(ease_factor)
    if srs_level in FIXED_INTERVALS:
        return FIXED_INTERVALS[srs_level]
    # Half-up rounding, so 38.5 days schedules 39 rather than 38.
    return int(math.floor(LONG_INTERVAL_BASE_DAYS * ease_factor + 0.5))


def next_review_date(srs_level: int, ease_factor: float, today: date) -> date:
    """Return the calendar date on which an item at ``srs_level`` is due again."""
    _check_date(today, "today")
    return today + timedelta(days=review_interval_days(srs_level, ease_factor))


def is_due(record: LearningRecord, today: date) -> bool:
    """New items are always due; others once their review date has arrived."""
    if record.srs_level == MIN_SRS_LEVEL or record.next_review_date is None:
        return True
    return record.next_review_date <= today


def apply_outcome(
    record: LearningRecord,
    is_correct: bool,
    response_time: float,
    confidence: int,
    today: date,
) -> LearningRecord:
    """Return the record that results from answering an item once.

    A single correct answer only extends the streak; the stage advances once
    the streak reaches two. A miss demotes exactly one stage, resets the
    streak and lowers the ease factor, even at stage 0.

    Raises:
        InvalidInputError: if ``confidence`` is not an integer in 1..5,
            ``response_time`` is negative or not finite, ``today`` is not a
            plain date, or ``record`` already violates its invariants.
    """
    _check_record(record)
    _check_outcome(response_time, confidence)
    _check_date(today, "today")

    srs_level = record.srs_level
    ease_factor = record.ease_factor

    if is_correct:
        consecutive_correct = record.consecutive_correct + 1
        if consecutive_correct >= PROMOTION_STREAK and srs_level < MAX_SRS_LEVEL:
            srs_level += 1
        if confidence >= 4 and response_time < FAST_RESPONSE_SECONDS:
            ease_factor = round(min(MAX_EASE_FACTOR, ease_factor + EASE_REWARD), 2)
    else:
        consecutive_correct = 0
        srs_level = max(MIN_SRS_LEVEL, srs_level - 1)
        ease_factor = round(max(MIN_EASE_FACTOR, ease_factor - EASE_PENALTY), 2)

    total_reviews = record.total_reviews + 1
    average_response_time = (
        record.average_response_time * record.total_reviews + response_time
    ) / total_reviews

    return replace(
        record,
        srs_level=srs_level,
        ease_factor=ease_factor,
        consecutive_correct=consecutive_correct,
        total_reviews=total_reviews,
        average_response_time=average_response_time,
        last_reviewed_date=today,
        next_review_date=next_review_date(srs_level, ease_factor, today),
        confidence_level=confidence,
        is_mastered=is_mastered(srs_level, consecutive_correct),
    )


def select_due(
    items: Iterable[StudyItem],
    records: Mapping[Hashable, LearningRecord],
    today: date,
    limit: Optional[int] = None,
    *,
    rng: Optional[random.Random] = None,
    shuffle_ties: bool = True,
) -> List[StudyItem]:
    """Return the items due on ``today``, struggling and stale material first.

    Items without a record are treated as new. The queue is ordered by
    historical misses (most first), then by last review date (never reviewed
    first), then user-added before catalog items. Items that tie on all three
    keep their input order unless ``shuffle_ties`` is set, in which case each
    tie band is shuffled with ``rng`` before the first ``limit`` are taken.
    """
    _check_date(today, "today")
    if limit is not None and limit < 0:
        raise InvalidInputError(f"limit must be non-negative, got {limit}.")

    due: List[Tuple[tuple, StudyItem]] = []
    for item in items:
        record = records.get(item.item_id) or default_record(item.item_id)
        if is_due(record, today):
            due.append((_priority_key(item, record), item))

    due.sort(key=lambda entry: entry[0])

    ordered: List[StudyItem] = []
    generator = rng or random.Random()
    for _, band in groupby(due, key=lambda entry: entry[0]):
        members = [item for _, item in band]
        if shuffle_ties:
            generator.shuffle(members)
        ordered.extend(members)

    if limit is not None:
        ordered = ordered[:limit]
    return ordered


def _priority_key(item: StudyItem, record: LearningRecord) -> tuple:
    last_reviewed = record.last_reviewed_date
    reviewed_key = (0, date.min) if last_reviewed is None else (1, last_reviewed)
    return (-item.incorrect_count, reviewed_key, 0 if item.is_user_added else 1)


def _check_date(value: object, name: str) -> None:
    if isinstance(value, datetime) or not isinstance(value, date):
        raise InvalidInputError(f"{name} must be a calendar date, got {value!r}.")


def _check_level(srs_level: int) -> None:
    if not MIN_SRS_LEVEL <= srs_level <= MAX_SRS_LEVEL:
        raise InvalidInputError(f"srs_level must be between 0 and 5, got {srs_level}.")


def _check_ease(ease_factor: float) -> None:
    if not MIN_EASE_FACTOR <= ease_factor <= MAX_EASE_FACTOR:
        raise InvalidInputError(f"ease_factor must be between 1.3 and 3.0, got {ease_factor}.")


def _check_record(record: LearningRecord) -> None:
    _check_level(record.srs_level)
    _check_ease(record.ease_factor)
    if record.consecutive_correct < 0 or record.total_reviews < 0:
        raise InvalidInputError("Review counters must be non-negative.")


def _check_outcome(response_time: float, confidence: int) -> None:
    if isinstance(confidence, bool) or not isinstance(confidence, int):
        raise InvalidInputError(f"confidence must be an integer, got {confidence!r}.")
    if not MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE:
        raise InvalidInputError(f"confidence must be between 1 and 5, got {confidence}.")
    if not math.isfinite(response_time) or response_time < 0:
        raise InvalidInputError(f"response_time must be a non-negative number, got {response_time}.")
