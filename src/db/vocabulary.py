"""Persistence helpers for vocabulary items and their learning records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.review.scheduler import LearningRecord, StudyItem, default_record

from . import LearningRecordRow, ReviewLogEntry, VocabularyItem


@dataclass(slots=True)
class VocabularyPayload:
    """Definition of a vocabulary item that may be persisted."""

    term: str
    translation: str
    example: Optional[str] = None
    is_user_added: bool = True

    def normalized(self) -> "VocabularyPayload":
        """Return a payload with leading/trailing whitespace stripped."""
        example = self.example.strip() if isinstance(self.example, str) else None
        return VocabularyPayload(
            term=self.term.strip(),
            translation=self.translation.strip(),
            example=example or None,
            is_user_added=self.is_user_added,
        )


def to_study_item(item: VocabularyItem) -> StudyItem:
    return StudyItem(
        item_id=item.id,
        term=item.term,
        translation=item.translation,
        example=item.example,
        incorrect_count=item.incorrect_count or 0,
        is_user_added=bool(item.is_user_added),
    )


def record_from_row(row: LearningRecordRow) -> LearningRecord:
    return LearningRecord(
        item_id=row.item_id,
        srs_level=row.srs_level,
        ease_factor=row.ease_factor,
        consecutive_correct=row.consecutive_correct,
        total_reviews=row.total_reviews,
        average_response_time=row.average_response_time,
        last_reviewed_date=row.last_reviewed_date,
        next_review_date=row.next_review_date,
        confidence_level=row.confidence_level,
        is_mastered=row.is_mastered,
    )


def _copy_record_to_row(record: LearningRecord, row: LearningRecordRow) -> None:
    row.srs_level = record.srs_level
    row.ease_factor = record.ease_factor
    row.consecutive_correct = record.consecutive_correct
    row.total_reviews = record.total_reviews
    row.average_response_time = record.average_response_time
    row.last_reviewed_date = record.last_reviewed_date
    row.next_review_date = record.next_review_date
    row.confidence_level = record.confidence_level
    row.is_mastered = record.is_mastered


async def add_vocabulary_item(
    session: AsyncSession,
    chat_id: int,
    payload: VocabularyPayload,
) -> tuple[VocabularyItem, bool]:
    """Store a vocabulary item for a learner, reusing an existing one with the same term."""
    normalized = payload.normalized()
    if not normalized.term or not normalized.translation:
        raise ValueError("A vocabulary item needs both a term and a translation.")

    stmt = select(VocabularyItem).where(
        VocabularyItem.chat_id == chat_id,
        VocabularyItem.term == normalized.term,
    )
    result = await session.execute(stmt)
    item = result.scalars().first()

    if item is not None:
        if normalized.example and not item.example:
            item.example = normalized.example
            await session.flush()
        return item, False

    item = VocabularyItem(
        chat_id=chat_id,
        term=normalized.term,
        translation=normalized.translation,
        example=normalized.example,
        is_user_added=normalized.is_user_added,
        incorrect_count=0,
    )
    session.add(item)
    await session.flush()

    row = LearningRecordRow(item_id=item.id)
    _copy_record_to_row(default_record(item.id), row)
    session.add(row)
    await session.flush()
    return item, True


async def get_vocabulary_item(
    session: AsyncSession,
    chat_id: int,
    item_id: int,
) -> Optional[VocabularyItem]:
    item = await session.get(VocabularyItem, item_id)
    if item is None or item.chat_id != chat_id:
        return None
    return item


async def list_study_items(session: AsyncSession, chat_id: int) -> List[StudyItem]:
    """Return every vocabulary item of a learner in insertion order."""
    stmt = select(VocabularyItem).where(VocabularyItem.chat_id == chat_id).order_by(VocabularyItem.id)
    result = await session.execute(stmt)
    return [to_study_item(item) for item in result.scalars().all()]


async def count_reviews_on(session: AsyncSession, chat_id: int, day: date) -> int:
    """Return how many answers a learner gave on ``day``."""
    stmt = (
        select(func.count(ReviewLogEntry.id))
        .join(VocabularyItem, VocabularyItem.id == ReviewLogEntry.item_id)
        .where(VocabularyItem.chat_id == chat_id, ReviewLogEntry.reviewed_on == day)
    )
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def load_learning_records(
    session: AsyncSession,
    item_ids: Iterable[int],
) -> Dict[int, LearningRecord]:
    """Load stored records; items never seen get a default record."""
    ids = list(item_ids)
    if not ids:
        return {}
    stmt = select(LearningRecordRow).where(LearningRecordRow.item_id.in_(ids))
    result = await session.execute(stmt)
    records = {row.item_id: record_from_row(row) for row in result.scalars().all()}
    for item_id in ids:
        records.setdefault(item_id, default_record(item_id))
    return records


async def save_learning_record(session: AsyncSession, record: LearningRecord) -> LearningRecordRow:
    """Insert or update the stored copy of ``record``."""
    row = await session.get(LearningRecordRow, record.item_id)
    if row is None:
        row = LearningRecordRow(item_id=record.item_id)
        session.add(row)
    _copy_record_to_row(record, row)
    await session.flush()
    return row


async def record_review(
    session: AsyncSession,
    item: VocabularyItem,
    record: LearningRecord,
    is_correct: bool,
    response_time: float,
    confidence: int,
) -> None:
    """Persist the record produced by a review together with its history entry."""
    if record.item_id != item.id:
        raise ValueError("Learning record does not belong to the reviewed item.")
    if record.last_reviewed_date is None:
        raise ValueError("Only records returned by apply_outcome can be recorded as reviews.")

    await save_learning_record(session, record)
    if not is_correct:
        item.incorrect_count = (item.incorrect_count or 0) + 1

    session.add(
        ReviewLogEntry(
            item_id=item.id,
            is_correct=is_correct,
            response_time=response_time,
            confidence=confidence,
            reviewed_on=record.last_reviewed_date,
        )
    )
    await session.flush()


async def delete_vocabulary_item(session: AsyncSession, chat_id: int, item_id: int) -> bool:
    """Delete an item together with its learning record and review history."""
    item = await get_vocabulary_item(session, chat_id, item_id)
    if item is None:
        return False
    # Children first: SQLite does not enforce ON DELETE CASCADE by default.
    await session.execute(delete(ReviewLogEntry).where(ReviewLogEntry.item_id == item_id))
    await session.execute(delete(LearningRecordRow).where(LearningRecordRow.item_id == item_id))
    await session.execute(delete(VocabularyItem).where(VocabularyItem.id == item_id))
    await session.flush()
    return True
