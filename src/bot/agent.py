"""Telegram handlers for the WordMaster vocabulary tutor."""

from __future__ import annotations

import logging
import random
import re
import time
from datetime import date
from html import escape
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from src.db.vocabulary import (
    VocabularyPayload,
    add_vocabulary_item,
    count_reviews_on,
    delete_vocabulary_item,
    get_vocabulary_item,
    list_study_items,
    load_learning_records,
    record_review,
)
from src.review.scheduler import (
    FAST_RESPONSE_SECONDS,
    LearningRecord,
    StudyItem,
    apply_outcome,
    select_due,
)
from src.services.content import ContentGenerator, TermDescription
from src.services.governor import GovernorFailure


LOGGER = logging.getLogger(__name__)

_ADD_SEPARATOR_RE = re.compile(r"\s+[-–—=]\s+|\s*[:;]\s+")

# Rating button -> (is_correct, confidence).
RATINGS: Dict[str, Tuple[bool, int]] = {
    "again": (False, 1),
    "hard": (True, 2),
    "good": (True, 3),
    "easy": (True, 5),
}
_RATING_LABELS = (("again", "Again"), ("hard", "Hard"), ("good", "Good"), ("easy", "Easy"))

# Latency used when the question was shown before a restart; never counts as fast.
UNKNOWN_RESPONSE_TIME = FAST_RESPONSE_SECONDS


class VocabularyTutorAgent:
    """Runs review sessions and on-demand explanations over Telegram."""

    def __init__(
        self,
        content: ContentGenerator,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        daily_review_limit: int = 20,
        today: Optional[Callable[[], date]] = None,
        timer: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._content = content
        self._session_factory = session_factory
        self._daily_review_limit = daily_review_limit
        self._today = today or date.today
        self._timer = timer
        self._rng = rng
        self._question_started: Dict[Tuple[int, int], float] = {}
        self._pending_descriptions: Dict[int, TermDescription] = {}

    async def handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Describe what the tutor can do."""
        if not update.message:
            return

        greeting = (
            "Hi! I help you learn vocabulary with spaced repetition.\n"
            "/review - practise the words that are due today\n"
            "/add word - translation - save a word of your own\n"
            "/explain word - get a translation, definition and example\n"
            "/example word - get a fresh example sentence\n"
            "/status - check whether word explanations are available"
        )
        await update.message.reply_text(greeting)

    async def handle_add(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        chat = update.effective_chat
        if message is None or chat is None:
            return

        if self._session_factory is None:
            await message.reply_text("Your word list is unavailable right now.")
            return

        parsed = self._parse_add_arguments(" ".join(getattr(context, "args", None) or []))
        if parsed is None:
            await message.reply_text("Usage: /add word - translation")
            return

        term, translation = parsed
        async with self._session_factory() as session:
            async with session.begin():
                item, created = await add_vocabulary_item(
                    session,
                    chat.id,
                    VocabularyPayload(term=term, translation=translation, is_user_added=True),
                )

        if created:
            reply = f"Added <b>{escape(item.term)}</b> - {escape(item.translation)}."
        else:
            reply = f"<b>{escape(item.term)}</b> is already in your words."
        await message.reply_text(reply, parse_mode=ParseMode.HTML, reply_markup=self._build_review_markup())

    async def handle_explain(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        chat = update.effective_chat
        if message is None or chat is None:
            return

        term = " ".join(getattr(context, "args", None) or []).strip()
        if not term:
            await message.reply_text("Usage: /explain word")
            return

        result = await self._content.describe_term(term)
        if not result.ok:
            await message.reply_text(self._format_failure(result.failure))
            return

        description = result.value
        reply_markup = None
        if self._session_factory is not None:
            self._pending_descriptions[chat.id] = description
            reply_markup = InlineKeyboardMarkup(
                [[InlineKeyboardButton("Add to my words", callback_data="vt_add")]]
            )
        await message.reply_text(
            self._format_description(description),
            parse_mode=ParseMode.HTML,
            reply_markup=reply_markup,
        )

    async def handle_example(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None:
            return

        term = " ".join(getattr(context, "args", None) or []).strip()
        if not term:
            await message.reply_text("Usage: /example word")
            return

        result = await self._content.generate_example(term)
        if not result.ok:
            await message.reply_text(self._format_failure(result.failure))
            return
        await message.reply_text(result.value)

    async def handle_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return

        governor = self._content.governor
        ends_at = governor.state.cooldown_ends_at
        if governor.is_cooling_down() and ends_at is not None:
            reply = f"Word explanations are paused until {ends_at.strftime('%H:%M UTC')}. Reviews still work."
        else:
            reply = "Everything is available."
        await update.message.reply_text(reply)

    async def handle_review(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        chat = update.effective_chat
        if message is None or chat is None:
            return
        await self._send_next_card(message, chat.id)

    async def handle_add_described(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None:
            return

        message = query.message
        if message is None or message.chat is None or self._session_factory is None:
            await query.answer()
            return

        chat_id = message.chat.id
        description = self._pending_descriptions.pop(chat_id, None)
        if description is None:
            await query.answer("Ask me to /explain the word again.", show_alert=True)
            return

        async with self._session_factory() as session:
            async with session.begin():
                _, created = await add_vocabulary_item(
                    session,
                    chat_id,
                    VocabularyPayload(
                        term=description.term,
                        translation=description.translation,
                        example=description.combined_example,
                        is_user_added=True,
                    ),
                )

        try:
            await query.edit_message_reply_markup(reply_markup=None)
        except Exception:  # pragma: no cover - best effort cleanup
            LOGGER.debug("Could not clear add-word markup.", exc_info=True)

        await query.answer("Added to your words." if created else "Already in your words.")

    async def handle_next_card(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None:
            return

        await query.answer()
        message = query.message
        if message is None or message.chat is None:
            return
        await self._send_next_card(message, message.chat.id)

    async def handle_show_answer(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None or query.data is None:
            return

        item_id = self._parse_item_id(query.data, "vt_show")
        message = query.message
        if item_id is None or message is None or message.chat is None or self._session_factory is None:
            await query.answer()
            return

        chat_id = message.chat.id
        async with self._session_factory() as session:
            item = await get_vocabulary_item(session, chat_id, item_id)

        if item is None:
            await query.answer("This word no longer exists.", show_alert=True)
            return

        text = self._format_answer(item.term, item.translation, item.example)
        try:
            await query.edit_message_text(
                text,
                parse_mode=ParseMode.HTML,
                reply_markup=self._build_rating_keyboard(item_id),
            )
        except Exception:  # pragma: no cover - best effort update
            LOGGER.debug("Could not reveal the answer in place.", exc_info=True)
            await message.reply_text(
                text,
                parse_mode=ParseMode.HTML,
                reply_markup=self._build_rating_keyboard(item_id),
            )
        await query.answer()

    async def handle_rate(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None or query.data is None:
            return

        parts = query.data.split(":")
        if len(parts) != 3 or parts[0] != "vt_rate" or parts[2] not in RATINGS:
            await query.answer()
            return
        try:
            item_id = int(parts[1])
        except ValueError:
            await query.answer("Unknown word.", show_alert=True)
            return

        message = query.message
        if message is None or message.chat is None or self._session_factory is None:
            await query.answer()
            return

        chat_id = message.chat.id
        is_correct, confidence = RATINGS[parts[2]]
        started = self._question_started.pop((chat_id, item_id), None)
        response_time = (
            UNKNOWN_RESPONSE_TIME if started is None else max(0.0, self._timer() - started)
        )
        today = self._today()

        async with self._session_factory() as session:
            async with session.begin():
                item = await get_vocabulary_item(session, chat_id, item_id)
                if item is None:
                    await query.answer("This word no longer exists.", show_alert=True)
                    return
                records = await load_learning_records(session, [item_id])
                updated = apply_outcome(records[item_id], is_correct, response_time, confidence, today)
                await record_review(session, item, updated, is_correct, response_time, confidence)

        try:
            await query.edit_message_reply_markup(reply_markup=None)
        except Exception:  # pragma: no cover - best effort cleanup
            LOGGER.debug("Could not clear rating markup.", exc_info=True)

        await query.answer("Saved.")
        await message.reply_text(
            self._format_review_result(updated, today),
            reply_markup=self._build_review_markup(),
        )

    async def handle_delete(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None or query.data is None:
            return

        item_id = self._parse_item_id(query.data, "vt_delete")
        message = query.message
        if item_id is None or message is None or message.chat is None or self._session_factory is None:
            await query.answer()
            return

        chat_id = message.chat.id
        async with self._session_factory() as session:
            async with session.begin():
                deleted = await delete_vocabulary_item(session, chat_id, item_id)

        self._question_started.pop((chat_id, item_id), None)

        try:
            await query.edit_message_reply_markup(reply_markup=None)
        except Exception:
            LOGGER.debug("Could not clear the deleted word's buttons.", exc_info=True)
        await query.answer("Deleted." if deleted else "This word no longer exists.")
        if deleted:
            await message.reply_text("The word was removed.", reply_markup=self._build_review_markup())

    async def build_review_queue(self, session: AsyncSession, chat_id: int) -> List[StudyItem]:
        """Return today's remaining review queue for a learner."""
        today = self._today()
        remaining = self._daily_review_limit - await count_reviews_on(session, chat_id, today)
        if remaining <= 0:
            return []
        items = await list_study_items(session, chat_id)
        records = await load_learning_records(session, [item.item_id for item in items])
        return select_due(items, records, today, remaining, rng=self._rng)

    async def _send_next_card(self, message: Message, chat_id: int) -> None:
        if self._session_factory is None:
            await message.reply_text("Your word list is unavailable right now.")
            return

        async with self._session_factory() as session:
            queue = await self.build_review_queue(session, chat_id)

        if not queue:
            await message.reply_text(
                "Nothing left to review today. Add words with /add or /explain, or come back tomorrow."
            )
            return

        item = queue[0]
        self._question_started[(chat_id, item.item_id)] = self._timer()
        await message.reply_text(
            self._format_question(item, len(queue)),
            parse_mode=ParseMode.HTML,
            reply_markup=self._build_reveal_keyboard(item.item_id),
        )

    @staticmethod
    def _parse_add_arguments(raw: str) -> Optional[Tuple[str, str]]:
        parts = _ADD_SEPARATOR_RE.split(raw.strip(), maxsplit=1)
        if len(parts) != 2:
            return None
        term, translation = (part.strip() for part in parts)
        if not term or not translation:
            return None
        return term, translation

    @staticmethod
    def _parse_item_id(data: str, prefix: str) -> Optional[int]:
        head, _, tail = data.partition(":")
        if head != prefix:
            return None
        try:
            return int(tail)
        except ValueError:
            return None

    def _format_failure(self, failure: Optional[GovernorFailure]) -> str:
        if failure is not None and failure.kind.is_quota:
            ends_at = self._content.governor.state.cooldown_ends_at
            when = f" after {ends_at.strftime('%H:%M UTC')}" if ends_at else " later"
            return f"The word service has reached its limit. Please try again{when}."
        return "Sorry, I could not get an answer right now. Please try again in a moment."

    @staticmethod
    def _format_description(description: TermDescription) -> str:
        lines = [f"<b>{escape(description.term)}</b> - {escape(description.translation)}"]
        if description.definition:
            lines.append(escape(description.definition))
        if description.example:
            lines.append(f"<i>{escape(description.example)}</i>")
        if description.example_translation:
            lines.append(escape(description.example_translation))
        return "\n".join(lines)

    @staticmethod
    def _format_question(item: StudyItem, queue_size: int) -> str:
        return f"<b>{escape(item.term)}</b>\n\nWords left today: {queue_size}"

    @staticmethod
    def _format_answer(term: str, translation: str, example: Optional[str]) -> str:
        lines = [f"<b>{escape(term)}</b> - {escape(translation)}"]
        if example:
            lines.append(f"<i>{escape(example)}</i>")
        return "\n".join(lines)

    @staticmethod
    def _format_review_result(record: LearningRecord, today: date) -> str:
        if record.next_review_date is None or record.next_review_date <= today:
            schedule = "We will repeat it today."
        else:
            days = (record.next_review_date - today).days
            schedule = f"Next review in {days} day{'s' if days != 1 else ''} ({record.next_review_date.isoformat()})."
        if record.is_mastered:
            schedule += " Mastered!"
        return schedule

    @staticmethod
    def _build_review_markup() -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup([[InlineKeyboardButton("Review", callback_data="vt_next")]])

    @staticmethod
    def _build_reveal_keyboard(item_id: int) -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(
            [[InlineKeyboardButton("Show answer", callback_data=f"vt_show:{item_id}")]]
        )

    @staticmethod
    def _build_rating_keyboard(item_id: int) -> InlineKeyboardMarkup:
        ratings = [
            InlineKeyboardButton(label, callback_data=f"vt_rate:{item_id}:{grade}")
            for grade, label in _RATING_LABELS
        ]
        return InlineKeyboardMarkup(
            [ratings, [InlineKeyboardButton("Delete word", callback_data=f"vt_delete:{item_id}")]]
        )
