"""Telegram application wiring for WordMaster."""

from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
)

from .agent import VocabularyTutorAgent


def build_application(bot_token: str, agent: VocabularyTutorAgent) -> Application:
    """Configure the Telegram application instance."""
    application = ApplicationBuilder().token(bot_token).build()
    application.add_handler(CommandHandler("start", agent.handle_start))
    application.add_handler(CommandHandler("add", agent.handle_add))
    application.add_handler(CommandHandler("explain", agent.handle_explain))
    application.add_handler(CommandHandler("example", agent.handle_example))
    application.add_handler(CommandHandler("review", agent.handle_review))
    application.add_handler(CommandHandler("status", agent.handle_status))
    application.add_handler(CallbackQueryHandler(agent.handle_add_described, pattern="^vt_add$"))
    application.add_handler(CallbackQueryHandler(agent.handle_next_card, pattern="^vt_next$"))
    application.add_handler(CallbackQueryHandler(agent.handle_show_answer, pattern=r"^vt_show:"))
    application.add_handler(CallbackQueryHandler(agent.handle_rate, pattern=r"^vt_rate:"))
    application.add_handler(CallbackQueryHandler(agent.handle_delete, pattern=r"^vt_delete:"))
    return application
