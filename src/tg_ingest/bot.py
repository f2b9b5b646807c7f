"""Telegram bot: delivers group messages to the pipeline and serves user commands.

Ingestion failures are never reported in the chat. Administrative
actions (opt-out, clearing messages) reply with an accurate result.
"""

from __future__ import annotations

import re

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from tg_ingest import __version__
from tg_ingest.answers import QuestionAnswerer
from tg_ingest.exceptions import AnswerGenerationError
from tg_ingest.logging import get_logger
from tg_ingest.pipeline import IngestionPipeline
from tg_ingest.records import message_from_update

log = get_logger("tg_ingest.bot")

# Handler group for ingestion, so commands sent in groups are ingested too
INGEST_HANDLER_GROUP = 1

# Update types requested from Telegram; edits are never delivered
ALLOWED_UPDATES = [Update.MESSAGE, Update.CALLBACK_QUERY]

ASK_PATTERN = re.compile(r"^/ask(?:@\w+)?\s+(-?\d+)\s+(.+)", re.DOTALL)
ASK_USAGE_TEXT = "Usage: /ask <group_id> <your question>"

WELCOME_TEXT = (
    "🤖 Welcome to <b>Telegram Ingestion Bot</b>!\n\n"
    "I monitor Telegram groups and store their messages for analysis.\n\n"
    "<b>📊 What I do:</b>\n"
    "• Capture messages from monitored groups\n"
    "• Store data in a secure database\n"
    "• Process for analysis\n\n"
    "<b>🛡️ Privacy:</b>\n"
    "• Only group messages are collected\n"
    "• You can opt out anytime\n\n"
    "<b>💬 Questions:</b>\n"
    "Send <code>/ask &lt;group_id&gt; &lt;question&gt;</code> in a private chat.\n\n"
    "Choose an option below or use commands:"
)

ABOUT_TEXT = (
    "ℹ️ <b>About Telegram Ingestion Bot</b>\n\n"
    f"<b>Version:</b> {__version__}\n\n"
    "<b>Features:</b>\n"
    "• Real-time message ingestion\n"
    "• Vector embeddings (OpenAI/Gemini)\n"
    "• PostgreSQL storage\n"
    "• User privacy controls\n"
    "• Opt-out support"
)

PRIVACY_TEXT = (
    "🛡️ <b>Privacy Policy</b>\n\n"
    "<b>Data Collection:</b>\n"
    "• Group messages only\n"
    "• User metadata (name, ID)\n"
    "• Timestamps and content\n\n"
    "<b>Your Rights:</b>\n"
    "• Opt out anytime with /optout\n"
    "• No collection from opted-out users\n"
    "• Delete your stored messages with Clear Chats"
)

OPT_OUT_CONFIRM_TEXT = (
    "⚠️ <b>Opt Out Confirmation</b>\n\n"
    "Are you sure you want to opt out?\n"
    "Your future messages will no longer be collected."
)

CLEAR_CHATS_CONFIRM_TEXT = (
    "🗑️ <b>Clear Chats</b>\n\n"
    "This deletes <code>{count}</code> stored message(s) you have sent.\n"
    "This cannot be undone. Continue?"
)

CLEAR_CHATS_EMPTY_TEXT = "🗑️ <b>Clear Chats</b>\n\nYou have no stored messages."

GENERIC_ERROR_TEXT = "❌ An error occurred. Please try again."


def main_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("📊 Statistics", callback_data="stats"),
                InlineKeyboardButton("ℹ️ About", callback_data="about"),
            ],
            [
                InlineKeyboardButton("🛡️ Privacy", callback_data="privacy"),
                InlineKeyboardButton("🗑️ Clear Chats", callback_data="clear_chats"),
            ],
            [InlineKeyboardButton("❌ Opt Out", callback_data="optout")],
        ]
    )


def back_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton("🔙 Back to Menu", callback_data="main_menu")]]
    )


def confirm_keyboard(action: str, label: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(label, callback_data=action),
                InlineKeyboardButton("❌ Cancel", callback_data="cancel"),
            ]
        ]
    )


class IngestionBot:
    """Wires the ingestion pipeline to python-telegram-bot handlers."""

    def __init__(
        self, pipeline: IngestionPipeline, answerer: QuestionAnswerer | None = None
    ) -> None:
        self._pipeline = pipeline
        self._answerer = answerer

    def build_application(self, token: str) -> Application:  # type: ignore[type-arg]
        """Create the Application with all handlers registered.

        Updates are processed concurrently; each message is an
        independent task.
        """
        application = Application.builder().token(token).concurrent_updates(True).build()
        self.register(application)
        return application

    def register(self, application: Application) -> None:  # type: ignore[type-arg]
        application.add_handler(CommandHandler("start", self.handle_start))
        application.add_handler(CommandHandler("optout", self.handle_optout))
        application.add_handler(CommandHandler("stats", self.handle_stats))
        application.add_handler(CommandHandler("ask", self.handle_ask))
        application.add_handler(CallbackQueryHandler(self.handle_callback))
        application.add_handler(
            MessageHandler(
                filters.UpdateType.MESSAGE & filters.TEXT & filters.ChatType.GROUPS,
                self.handle_group_message,
            ),
            group=INGEST_HANDLER_GROUP,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def handle_group_message(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Hand a group text message to the pipeline. Silent on every outcome."""
        incoming = message_from_update(update.effective_message)
        if incoming is None:
            return
        await self._pipeline.ingest(incoming)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None:
            return
        await message.reply_text(
            WELCOME_TEXT, parse_mode=ParseMode.HTML, reply_markup=main_menu_keyboard()
        )

    async def handle_optout(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None:
            return
        if update.effective_user is None:
            await message.reply_text("❌ Could not determine your user ID.")
            return
        entry = await self._pipeline.privacy.opt_out_entry(update.effective_user.id)
        if entry is not None:
            await message.reply_text(
                "ℹ️ You opted out on "
                f"<code>{entry.opted_out_at:%Y-%m-%d}</code>.\n"
                "Your messages are not being collected.",
                parse_mode=ParseMode.HTML,
                reply_markup=back_keyboard(),
            )
            return
        await message.reply_text(
            OPT_OUT_CONFIRM_TEXT,
            parse_mode=ParseMode.HTML,
            reply_markup=confirm_keyboard("confirm_optout", "✅ Yes, opt out"),
        )

    async def handle_stats(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None:
            return
        await message.reply_text(
            await self.stats_text(), parse_mode=ParseMode.HTML, reply_markup=back_keyboard()
        )

    async def handle_ask(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Answer ``/ask <group_id> <question>`` from a group's recent messages."""
        message = update.effective_message
        if message is None:
            return
        if message.chat.type != "private":
            await message.reply_text("❌ Please use this command in a private chat with the bot.")
            return
        if self._answerer is None:
            await message.reply_text("⚠️ Question answering is not configured.")
            return

        match = ASK_PATTERN.match(message.text or "")
        if match is None:
            await message.reply_text(ASK_USAGE_TEXT)
            return
        group_id, question = int(match.group(1)), match.group(2).strip()

        try:
            answer = await self._answerer.ask(group_id, question)
        except AnswerGenerationError:
            await message.reply_text(GENERIC_ERROR_TEXT)
            return
        if answer is None:
            await message.reply_text("No messages found for that group.")
            return
        await message.reply_text(answer)

    async def stats_text(self) -> str:
        stats = await self._pipeline.stats()
        embeddings = (
            f"✅ Enabled ({stats.provider})" if stats.embeddings_available else "⚠️ Disabled"
        )
        return (
            "📊 <b>Bot Statistics</b>\n\n"
            f"Total messages ingested: <code>{stats.total_messages}</code>\n"
            f"Embeddings: {embeddings}"
        )

    # ------------------------------------------------------------------
    # Menu callbacks
    # ------------------------------------------------------------------

    async def handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Route inline keyboard presses."""
        query = update.callback_query
        if query is None:
            return
        if not query.data:
            await query.answer("❌ Unknown action")
            return

        routes = {
            "stats": self._on_stats,
            "about": self._on_about,
            "privacy": self._on_privacy,
            "optout": self._on_optout,
            "confirm_optout": self._on_confirm_optout,
            "clear_chats": self._on_clear_chats,
            "confirm_clear_chats": self._on_confirm_clear_chats,
            "cancel": self._on_main_menu,
            "main_menu": self._on_main_menu,
        }
        handler = routes.get(query.data)
        if handler is None:
            await query.answer("❌ Unknown action")
            return

        try:
            await handler(update)
        except Exception as exc:
            log.error("callback_query_failed", action=query.data, error=str(exc))
            await query.answer("❌ An error occurred")

    async def _on_stats(self, update: Update) -> None:
        query = update.callback_query
        await query.edit_message_text(  # type: ignore[union-attr]
            await self.stats_text(), parse_mode=ParseMode.HTML, reply_markup=back_keyboard()
        )
        await query.answer("📊 Statistics updated")  # type: ignore[union-attr]

    async def _on_about(self, update: Update) -> None:
        query = update.callback_query
        await query.edit_message_text(  # type: ignore[union-attr]
            ABOUT_TEXT, parse_mode=ParseMode.HTML, reply_markup=back_keyboard()
        )
        await query.answer()  # type: ignore[union-attr]

    async def _on_privacy(self, update: Update) -> None:
        query = update.callback_query
        await query.edit_message_text(  # type: ignore[union-attr]
            PRIVACY_TEXT, parse_mode=ParseMode.HTML, reply_markup=back_keyboard()
        )
        await query.answer()  # type: ignore[union-attr]

    async def _on_optout(self, update: Update) -> None:
        query = update.callback_query
        await query.edit_message_text(  # type: ignore[union-attr]
            OPT_OUT_CONFIRM_TEXT,
            parse_mode=ParseMode.HTML,
            reply_markup=confirm_keyboard("confirm_optout", "✅ Yes, opt out"),
        )
        await query.answer()  # type: ignore[union-attr]

    async def _on_confirm_optout(self, update: Update) -> None:
        query = update.callback_query
        user_id = query.from_user.id  # type: ignore[union-attr]
        if await self._pipeline.privacy.opt_out(user_id):
            text = (
                "✅ <b>You have opted out.</b>\n\n"
                "Your future messages will no longer be collected.\n"
                "Use Clear Chats to delete messages already stored."
            )
        else:
            text = "❌ Could not process your opt-out right now. Please try again later."
        await query.edit_message_text(  # type: ignore[union-attr]
            text, parse_mode=ParseMode.HTML, reply_markup=back_keyboard()
        )
        await query.answer()  # type: ignore[union-attr]

    async def _on_clear_chats(self, update: Update) -> None:
        query = update.callback_query
        user_id = query.from_user.id  # type: ignore[union-attr]
        count = await self._pipeline.privacy.stored_message_count(user_id)
        if count == 0:
            await query.edit_message_text(  # type: ignore[union-attr]
                CLEAR_CHATS_EMPTY_TEXT, parse_mode=ParseMode.HTML, reply_markup=back_keyboard()
            )
        else:
            await query.edit_message_text(  # type: ignore[union-attr]
                CLEAR_CHATS_CONFIRM_TEXT.format(count=count),
                parse_mode=ParseMode.HTML,
                reply_markup=confirm_keyboard("confirm_clear_chats", "✅ Yes, delete"),
            )
        await query.answer()  # type: ignore[union-attr]

    async def _on_confirm_clear_chats(self, update: Update) -> None:
        query = update.callback_query
        user_id = query.from_user.id  # type: ignore[union-attr]
        removed = await self._pipeline.privacy.purge_messages(user_id)
        await query.edit_message_text(  # type: ignore[union-attr]
            f"🗑️ Deleted <code>{removed}</code> stored message(s).",
            parse_mode=ParseMode.HTML,
            reply_markup=back_keyboard(),
        )
        await query.answer()  # type: ignore[union-attr]

    async def _on_main_menu(self, update: Update) -> None:
        query = update.callback_query
        await query.edit_message_text(  # type: ignore[union-attr]
            WELCOME_TEXT, parse_mode=ParseMode.HTML, reply_markup=main_menu_keyboard()
        )
        await query.answer()  # type: ignore[union-attr]
