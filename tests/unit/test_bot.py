"""Unit tests for the Telegram bot handlers."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from telegram import Chat, Message, Update, User
from telegram.ext import CallbackQueryHandler, CommandHandler, MessageHandler

from tg_ingest.bot import (
    ALLOWED_UPDATES,
    ASK_USAGE_TEXT,
    GENERIC_ERROR_TEXT,
    INGEST_HANDLER_GROUP,
    WELCOME_TEXT,
    IngestionBot,
)
from tg_ingest.exceptions import AnswerGenerationError
from tg_ingest.models import OptOutEntry
from tg_ingest.pipeline import IngestOutcome, IngestStats

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_pipeline(total=5, available=True, provider="OPENAI"):
    pipeline = MagicMock()
    pipeline.ingest = AsyncMock(return_value=IngestOutcome.PERSISTED)
    pipeline.stats = AsyncMock(
        return_value=IngestStats(
            total_messages=total, embeddings_available=available, provider=provider
        )
    )
    pipeline.privacy.opt_out = AsyncMock(return_value=True)
    pipeline.privacy.purge_messages = AsyncMock(return_value=3)
    pipeline.privacy.stored_message_count = AsyncMock(return_value=3)
    pipeline.privacy.opt_out_entry = AsyncMock(return_value=None)
    return pipeline


def _make_group_update(text="hello", chat_type="group", user_id=42):
    message = MagicMock()
    message.text = text
    message.message_id = 77
    message.date = datetime(2026, 1, 15, 10, 30, tzinfo=UTC)
    message.chat.type = chat_type
    message.chat.id = -100
    message.from_user.id = user_id
    message.from_user.username = "alice"
    message.from_user.first_name = "Alice"
    message.from_user.last_name = None
    message.reply_text = AsyncMock()
    update = MagicMock()
    update.effective_message = message
    return update


def _make_command_update(user_id=42):
    update = MagicMock()
    update.effective_message.reply_text = AsyncMock()
    update.effective_user.id = user_id
    return update


def _make_callback_update(data, user_id=3):
    update = MagicMock()
    query = MagicMock()
    query.data = data
    query.from_user.id = user_id
    query.answer = AsyncMock()
    query.edit_message_text = AsyncMock()
    update.callback_query = query
    return update, query


@pytest.fixture
def context():
    return MagicMock()


# ===========================================================================
# Registration
# ===========================================================================


class TestRegistration:
    def test_registers_commands_callbacks_and_ingestion(self):
        application = MagicMock()
        IngestionBot(_make_pipeline()).register(application)

        handlers = [c.args[0] for c in application.add_handler.call_args_list]
        commands = {
            next(iter(h.commands)) for h in handlers if isinstance(h, CommandHandler)
        }
        assert commands == {"start", "optout", "stats", "ask"}
        assert any(isinstance(h, CallbackQueryHandler) for h in handlers)

        ingest_calls = [
            c for c in application.add_handler.call_args_list
            if isinstance(c.args[0], MessageHandler)
        ]
        assert len(ingest_calls) == 1
        assert ingest_calls[0].kwargs["group"] == INGEST_HANDLER_GROUP

    def test_build_application_enables_concurrent_updates(self):
        with patch("tg_ingest.bot.Application") as mock_app:
            builder = mock_app.builder.return_value
            builder.token.return_value = builder
            builder.concurrent_updates.return_value = builder
            IngestionBot(_make_pipeline()).build_application("123:abc")

        builder.token.assert_called_once_with("123:abc")
        builder.concurrent_updates.assert_called_once_with(True)

    def test_only_new_messages_and_callbacks_requested(self):
        assert ALLOWED_UPDATES == ["message", "callback_query"]


def _ingest_handler():
    application = MagicMock()
    IngestionBot(_make_pipeline()).register(application)
    return next(
        c.args[0]
        for c in application.add_handler.call_args_list
        if isinstance(c.args[0], MessageHandler)
    )


def _telegram_message(**kwargs):
    return Message(
        message_id=555,
        date=datetime(2026, 1, 15, 10, 30, tzinfo=UTC),
        chat=Chat(id=-100, type=Chat.GROUP),
        from_user=User(id=42, first_name="Alice", is_bot=False),
        text="hello",
        **kwargs,
    )


class TestIngestFilter:
    def test_new_group_message_accepted(self):
        update = Update(update_id=1, message=_telegram_message())
        assert _ingest_handler().check_update(update)

    def test_edited_message_rejected(self):
        edited = _telegram_message(edit_date=datetime(2026, 1, 15, 10, 35, tzinfo=UTC))
        update = Update(update_id=2, edited_message=edited)

        assert not _ingest_handler().check_update(update)


# ===========================================================================
# Ingestion
# ===========================================================================


class TestGroupMessage:
    async def test_message_passed_to_pipeline(self, context):
        pipeline = _make_pipeline()
        update = _make_group_update()

        await IngestionBot(pipeline).handle_group_message(update, context)

        pipeline.ingest.assert_awaited_once()
        incoming = pipeline.ingest.await_args.args[0]
        assert incoming.message_id == 77
        assert incoming.sender_id == 42
        assert incoming.conversation_id == -100

    async def test_private_message_ignored(self, context):
        pipeline = _make_pipeline()

        await IngestionBot(pipeline).handle_group_message(
            _make_group_update(chat_type="private"), context
        )

        pipeline.ingest.assert_not_awaited()

    async def test_ingest_failure_is_silent(self, context):
        pipeline = _make_pipeline()
        pipeline.ingest.return_value = IngestOutcome.PERSIST_ERROR
        update = _make_group_update()

        await IngestionBot(pipeline).handle_group_message(update, context)

        update.effective_message.reply_text.assert_not_awaited()


# ===========================================================================
# Commands
# ===========================================================================


class TestCommands:
    async def test_start_shows_menu(self, context):
        update = _make_command_update()

        await IngestionBot(_make_pipeline()).handle_start(update, context)

        args, kwargs = update.effective_message.reply_text.await_args
        assert args[0] == WELCOME_TEXT
        data = [b.callback_data for row in kwargs["reply_markup"].inline_keyboard for b in row]
        assert data == ["stats", "about", "privacy", "clear_chats", "optout"]

    async def test_optout_asks_for_confirmation(self, context):
        pipeline = _make_pipeline()
        update = _make_command_update()

        await IngestionBot(pipeline).handle_optout(update, context)

        markup = update.effective_message.reply_text.await_args.kwargs["reply_markup"]
        data = [b.callback_data for row in markup.inline_keyboard for b in row]
        assert data == ["confirm_optout", "cancel"]
        pipeline.privacy.opt_out.assert_not_awaited()

    async def test_optout_without_user(self, context):
        update = _make_command_update()
        update.effective_user = None

        await IngestionBot(_make_pipeline()).handle_optout(update, context)

        assert "user ID" in update.effective_message.reply_text.await_args.args[0]

    async def test_optout_when_already_opted_out(self, context):
        pipeline = _make_pipeline()
        pipeline.privacy.opt_out_entry.return_value = OptOutEntry(
            sender_id=42, opted_out_at=datetime(2026, 1, 2, tzinfo=UTC)
        )
        update = _make_command_update(user_id=42)

        await IngestionBot(pipeline).handle_optout(update, context)

        pipeline.privacy.opt_out_entry.assert_awaited_once_with(42)
        assert "2026-01-02" in update.effective_message.reply_text.await_args.args[0]

    async def test_stats_enabled(self, context):
        update = _make_command_update()

        await IngestionBot(_make_pipeline(total=12)).handle_stats(update, context)

        text = update.effective_message.reply_text.await_args.args[0]
        assert "<code>12</code>" in text
        assert "Enabled (OPENAI)" in text

    async def test_stats_disabled(self, context):
        update = _make_command_update()

        await IngestionBot(_make_pipeline(available=False, provider="None")).handle_stats(
            update, context
        )

        assert "Disabled" in update.effective_message.reply_text.await_args.args[0]


def _make_ask_update(text, chat_type="private"):
    update = _make_command_update()
    update.effective_message.text = text
    update.effective_message.chat.type = chat_type
    return update


def _make_answerer(answer="Alice organised the meetup."):
    answerer = MagicMock()
    answerer.ask = AsyncMock(return_value=answer)
    return answerer


class TestAsk:
    async def test_answers_question(self, context):
        answerer = _make_answerer()
        update = _make_ask_update("/ask -1001234 who organised the meetup?")

        await IngestionBot(_make_pipeline(), answerer).handle_ask(update, context)

        answerer.ask.assert_awaited_once_with(-1001234, "who organised the meetup?")
        update.effective_message.reply_text.assert_awaited_once_with(
            "Alice organised the meetup."
        )

    async def test_rejected_outside_private_chat(self, context):
        answerer = _make_answerer()
        update = _make_ask_update("/ask 1 hi", chat_type="group")

        await IngestionBot(_make_pipeline(), answerer).handle_ask(update, context)

        answerer.ask.assert_not_awaited()
        assert "private chat" in update.effective_message.reply_text.await_args.args[0]

    @pytest.mark.parametrize("text", ["/ask", "/ask abc question", "/ask 100"])
    async def test_usage_on_bad_arguments(self, context, text):
        answerer = _make_answerer()
        update = _make_ask_update(text)

        await IngestionBot(_make_pipeline(), answerer).handle_ask(update, context)

        answerer.ask.assert_not_awaited()
        update.effective_message.reply_text.assert_awaited_once_with(ASK_USAGE_TEXT)

    async def test_disabled_without_answerer(self, context):
        update = _make_ask_update("/ask 1 hi")

        await IngestionBot(_make_pipeline()).handle_ask(update, context)

        assert "not configured" in update.effective_message.reply_text.await_args.args[0]

    async def test_no_messages_for_group(self, context):
        update = _make_ask_update("/ask 1 hi")

        await IngestionBot(_make_pipeline(), _make_answerer(answer=None)).handle_ask(
            update, context
        )

        assert "No messages found" in update.effective_message.reply_text.await_args.args[0]

    async def test_model_failure_replies_generic_error(self, context):
        answerer = _make_answerer()
        answerer.ask.side_effect = AnswerGenerationError("rate limited")
        update = _make_ask_update("/ask 1 hi")

        await IngestionBot(_make_pipeline(), answerer).handle_ask(update, context)

        update.effective_message.reply_text.assert_awaited_once_with(GENERIC_ERROR_TEXT)


# ===========================================================================
# Callbacks
# ===========================================================================


class TestCallbacks:
    async def test_unknown_action(self, context):
        update, query = _make_callback_update("nope")

        await IngestionBot(_make_pipeline()).handle_callback(update, context)

        query.answer.assert_awaited_once_with("❌ Unknown action")

    async def test_confirm_optout_success(self, context):
        pipeline = _make_pipeline()
        update, query = _make_callback_update("confirm_optout", user_id=3)

        await IngestionBot(pipeline).handle_callback(update, context)

        pipeline.privacy.opt_out.assert_awaited_once_with(3)
        assert "You have opted out" in query.edit_message_text.await_args.args[0]

    async def test_confirm_optout_failure_reported(self, context):
        pipeline = _make_pipeline()
        pipeline.privacy.opt_out.return_value = False
        update, query = _make_callback_update("confirm_optout")

        await IngestionBot(pipeline).handle_callback(update, context)

        assert "Could not process" in query.edit_message_text.await_args.args[0]

    async def test_confirm_clear_chats_reports_count(self, context):
        pipeline = _make_pipeline()
        update, query = _make_callback_update("confirm_clear_chats", user_id=3)

        await IngestionBot(pipeline).handle_callback(update, context)

        pipeline.privacy.purge_messages.assert_awaited_once_with(3)
        assert "<code>3</code>" in query.edit_message_text.await_args.args[0]

    async def test_clear_chats_asks_first(self, context):
        pipeline = _make_pipeline()
        update, query = _make_callback_update("clear_chats")

        await IngestionBot(pipeline).handle_callback(update, context)

        pipeline.privacy.purge_messages.assert_not_awaited()
        assert "<code>3</code>" in query.edit_message_text.await_args.args[0]
        markup = query.edit_message_text.await_args.kwargs["reply_markup"]
        assert markup.inline_keyboard[0][0].callback_data == "confirm_clear_chats"

    async def test_clear_chats_with_nothing_stored(self, context):
        pipeline = _make_pipeline()
        pipeline.privacy.stored_message_count.return_value = 0
        update, query = _make_callback_update("clear_chats", user_id=3)

        await IngestionBot(pipeline).handle_callback(update, context)

        pipeline.privacy.stored_message_count.assert_awaited_once_with(3)
        assert "no stored messages" in query.edit_message_text.await_args.args[0]
        markup = query.edit_message_text.await_args.kwargs["reply_markup"]
        assert markup.inline_keyboard[0][0].callback_data == "main_menu"

    @pytest.mark.parametrize("action", ["cancel", "main_menu"])
    async def test_back_to_menu(self, context, action):
        update, query = _make_callback_update(action)

        await IngestionBot(_make_pipeline()).handle_callback(update, context)

        assert query.edit_message_text.await_args.args[0] == WELCOME_TEXT

    async def test_handler_error_answers_query(self, context):
        pipeline = _make_pipeline()
        pipeline.stats.side_effect = RuntimeError("db down")
        update, query = _make_callback_update("stats")

        await IngestionBot(pipeline).handle_callback(update, context)

        query.answer.assert_awaited_with("❌ An error occurred")
