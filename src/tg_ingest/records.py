"""Mapping between transport messages, inbound messages and stored records."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from tg_ingest.constants import INGESTED_CHAT_TYPES
from tg_ingest.models import ConversationRecord, IncomingMessage, Vector

if TYPE_CHECKING:
    import telegram


def to_utc_iso(value: datetime) -> str:
    """Serialise a timestamp as ISO-8601 in UTC.

    Naive datetimes are taken to already be in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def build_record(message: IncomingMessage, vector: Vector | None) -> ConversationRecord:
    """Build the persisted shape of *message*. Pure and deterministic."""
    return ConversationRecord(
        message_id=message.message_id,
        text=message.text,
        sender_id=message.sender_id,
        conversation_id=message.conversation_id,
        occurred_at=to_utc_iso(message.sent_at),
        vector=vector,
        sender_display_name=message.sender_display_name,
        sender_given_name=message.sender_given_name,
        sender_family_name=message.sender_family_name,
    )


def message_from_update(message: telegram.Message | None) -> IncomingMessage | None:
    """Convert a Telegram message into an IncomingMessage.

    Returns None for anything that is not a text message from an
    identifiable sender in a group or supergroup.
    """
    if message is None or not message.text or not message.text.strip():
        return None
    chat = message.chat
    if chat is None or chat.type not in INGESTED_CHAT_TYPES:
        return None
    user = message.from_user
    if user is None:
        return None

    return IncomingMessage(
        message_id=message.message_id,
        text=message.text,
        sender_id=user.id,
        conversation_id=chat.id,
        sent_at=message.date,
        sender_display_name=user.username,
        sender_given_name=user.first_name,
        sender_family_name=user.last_name,
    )
