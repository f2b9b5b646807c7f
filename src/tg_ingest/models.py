"""Data models for message ingestion.

All models are plain dataclasses. A vector is a tuple of floats; its
absence is ``None`` and is never represented by an empty tuple.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

Vector = tuple[float, ...]


# ------------------------------------------------------------------
# Inbound
# ------------------------------------------------------------------


@dataclass(frozen=True)
class IncomingMessage:
    """A text message observed in a group conversation.

    Constructed once per inbound update and never stored as-is.
    """

    message_id: int
    text: str
    sender_id: int
    conversation_id: int
    sent_at: datetime
    sender_display_name: str | None = None
    sender_given_name: str | None = None
    sender_family_name: str | None = None

    @property
    def is_well_formed(self) -> bool:
        """Check for non-empty text and identifiable sender and conversation."""
        return (
            bool(self.text and self.text.strip())
            and self.sender_id is not None
            and self.conversation_id is not None
        )


# ------------------------------------------------------------------
# Persisted
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ConversationRecord:
    """A message row in the ``conversations`` table."""

    message_id: int
    text: str
    sender_id: int
    conversation_id: int
    occurred_at: str  # ISO-8601, UTC offset included
    vector: Vector | None = None
    sender_display_name: str | None = None
    sender_given_name: str | None = None
    sender_family_name: str | None = None
    id: int | None = None
    ingested_at: datetime | None = None

    @property
    def has_vector(self) -> bool:
        return self.vector is not None

    def to_row(self) -> dict[str, Any]:
        """Map to column names of the ``conversations`` table."""
        return {
            "message_id": self.message_id,
            "text": self.text,
            "user_id": self.sender_id,
            "group_id": self.conversation_id,
            "timestamp": datetime.fromisoformat(self.occurred_at),
            "vector": self.vector,
            "user_name": self.sender_display_name,
            "user_first_name": self.sender_given_name,
            "user_last_name": self.sender_family_name,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ConversationRecord:
        timestamp = row["timestamp"]
        return cls(
            id=row.get("id"),
            message_id=row["message_id"],
            text=row["text"],
            sender_id=row["user_id"],
            conversation_id=row["group_id"],
            occurred_at=timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp,
            vector=parse_vector(row.get("vector")),
            sender_display_name=row.get("user_name"),
            sender_given_name=row.get("user_first_name"),
            sender_family_name=row.get("user_last_name"),
            ingested_at=row.get("created_at"),
        )


@dataclass(frozen=True)
class OptOutEntry:
    """A row in the ``opt_out_users`` table."""

    sender_id: int
    opted_out_at: datetime
    id: int | None = None


# ------------------------------------------------------------------
# Provider state
# ------------------------------------------------------------------


class ProviderKind(enum.StrEnum):
    OPENAI = "openai"
    GEMINI = "gemini"


class ProviderStatus(enum.StrEnum):
    UNSELECTED = "unselected"
    ACTIVE = "active"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ProviderState:
    """Outcome of the one-time embedding provider selection."""

    status: ProviderStatus
    kind: ProviderKind | None = None
    dimension: int | None = None

    @classmethod
    def unselected(cls) -> ProviderState:
        return cls(ProviderStatus.UNSELECTED)

    @classmethod
    def active(cls, kind: ProviderKind, dimension: int) -> ProviderState:
        return cls(ProviderStatus.ACTIVE, kind, dimension)

    @classmethod
    def unavailable(cls) -> ProviderState:
        return cls(ProviderStatus.UNAVAILABLE)

    @property
    def is_active(self) -> bool:
        return self.status is ProviderStatus.ACTIVE


# ------------------------------------------------------------------
# pgvector text format
# ------------------------------------------------------------------


def format_vector(vector: Vector | None) -> str | None:
    """Render a vector in pgvector's text input format (``[1,2,3]``)."""
    if vector is None:
        return None
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def parse_vector(value: Any) -> Vector | None:
    """Parse a pgvector value returned without a type codec."""
    if value is None:
        return None
    if isinstance(value, str):
        body = value.strip().strip("[]")
        if not body:
            return None
        return tuple(float(part) for part in body.split(","))
    values = tuple(float(v) for v in value)
    return values or None
