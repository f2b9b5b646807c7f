"""Message ingestion pipeline.

Coordinates the per-message flow:
1. Drop malformed messages (no text, sender or conversation)
2. Check the sender against the opt-out set (fails open)
3. Generate an embedding if a provider is available
4. Build the persisted record
5. Insert it, treating an already-ingested message as success

Each message runs this sequence independently. Nothing here orders
messages relative to each other; the unique ``message_id`` constraint
in the store is the only guard against duplicates.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Iterable
from dataclasses import dataclass

from tg_ingest.embeddings import ProviderRegistry
from tg_ingest.logging import get_logger
from tg_ingest.models import IncomingMessage
from tg_ingest.privacy import PrivacyGate
from tg_ingest.records import build_record
from tg_ingest.storage import ConversationStore, InsertStatus

log = get_logger("tg_ingest.pipeline")


class IngestOutcome(enum.StrEnum):
    """Terminal state reached by one message."""

    DROPPED_MALFORMED = "dropped_malformed"
    DROPPED_OPTED_OUT = "dropped_opted_out"
    PERSISTED = "persisted"
    DUPLICATE = "duplicate"
    PERSIST_ERROR = "persist_error"

    @property
    def stored(self) -> bool:
        return self in (IngestOutcome.PERSISTED, IngestOutcome.DUPLICATE)


@dataclass(frozen=True)
class IngestStats:
    """Snapshot for statistics surfaces."""

    total_messages: int
    embeddings_available: bool
    provider: str


_INSERT_OUTCOMES = {
    InsertStatus.INSERTED: IngestOutcome.PERSISTED,
    InsertStatus.DUPLICATE: IngestOutcome.DUPLICATE,
    InsertStatus.FAILED: IngestOutcome.PERSIST_ERROR,
}


class IngestionPipeline:
    """Runs inbound messages through privacy, embedding and persistence."""

    def __init__(
        self,
        *,
        privacy: PrivacyGate,
        registry: ProviderRegistry,
        store: ConversationStore,
    ) -> None:
        self._privacy = privacy
        self._registry = registry
        self._store = store

    @property
    def privacy(self) -> PrivacyGate:
        return self._privacy

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def ingest(self, message: IncomingMessage | None) -> IngestOutcome:
        """Ingest one message. Never raises."""
        try:
            return await self._ingest(message)
        except Exception as exc:
            log.error(
                "ingest_unexpected_error",
                message_id=getattr(message, "message_id", None),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return IngestOutcome.PERSIST_ERROR

    async def _ingest(self, message: IncomingMessage | None) -> IngestOutcome:
        if message is None or not message.is_well_formed:
            log.debug("message_dropped_malformed")
            return IngestOutcome.DROPPED_MALFORMED

        if await self._privacy.is_opted_out(message.sender_id):
            log.debug(
                "message_dropped_opted_out",
                message_id=message.message_id,
                user_id=message.sender_id,
            )
            return IngestOutcome.DROPPED_OPTED_OUT

        vector = None
        if self._registry.is_available():
            vector = await self._registry.embed(message.text)

        record = build_record(message, vector)

        result = await self._store.insert(record)
        outcome = _INSERT_OUTCOMES[result.status]
        log.info(
            "message_ingested" if outcome.stored else "message_dropped_persist_error",
            message_id=message.message_id,
            group_id=message.conversation_id,
            outcome=outcome.value,
            has_vector=vector is not None,
        )
        return outcome

    async def ingest_many(self, messages: Iterable[IncomingMessage]) -> list[IngestOutcome]:
        """Ingest messages concurrently. Completion order is not guaranteed."""
        return list(await asyncio.gather(*(self.ingest(m) for m in messages)))

    async def stats(self) -> IngestStats:
        return IngestStats(
            total_messages=await self._store.count(),
            embeddings_available=self._registry.is_available(),
            provider=self._registry.provider_label(),
        )
