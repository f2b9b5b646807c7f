"""Per-sender privacy opt-out.

The opt-out check fails open: when the opt-out store cannot be queried
the sender is treated as not opted out, so an outage of that store
does not silently stop all ingestion.
"""

from __future__ import annotations

from tg_ingest.exceptions import PrivacyLookupError
from tg_ingest.logging import get_logger
from tg_ingest.models import OptOutEntry
from tg_ingest.storage import ConversationStore, OptOutStore

log = get_logger("tg_ingest.privacy")


class PrivacyGate:
    """Answers whether a sender's content is excluded from collection."""

    def __init__(self, opt_outs: OptOutStore, conversations: ConversationStore) -> None:
        self._opt_outs = opt_outs
        self._conversations = conversations

    async def is_opted_out(self, sender_id: int) -> bool:
        """Return True if *sender_id* has opted out, False on lookup failure."""
        try:
            return await self._opt_outs.exists(sender_id)
        except PrivacyLookupError as exc:
            log.warning("opt_out_lookup_failed", user_id=sender_id, error=str(exc))
            return False

    async def opt_out_entry(self, sender_id: int) -> OptOutEntry | None:
        """Return the sender's opt-out entry, None if absent or unreadable."""
        try:
            return await self._opt_outs.get(sender_id)
        except PrivacyLookupError as exc:
            log.warning("opt_out_lookup_failed", user_id=sender_id, error=str(exc))
            return None

    async def opt_out(self, sender_id: int) -> bool:
        """Add *sender_id* to the opt-out set. Repeating it still succeeds."""
        added = await self._opt_outs.add(sender_id)
        if added:
            log.info("user_opted_out", user_id=sender_id)
        return added

    async def stored_message_count(self, sender_id: int) -> int:
        return await self._conversations.count_by_sender(sender_id)

    async def purge_messages(self, sender_id: int) -> int:
        """Delete every stored message from *sender_id* and return how many."""
        return await self._conversations.delete_by_sender(sender_id)
