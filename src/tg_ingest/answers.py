"""Question answering over recently ingested group messages.

Backs the private ``/ask <group_id> <question>`` command: the most recent
messages of a group are rendered into a prompt and sent to an OpenAI
chat model. Requires an OpenAI key; without one the command is disabled.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import openai

from tg_ingest.constants import DEFAULT_RECENT_LIMIT
from tg_ingest.exceptions import AnswerGenerationError
from tg_ingest.logging import get_logger
from tg_ingest.models import ConversationRecord
from tg_ingest.storage import ConversationStore

if TYPE_CHECKING:
    from tg_ingest.config import Settings

log = get_logger("tg_ingest.answers")

SYSTEM_PROMPT = "You are a helpful assistant that answers questions about Telegram group data."


def build_prompt(records: Sequence[ConversationRecord], question: str) -> str:
    """Render *records* as context lines followed by *question*."""
    lines = []
    for record in records:
        author = record.sender_display_name or record.sender_given_name or "User"
        lines.append(
            f"[{record.occurred_at}] {author} (Group ID: {record.conversation_id}): "
            f"{record.text}"
        )
    context = "\n".join(lines)
    return (
        f"Context (recent messages with user and group info):\n{context}\n\n"
        f"Question: {question}\n"
        "Answer (reference the users and context above in your response):"
    )


class QuestionAnswerer:
    """Answers questions about a group from its most recent messages."""

    def __init__(
        self,
        store: ConversationStore,
        api_key: str,
        model: str = "gpt-4",
        context_size: int = DEFAULT_RECENT_LIMIT,
        max_tokens: int = 512,
        temperature: float = 0.7,
    ) -> None:
        self._store = store
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        self._context_size = context_size
        self._max_tokens = max_tokens
        self._temperature = temperature
        log.info("question_answerer_initialized", model=model, context_size=context_size)

    @classmethod
    def from_settings(
        cls, settings: Settings, store: ConversationStore
    ) -> QuestionAnswerer | None:
        """Build an answerer, or return None when no OpenAI key is configured."""
        if settings.openai_api_key is None:
            log.info("question_answering_disabled", reason="no OpenAI API key")
            return None
        return cls(
            store,
            api_key=settings.openai_api_key.get_secret_value(),
            model=settings.openai_chat_model,
        )

    async def ask(self, group_id: int, question: str) -> str | None:
        """Answer *question* about *group_id*.

        Returns None when nothing has been stored for the group. Raises
        AnswerGenerationError when the model call fails.
        """
        records = await self._store.recent(group_id, limit=self._context_size)
        if not records:
            return None

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(records, question)},
                ],
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
        except openai.OpenAIError as exc:
            log.error("answer_generation_failed", group_id=group_id, error=str(exc))
            raise AnswerGenerationError(str(exc)) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise AnswerGenerationError("OpenAI returned an empty answer")

        log.info("question_answered", group_id=group_id, context_messages=len(records))
        return content.strip()

    async def close(self) -> None:
        await self._client.close()
