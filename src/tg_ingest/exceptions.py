"""Error taxonomy for the ingestion bot.

Only ConfigurationError is allowed to reach the process entry point.
Every other error is raised at the seam that detects it and absorbed by
the component that owns that seam.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for all ingestion errors."""


class ConfigurationError(IngestError):
    """Mandatory configuration is missing or invalid. Fatal at startup."""


class ProviderInitError(IngestError):
    """An embedding backend client could not be constructed."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class EmbeddingGenerationError(IngestError):
    """A single or batch embedding request failed."""


class PrivacyLookupError(IngestError):
    """The opt-out store could not be queried."""


class PersistDuplicateError(IngestError):
    """A record with the same external message id already exists."""

    def __init__(self, message_id: int) -> None:
        super().__init__(f"message {message_id} already ingested")
        self.message_id = message_id


class PersistOtherError(IngestError):
    """Any store failure other than a uniqueness conflict."""


class AnswerGenerationError(IngestError):
    """The chat model could not answer a question about a conversation."""
