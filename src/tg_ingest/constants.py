"""Centralized constants for the ingestion bot."""

# Embedding dimensions per backend
OPENAI_EMBEDDING_DIMENSION = 1536  # text-embedding-3-small
GEMINI_EMBEDDING_DIMENSION = 768  # embedding-001

# Label shown on statistics surfaces when no provider is active
NO_PROVIDER_LABEL = "None"

# Telegram
INGESTED_CHAT_TYPES = frozenset({"group", "supergroup"})

# Storage
DEFAULT_RECENT_LIMIT = 20
