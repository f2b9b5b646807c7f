"""Telegram group message ingestion with optional vector embeddings."""

__version__ = "0.1.0"
