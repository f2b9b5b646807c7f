"""Shared pytest fixtures."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from tg_ingest.config import get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Ensure cached settings never leak between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool that yields an async connection context.

    Returns (pool, conn) where ``pool.acquire()`` used as an async
    context manager yields ``conn``.
    """
    pool = MagicMock()
    conn = AsyncMock()
    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)
    pool.acquire.return_value = ctx
    pool.close = AsyncMock()
    return pool, conn
