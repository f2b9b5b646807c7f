"""Embedding backends and the process-wide provider registry.

Two cloud backends are supported, tried in a fixed priority order:

1. OpenAI (``text-embedding-3-small``, 1536 dimensions)
2. Gemini (``embedding-001``, 768 dimensions)

Selection happens once at startup. When neither backend can be built,
the registry reports itself unavailable and every embed call returns
``None`` without touching the network.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import openai
from google import genai  # type: ignore[attr-defined]

from tg_ingest.constants import (
    GEMINI_EMBEDDING_DIMENSION,
    NO_PROVIDER_LABEL,
    OPENAI_EMBEDDING_DIMENSION,
)
from tg_ingest.exceptions import EmbeddingGenerationError, ProviderInitError
from tg_ingest.logging import get_logger
from tg_ingest.models import ProviderKind, ProviderState, Vector

if TYPE_CHECKING:
    from tg_ingest.config import Settings

log = get_logger("tg_ingest.embeddings")

EMBEDDING_DIMENSIONS: dict[ProviderKind, int] = {
    ProviderKind.OPENAI: OPENAI_EMBEDDING_DIMENSION,
    ProviderKind.GEMINI: GEMINI_EMBEDDING_DIMENSION,
}


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class EmbeddingsClient(ABC):
    """Abstract base class for embeddings clients.

    Backends raise on failure; the registry converts failures to ``None``.
    """

    kind: ProviderKind

    @abstractmethod
    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        raise NotImplementedError

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float] | None]:
        """Generate embeddings for multiple texts in parallel.

        A failed item yields ``None`` at its position.
        """
        results = await asyncio.gather(
            *[self.embed_text(text) for text in texts], return_exceptions=True
        )
        batch: list[list[float] | None] = []
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                log.debug("batch_item_embedding_failed", index=index, error=str(result))
                batch.append(None)
            else:
                batch.append(result)
        return batch

    async def close(self) -> None:
        """Close the client (no-op by default)."""
        return


class OpenAIEmbeddings(EmbeddingsClient):
    """Client for generating embeddings using OpenAI."""

    kind = ProviderKind.OPENAI

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = OPENAI_EMBEDDING_DIMENSION,
    ) -> None:
        """Initialize the OpenAI embeddings client."""
        if not api_key:
            raise ValueError("OpenAI API key required for OpenAI embeddings")
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        self._dimensions = dimensions
        log.info("openai_embeddings_initialized", model=model, dimensions=dimensions)

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding using OpenAI.

        Args:
            text: The text to embed.

        Returns:
            A list of floats representing the embedding vector.
        """
        response = await self._client.embeddings.create(
            model=self._model,
            input=text,
            dimensions=self._dimensions,
        )
        if not response.data:
            raise EmbeddingGenerationError("OpenAI returned no embedding data")
        return list(response.data[0].embedding)

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float] | None]:
        """Embed all texts in a single request.

        The request succeeds or fails as a whole; results are placed by
        the ``index`` the API reports for each item.
        """
        response = await self._client.embeddings.create(
            model=self._model,
            input=list(texts),
            dimensions=self._dimensions,
        )
        batch: list[list[float] | None] = [None] * len(texts)
        for item in response.data:
            if 0 <= item.index < len(batch):
                batch[item.index] = list(item.embedding)
        return batch

    async def close(self) -> None:
        """Close the OpenAI client."""
        await self._client.close()


class GeminiEmbeddings(EmbeddingsClient):
    """Client for generating embeddings using Gemini."""

    kind = ProviderKind.GEMINI

    def __init__(self, api_key: str, model: str = "models/embedding-001") -> None:
        """Initialize the Gemini embeddings client."""
        if not api_key:
            raise ValueError("Gemini API key required for Gemini embeddings")
        self._client = genai.Client(api_key=api_key)
        self._model = model
        log.info("gemini_embeddings_initialized", model=model)

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding using Gemini.

        Args:
            text: The text to embed.

        Returns:
            A list of floats representing the embedding vector.
        """
        # Synchronous SDK call, run off the event loop
        result = await asyncio.to_thread(
            self._client.models.embed_content,
            model=self._model,
            contents=text,
        )
        if not result.embeddings:
            raise EmbeddingGenerationError("Gemini returned no embeddings")
        return list(result.embeddings[0].values or [])


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of trying to construct one backend."""

    client: EmbeddingsClient | None = None
    error: ProviderInitError | None = None

    @property
    def ok(self) -> bool:
        return self.client is not None


@dataclass(frozen=True)
class ProviderCandidate:
    """A backend that may be selected, in priority order."""

    kind: ProviderKind
    dimension: int
    factory: Callable[[], ProviderResult]


def _attempt(
    kind: ProviderKind,
    api_key: str | None,
    build: Callable[[str], EmbeddingsClient],
) -> Callable[[], ProviderResult]:
    def factory() -> ProviderResult:
        if not api_key:
            return ProviderResult(error=ProviderInitError(kind.value, "no API key configured"))
        try:
            return ProviderResult(client=build(api_key))
        except Exception as exc:
            return ProviderResult(error=ProviderInitError(kind.value, str(exc)))

    return factory


def build_candidates(
    *,
    openai_api_key: str | None = None,
    gemini_api_key: str | None = None,
    openai_model: str = "text-embedding-3-small",
    gemini_model: str = "models/embedding-001",
) -> list[ProviderCandidate]:
    """Return the backends to try, highest priority first."""
    return [
        ProviderCandidate(
            kind=ProviderKind.OPENAI,
            dimension=OPENAI_EMBEDDING_DIMENSION,
            factory=_attempt(
                ProviderKind.OPENAI,
                openai_api_key,
                lambda key: OpenAIEmbeddings(key, model=openai_model),
            ),
        ),
        ProviderCandidate(
            kind=ProviderKind.GEMINI,
            dimension=GEMINI_EMBEDDING_DIMENSION,
            factory=_attempt(
                ProviderKind.GEMINI,
                gemini_api_key,
                lambda key: GeminiEmbeddings(key, model=gemini_model),
            ),
        ),
    ]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ProviderRegistry:
    """Fronts the single embedding backend selected at startup.

    The registry is immutable once built, so concurrent readers need no
    locking. None of its embed methods raise.
    """

    def __init__(self, client: EmbeddingsClient | None, state: ProviderState) -> None:
        self._client = client
        self._state = state

    @classmethod
    def select(cls, candidates: Sequence[ProviderCandidate]) -> ProviderRegistry:
        """Walk *candidates* in order and keep the first that builds."""
        for candidate in candidates:
            result = candidate.factory()
            if result.ok:
                log.info(
                    "embeddings_provider_selected",
                    provider=candidate.kind.value,
                    dimension=candidate.dimension,
                )
                return cls(result.client, ProviderState.active(candidate.kind, candidate.dimension))
            log.warning(
                "embeddings_provider_init_failed",
                provider=candidate.kind.value,
                error=result.error.reason if result.error else "unknown",
            )

        log.warning(
            "no_embeddings_provider",
            detail="messages will be ingested without vector embeddings",
        )
        return cls.disabled()

    @classmethod
    def from_settings(cls, settings: Settings) -> ProviderRegistry:
        """Select a backend using the configured credentials."""
        return cls.select(
            build_candidates(
                openai_api_key=(
                    settings.openai_api_key.get_secret_value()
                    if settings.openai_api_key
                    else None
                ),
                gemini_api_key=(
                    settings.gemini_api_key.get_secret_value()
                    if settings.gemini_api_key
                    else None
                ),
                openai_model=settings.openai_embedding_model,
                gemini_model=settings.gemini_embedding_model,
            )
        )

    @classmethod
    def disabled(cls) -> ProviderRegistry:
        """A registry with no backend."""
        return cls(None, ProviderState.unavailable())

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def dimension(self) -> int | None:
        return self._state.dimension

    def is_available(self) -> bool:
        """Return True when a backend is active."""
        return self._state.is_active and self._client is not None

    def provider_label(self) -> str:
        """Human-readable name of the active backend, for statistics only."""
        if not self.is_available() or self._state.kind is None:
            return NO_PROVIDER_LABEL
        return self._state.kind.value.upper()

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> Vector | None:
        """Embed *text*, or return None when unavailable or on any failure."""
        if not self.is_available():
            return None
        assert self._client is not None  # noqa: S101

        try:
            values = await self._client.embed_text(text)
        except Exception as exc:
            log.warning(
                "embedding_generation_failed",
                provider=self.provider_label(),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        return self._normalise(values)

    async def embed_batch(self, texts: Sequence[str]) -> list[Vector | None]:
        """Embed *texts*, keeping positional correspondence with the input."""
        if not self.is_available() or not texts:
            return [None] * len(texts)
        assert self._client is not None  # noqa: S101

        try:
            raw = await self._client.embed_batch(texts)
        except Exception as exc:
            log.warning(
                "batch_embedding_generation_failed",
                provider=self.provider_label(),
                count=len(texts),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return [None] * len(texts)

        if len(raw) != len(texts):
            log.warning(
                "batch_embedding_length_mismatch",
                provider=self.provider_label(),
                expected=len(texts),
                received=len(raw),
            )
            raw = (list(raw) + [None] * len(texts))[: len(texts)]
        return [self._normalise(values) for values in raw]

    def _normalise(self, values: Sequence[float] | None) -> Vector | None:
        if not values:
            return None
        if self.dimension is not None and len(values) != self.dimension:
            log.warning(
                "embedding_dimension_mismatch",
                provider=self.provider_label(),
                expected=self.dimension,
                received=len(values),
            )
            return None
        return tuple(float(v) for v in values)

    async def close(self) -> None:
        """Close the active backend, if any."""
        if self._client is not None:
            await self._client.close()
