"""Text embeddings for retrieval, from a local model or a remote provider."""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from collections.abc import Sequence
from typing import Protocol

from inference_gateway.errors import EngineError, GatewayError, UnauthorizedError, UnsupportedFeatureError
from inference_gateway.providers.base import BaseProvider
from inference_gateway.types import ApiKeyLookup

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


class NativeEmbeddingEngine(Protocol):
    def embed(self, text: str) -> list[float]: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 for zero vectors or a length mismatch."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na <= 0.0 or nb <= 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / (na * nb)))


class EmbeddingService:
    """Embeds text with exactly one backend.

    Local engines are not thread-safe, so calls into them are serialized
    and run on a worker thread. Remote calls go through the provider's
    ``/embeddings`` endpoint with the key from ``api_key_lookup``.
    """

    def __init__(
        self,
        *,
        local: NativeEmbeddingEngine | None = None,
        provider: BaseProvider | None = None,
        api_key_lookup: ApiKeyLookup | None = None,
        model: str = DEFAULT_EMBEDDING_MODEL,
    ) -> None:
        if (local is None) == (provider is None):
            raise ValueError("EmbeddingService needs exactly one of 'local' or 'provider'")
        if provider is not None and api_key_lookup is None:
            raise ValueError("Remote embeddings need an api_key_lookup")
        self._local = local
        self._provider = provider
        self._api_key_lookup = api_key_lookup
        self.model = model
        self._lock = threading.Lock()

    async def generate_embedding(self, text: str) -> list[float]:
        vectors = await self.generate_embeddings([text])
        return vectors[0]

    async def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        if self._provider is not None:
            return await self._remote_embeddings(self._provider, texts)
        return await asyncio.to_thread(self._local_embeddings, list(texts))

    cosine_similarity = staticmethod(cosine_similarity)

    async def _remote_embeddings(self, provider: BaseProvider, texts: Sequence[str]) -> list[list[float]]:
        lookup = self._api_key_lookup
        api_key = lookup(provider.provider_id) if lookup is not None else None
        if not api_key:
            raise UnauthorizedError(provider.name, f"No API key configured for {provider.name}")
        logger.debug("Requesting %d embeddings from %s/%s", len(texts), provider.name, self.model)
        return await provider.create_embeddings(api_key, self.model, texts)

    def _local_embeddings(self, texts: list[str]) -> list[list[float]]:
        if self._local is None:
            raise UnsupportedFeatureError("local embeddings")
        with self._lock:
            try:
                return [self._local.embed(text) for text in texts]
            except GatewayError:
                raise
            except Exception as exc:
                logger.error("Local embedding failed: %s", exc)
                raise EngineError(f"Embedding failed: {exc}") from exc
