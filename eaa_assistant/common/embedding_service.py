"""
Embedding Service

Wraps the hosted embedding model (OpenAI embeddings API) behind a
cache-checked gateway. Built once at startup and injected into the
orchestrator; there is no module-level instance.
"""

import asyncio
import logging
from typing import List, Optional

from .errors import UpstreamError
from .result_cache import EMBEDDING_CACHE_CAPACITY, ResultCache, embedding_key

logger = logging.getLogger("eaa_assistant.common.embedding_service")


class EmbeddingService:
    """
    Converts text to a fixed-length vector via the hosted embedding model.

    Identical text within the cache TTL performs a single upstream call.
    Upstream failures are not retried; they surface as UpstreamError.
    """

    def __init__(
        self,
        client,
        model: str = "text-embedding-ada-002",
        cache: Optional[ResultCache] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize embedding service.

        Args:
            client: AsyncOpenAI client (or any object exposing
                ``embeddings.create(model=..., input=...)``)
            model: Embedding model name
            cache: Embedding cache (created with defaults when omitted)
            timeout: Seconds to wait for the hosted call
        """
        self._client = client
        self._model = model
        self._cache = cache if cache is not None else ResultCache(EMBEDDING_CACHE_CAPACITY, name="embeddings")
        self._timeout = timeout

    @property
    def model(self) -> str:
        return self._model

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def create_embedding(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises:
            UpstreamError: client missing, call failed/timed out, or the
                response carried no vector
        """
        key = embedding_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Embedding cache hit (%d chars)", len(text))
            return cached

        if not self.is_available:
            raise UpstreamError("embedding", "embedding client is not configured")

        try:
            response = await asyncio.wait_for(
                self._client.embeddings.create(model=self._model, input=text),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Embedding call timed out after %.1fs", self._timeout)
            raise UpstreamError("embedding", f"timed out after {self._timeout}s")
        except Exception as e:
            logger.warning("Embedding call failed: %s", e)
            raise UpstreamError("embedding", str(e)) from e

        data = getattr(response, "data", None) or []
        if not data or not getattr(data[0], "embedding", None):
            raise UpstreamError("embedding", "response contained no embedding")

        vector = [float(x) for x in data[0].embedding]
        self._cache.set(key, vector)
        return vector
