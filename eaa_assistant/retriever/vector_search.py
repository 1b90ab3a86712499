"""
Vector Search

Retrieves document chunks similar to a query embedding from the managed
vector store (Supabase `match_documents` RPC over PostgREST), with a
search-result cache in front of it.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx
import numpy as np

from ..common.errors import UpstreamError
from ..common.result_cache import SEARCH_CACHE_CAPACITY, ResultCache, search_key
from .formatting import format_sources
from .trimmer import trim_chunks

logger = logging.getLogger("eaa_assistant.retriever.vector_search")


def elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


@dataclass(frozen=True)
class Chunk:
    """A retrieved document chunk"""
    id: str
    content: str
    similarity: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    section_title: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Chunk":
        """Build from a store row; similarity is clamped into [0, 1]."""
        metadata = row.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}
        try:
            similarity = float(row.get("similarity") or 0.0)
        except (TypeError, ValueError):
            similarity = 0.0
        return cls(
            id=str(row.get("id", "")),
            content=row.get("content") or row.get("text") or "",
            similarity=max(0.0, min(1.0, similarity)),
            metadata=metadata,
            section_title=row.get("section_title"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "similarity": self.similarity,
            "metadata": self.metadata,
            "section_title": self.section_title,
        }


@dataclass
class Performance:
    """Per-phase durations in milliseconds"""
    embedding_ms: int = 0
    search_ms: int = 0
    generate_ms: int = 0
    total_ms: int = 0

    def __add__(self, other: "Performance") -> "Performance":
        return Performance(
            embedding_ms=self.embedding_ms + other.embedding_ms,
            search_ms=self.search_ms + other.search_ms,
            generate_ms=self.generate_ms + other.generate_ms,
            total_ms=self.total_ms + other.total_ms,
        )

    @property
    def phase_sum(self) -> int:
        return self.embedding_ms + self.search_ms + self.generate_ms

    def to_dict(self) -> Dict[str, int]:
        return {
            "embedding_ms": self.embedding_ms,
            "search_ms": self.search_ms,
            "generate_ms": self.generate_ms,
            "total_ms": self.total_ms,
        }


@dataclass
class SearchResult:
    """Trimmed chunks, their display sources and timings for one query"""
    chunks: List[Chunk]
    sources: List[Dict[str, Any]]
    performance: Performance
    cache_hit: bool = False


# =============================================================================
# Vector stores
# =============================================================================

class VectorStore(ABC):
    """Interface for similarity search backends."""

    @abstractmethod
    async def match(
        self,
        embedding: Sequence[float],
        dataset_id: str,
        similarity_threshold: float,
        limit: int,
    ) -> List[Chunk]:
        """Return chunks ranked by descending similarity."""
        pass

    async def close(self) -> None:
        return None


class SupabaseVectorStore(VectorStore):
    """
    Calls the Supabase `match_documents` SQL function through PostgREST.

    The threshold and count are passed as hints; the function decides how
    strictly to honor them.
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        function_name: str = "match_documents",
        dataset_param: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            url: Supabase project URL
            service_key: Service-role key
            function_name: RPC name
            dataset_param: RPC argument that receives the dataset id, when
                the deployed function supports dataset filtering
            http_client: Shared client (created when omitted)
            timeout: Per-request timeout in seconds
        """
        self._rpc_url = f"{url.rstrip('/')}/rest/v1/rpc/{function_name}"
        self._dataset_param = dataset_param
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    async def match(
        self,
        embedding: Sequence[float],
        dataset_id: str,
        similarity_threshold: float,
        limit: int,
    ) -> List[Chunk]:
        body: Dict[str, Any] = {
            "query_embedding": list(embedding),
            "similarity_threshold": similarity_threshold,
            "match_count": limit,
        }
        if self._dataset_param:
            body[self._dataset_param] = dataset_id

        response = await self._http.post(self._rpc_url, json=body, headers=self._headers)
        if response.status_code >= 400:
            raise UpstreamError(
                "vector_search",
                f"match_documents returned HTTP {response.status_code}: {response.text[:200]}",
            )
        rows = response.json() or []
        chunks = [Chunk.from_row(row) for row in rows if isinstance(row, dict)]
        chunks.sort(key=lambda c: c.similarity, reverse=True)
        return chunks

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()


class InMemoryVectorStore(VectorStore):
    """
    Cosine-similarity search over documents held in memory.

    Used in development (no Supabase credentials) and in tests.
    """

    def __init__(self):
        self._documents: Dict[str, List[Dict[str, Any]]] = {}

    def add(
        self,
        dataset_id: str,
        doc_id: str,
        content: str,
        embedding: Sequence[float],
        metadata: Optional[Dict[str, Any]] = None,
        section_title: Optional[str] = None,
    ) -> None:
        vector = np.asarray(embedding, dtype=float)
        norm = np.linalg.norm(vector)
        self._documents.setdefault(dataset_id, []).append({
            "id": doc_id,
            "content": content,
            "vector": vector / norm if norm else vector,
            "metadata": metadata or {},
            "section_title": section_title,
        })

    def count(self, dataset_id: str) -> int:
        return len(self._documents.get(dataset_id, []))

    async def match(
        self,
        embedding: Sequence[float],
        dataset_id: str,
        similarity_threshold: float,
        limit: int,
    ) -> List[Chunk]:
        docs = self._documents.get(dataset_id, [])
        if not docs:
            return []

        query = np.asarray(embedding, dtype=float)
        norm = np.linalg.norm(query)
        if norm:
            query = query / norm
        matrix = np.vstack([d["vector"] for d in docs])
        scores = matrix @ query

        order = np.argsort(scores)[::-1]
        chunks = []
        for idx in order:
            score = float(scores[idx])
            if score < similarity_threshold:
                break
            doc = docs[idx]
            chunks.append(Chunk.from_row({**doc, "similarity": score}))
            if len(chunks) >= limit:
                break
        return chunks


# =============================================================================
# Gateway
# =============================================================================

class VectorSearchGateway:
    """
    Cache-checked similarity search.

    Features:
    - Search cache keyed by dataset, threshold, max_chunks and a rounded
      embedding fingerprint
    - Chunk trimming on both hit and miss
    - Per-phase timing (search_ms is 0 on a cache hit)
    """

    def __init__(
        self,
        store: VectorStore,
        cache: Optional[ResultCache] = None,
        timeout: float = 30.0,
    ):
        self._store = store
        self._cache = cache if cache is not None else ResultCache(SEARCH_CACHE_CAPACITY, name="search")
        self._timeout = timeout

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def store(self) -> VectorStore:
        return self._store

    async def search_similar_chunks(
        self,
        embedding: Sequence[float],
        dataset_id: str,
        similarity_threshold: float,
        max_chunks: int,
        *,
        embedding_ms: int = 0,
    ) -> SearchResult:
        """
        Search for chunks similar to the embedding.

        Args:
            embedding: Query vector
            dataset_id: Dataset to search
            similarity_threshold: Minimum similarity hint for the store
            max_chunks: Result count hint for the store
            embedding_ms: Time the caller spent producing the embedding

        Returns:
            SearchResult with trimmed chunks and sources

        Raises:
            UpstreamError: the store call failed or timed out
        """
        embedding_timer = time.perf_counter()
        key = search_key(embedding, dataset_id, similarity_threshold, max_chunks)

        cached = self._cache.get(key)
        if cached is not None:
            trimmed = trim_chunks(cached)
            embed_total = embedding_ms + elapsed_ms(embedding_timer)
            logger.debug("Search cache hit (%s, %d chunks)", dataset_id, len(trimmed))
            return SearchResult(
                chunks=trimmed,
                sources=format_sources(trimmed),
                performance=Performance(
                    embedding_ms=embed_total,
                    search_ms=0,
                    generate_ms=0,
                    total_ms=embed_total,
                ),
                cache_hit=True,
            )

        search_timer = time.perf_counter()
        try:
            chunks = await asyncio.wait_for(
                self._store.match(embedding, dataset_id, similarity_threshold, max_chunks),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Vector search timed out after %.1fs", self._timeout)
            raise UpstreamError("vector_search", f"timed out after {self._timeout}s")
        except UpstreamError:
            raise
        except Exception as e:
            logger.error("Vector search error: %s", e, exc_info=True)
            raise UpstreamError("vector_search", str(e)) from e
        search_ms = elapsed_ms(search_timer)

        self._cache.set(key, chunks)
        trimmed = trim_chunks(chunks)
        logger.info(
            "Vector search: %d chunks (%d after trim) in %dms",
            len(chunks), len(trimmed), search_ms,
        )

        return SearchResult(
            chunks=trimmed,
            sources=format_sources(trimmed),
            performance=Performance(
                embedding_ms=embedding_ms,
                search_ms=search_ms,
                generate_ms=0,
                total_ms=embedding_ms + search_ms,
            ),
        )
