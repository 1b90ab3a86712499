"""
EAA Assistant Common Module

Shared infrastructure for the retrieval pipeline and the auxiliary agents.
"""

from .config import AssistantConfig, load_config
from .embedding_service import EmbeddingService
from .errors import (
    AssistantError,
    InternalError,
    NotFoundError,
    PayloadTooLargeError,
    PipelineError,
    UpstreamError,
    ValidationError,
)
from .llm_client import LLMClient
from .result_cache import ResultCache, embedding_key, search_key

__all__ = [
    "AssistantConfig",
    "load_config",
    "EmbeddingService",
    "AssistantError",
    "InternalError",
    "NotFoundError",
    "PayloadTooLargeError",
    "PipelineError",
    "UpstreamError",
    "ValidationError",
    "LLMClient",
    "ResultCache",
    "embedding_key",
    "search_key",
]
