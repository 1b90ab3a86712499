"""
Retriever - EAA document retrieval and answer composition

Key Components:
- VectorSearchGateway: cache-checked similarity search over the vector store
- trim_chunks: bounds the number of chunks passed to the model
- QuestionSplitter: breaks multi-question messages apart
- AnswerComposer: LLM answer from the trimmed chunks

Pipeline:
1. Split the message into questions
2. Embed each question and search for similar chunks
3. Trim chunks by similarity
4. Compose the answer with the chat model
"""

from .formatting import format_rag_context, format_sources
from .question_splitter import QuestionSplitter, SplitResult, smart_split
from .synthesizer import AnswerComposer, ComposedAnswer
from .trimmer import trim_chunks
from .vector_search import (
    Chunk,
    InMemoryVectorStore,
    Performance,
    SearchResult,
    SupabaseVectorStore,
    VectorSearchGateway,
    VectorStore,
)

__all__ = [
    "format_rag_context",
    "format_sources",
    "QuestionSplitter",
    "SplitResult",
    "smart_split",
    "AnswerComposer",
    "ComposedAnswer",
    "trim_chunks",
    "Chunk",
    "InMemoryVectorStore",
    "Performance",
    "SearchResult",
    "SupabaseVectorStore",
    "VectorSearchGateway",
    "VectorStore",
]
