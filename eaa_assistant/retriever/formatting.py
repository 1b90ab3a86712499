"""
Formatting of retrieved chunks

- format_sources: display metadata for the client's source list
- render_content: flattens structured chunk content into readable text
- format_rag_context: the retrieval-augmented prompt body
"""

import json
import posixpath
from typing import Any, Dict, List, Sequence

SOURCE_MIN_SIMILARITY = 0.8
SOURCE_FALLBACK_COUNT = 3
DEFAULT_RELEVANCE = 0.7
PREVIEW_LENGTH = 150
UNTITLED = "Source without title"

NO_RESULTS_ANSWER = (
    "Sorry, I could not find information for your query in the EAA knowledge "
    "base. Please try rephrasing your question or ask about a specific EAA "
    "requirement."
)

RAG_INSTRUCTION = """You are an expert on the European Accessibility Act (EAA) and web accessibility. Use only the information from the excerpts provided to answer the user's question.

IMPORTANT: If the excerpts contain lists or structured data, convert them into readable text for the user.

If the excerpts do not contain the information needed, say so politely and suggest asking another question. Do not make up information."""

RAG_CLOSING = (
    "Give a structured, informative answer based on the excerpts. Answer in "
    "complete sentences and in a friendly manner. Do not mention the excerpts "
    "or sources in your answer."
)


def _get(chunk: Any, name: str, default: Any = None) -> Any:
    if isinstance(chunk, dict):
        return chunk.get(name, default)
    return getattr(chunk, name, default)


def render_content(content: Any) -> str:
    """Turn list/dict chunk content into text instead of a JSON dump."""
    if isinstance(content, str):
        return content
    if content is None:
        return "No information available"
    if isinstance(content, (list, tuple)):
        if not content:
            return "[]"
        lines = []
        for idx, item in enumerate(content, start=1):
            if isinstance(item, dict):
                entries = ", ".join(f"{k}: {render_content(v) if isinstance(v, (dict, list)) else v}"
                                    for k, v in item.items())
                lines.append(f"{idx}. {{ {entries} }}")
            else:
                lines.append(f"{idx}. {item}")
        return "\n".join(lines)
    if isinstance(content, dict):
        lines = []
        for key, value in content.items():
            if isinstance(value, (dict, list)):
                nested = render_content(value).replace("\n", "\n  ")
                lines.append(f"{key}:\n  {nested}")
            else:
                lines.append(f"{key}: {value}")
        return "\n".join(lines)
    return str(content)


def _source_title(chunk: Any) -> str:
    metadata = _get(chunk, "metadata") or {}
    for candidate in (
        _get(chunk, "section_title"),
        metadata.get("title"),
        metadata.get("section_title"),
        metadata.get("source"),
    ):
        if candidate:
            return str(candidate)
    path = metadata.get("path")
    if path:
        return posixpath.basename(str(path).rstrip("/")) or str(path)
    chunk_id = _get(chunk, "id")
    if chunk_id:
        return f"Section {str(chunk_id)[:4]}"
    return UNTITLED


def _preview(content: Any) -> str:
    if isinstance(content, str):
        return content[:PREVIEW_LENGTH]
    if content is None:
        return ""
    try:
        return json.dumps(content, ensure_ascii=False)[:PREVIEW_LENGTH]
    except (TypeError, ValueError):
        return str(content)[:PREVIEW_LENGTH]


def format_sources(chunks: Sequence[Any]) -> List[Dict[str, Any]]:
    """
    Build source entries for the client.

    Chunks with similarity >= 0.8 are listed; when none qualify, the first
    three are used instead.
    """
    if not chunks:
        return []

    selected = [c for c in chunks if (_get(c, "similarity") or 0) >= SOURCE_MIN_SIMILARITY]
    if not selected:
        selected = list(chunks[:SOURCE_FALLBACK_COUNT])

    return [
        {
            "id": _get(chunk, "id"),
            "title": _source_title(chunk),
            "relevance": _get(chunk, "similarity") or DEFAULT_RELEVANCE,
            "text_preview": _preview(_get(chunk, "content")),
        }
        for chunk in selected
    ]


def format_rag_context(chunks: Sequence[Any], question: str, memory_context: str = "") -> str:
    """Prompt body: instruction, numbered excerpts, optional memory, question."""
    if not chunks:
        return f'User question: "{question}"\n\nNo relevant information was found in the knowledge base.'

    excerpts = "\n\n".join(
        f"Excerpt {idx}:\n{render_content(_get(chunk, 'content'))}"
        for idx, chunk in enumerate(chunks, start=1)
    )
    parts = [RAG_INSTRUCTION, f"Knowledge base context:\n{excerpts}"]
    if memory_context:
        parts.append(f"What we know about this user:\n{memory_context}")
    parts.append(f'User question: "{question}"')
    parts.append(RAG_CLOSING)
    return "\n\n".join(parts)
