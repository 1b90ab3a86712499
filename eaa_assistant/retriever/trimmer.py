"""
Chunk Trimmer

Bounds prompt size by truncating retrieved chunks. A very strong top match
needs little supporting context; a weaker one gets more.
"""

from typing import Any, List, Sequence

HIGH_SIMILARITY = 0.9
HIGH_SIMILARITY_LIMIT = 3
DEFAULT_LIMIT = 5


def _similarity(chunk: Any) -> float:
    if isinstance(chunk, dict):
        value = chunk.get("similarity", 0.0)
    else:
        value = getattr(chunk, "similarity", 0.0)
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0


def trim_chunks(chunks: Sequence[Any]) -> List[Any]:
    """
    Truncate chunks that arrive sorted by descending similarity.

    Keeps at most 3 when the top similarity exceeds 0.9, otherwise at most 5.
    Order is preserved and nothing is added.
    """
    if not chunks:
        return []
    limit = HIGH_SIMILARITY_LIMIT if _similarity(chunks[0]) > HIGH_SIMILARITY else DEFAULT_LIMIT
    return list(chunks[:limit])
