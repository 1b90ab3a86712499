"""
Request models and the immutable Query built from /ask requests.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Request bodies
# =============================================================================

class AskRequest(BaseModel):
    """POST /ask body"""
    question: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    dataset_id: Optional[str] = None
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_chunks: Optional[int] = Field(default=None, gt=0)
    stream: bool = False


class ProactiveRequest(BaseModel):
    """POST /agent/proactive-analysis body"""
    currentText: Optional[str] = None
    userId: Optional[str] = None
    sessionId: Optional[str] = None


class SuggestionRequest(BaseModel):
    """POST /agent/ai-suggestions and /suggestions/modern body"""
    userId: Optional[str] = None
    sessionId: Optional[str] = None
    currentQuestion: Optional[str] = None


class ExplainTermRequest(BaseModel):
    """POST /explain-term body"""
    term: Optional[str] = None
    context: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None


# =============================================================================
# Query
# =============================================================================

def new_session_id() -> str:
    return f"session_{uuid.uuid4()}"


@dataclass(frozen=True)
class Query:
    """One validated /ask request with defaults applied"""
    question: str
    dataset_id: str
    similarity_threshold: float
    max_chunks: int
    user_id: str
    session_id: str
