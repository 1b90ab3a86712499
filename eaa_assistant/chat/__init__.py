"""
Chat - HTTP surface and request orchestration

Components:
- AskOrchestrator: /ask pipeline (single and multi-question, SSE)
- fast_paths: replies that skip retrieval
- server: FastAPI application
"""

from .fast_paths import FastPathReply, match_fast_path
from .models import AskRequest, Query
from .orchestrator import AnswerResult, AskOrchestrator, PipelineState

__all__ = [
    "FastPathReply",
    "match_fast_path",
    "AskRequest",
    "Query",
    "AnswerResult",
    "AskOrchestrator",
    "PipelineState",
]
