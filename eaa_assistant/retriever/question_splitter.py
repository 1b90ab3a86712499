"""
Question Splitter

Decides whether a user message holds one question or several and, when it
holds several, breaks it into independent sub-questions. Cheap heuristics
run first; the chat model is only consulted when punctuation does not
settle it.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..common.errors import UpstreamError
from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_json, string_list

logger = logging.getLogger("eaa_assistant.retriever.question_splitter")

SHORT_QUESTION_LENGTH = 30
MIN_PART_LENGTH = 5

# Interrogatives and request verbs (English and Russian)
QUESTION_KEYWORDS = [
    "what", "how", "where", "when", "why", "who", "which", "whose", "whom",
    "need", "want", "should", "must", "required", "tell", "explain", "help",
    "interested", "provide",
    "что", "как", "где", "когда", "почему", "зачем", "кто", "какой", "какая",
    "какое", "какие", "чей", "который", "нужно", "надо", "необходимо",
    "требуется", "хочу", "интересует", "расскажи", "объясни", "помоги",
    "подскажи",
]

_KEYWORD_RE = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in QUESTION_KEYWORDS) + r")\b",
    re.IGNORECASE | re.UNICODE,
)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+\s+")
_QUESTION_RE = re.compile(r"[^?]+\?")
_COMPLEX_SPLIT_RE = re.compile(r"(?<=\?)|(?<=\"),\s*(?=\")|(?<=\w),\s*(?=\w)")

SPLIT_SYSTEM_PROMPT = "You are an assistant that helps break down long user queries into unique questions."

SPLIT_PROMPT = """Break this text into unique, non-duplicating questions. Each question should be a separate element of the "questions" array.

IMPORTANT: If the text contains multiple questions, break them down even if they are related in meaning. Pay attention to question marks and semantic divisions. If the text is a single question, return it as the only element.

Respond with JSON only: {{"questions": ["question 1", "question 2"]}}

Text: {text}"""


class SplitMethod(str, Enum):
    """How the final question list was produced"""
    SINGLE = "single"
    PUNCTUATION = "punctuation"
    SEMANTIC = "semantic"
    HEURISTIC = "heuristic"


@dataclass
class SplitResult:
    """Outcome of question splitting"""
    original: str
    questions: List[str] = field(default_factory=list)
    method: SplitMethod = SplitMethod.SINGLE

    @property
    def is_multiple(self) -> bool:
        return len(self.questions) > 1


def is_short_or_single_question(text: str) -> bool:
    """
    Heuristic single-question check.

    Multiple when any of: more than one '?', more than one question keyword,
    more than one sentence. Anything under 30 chars is single.
    """
    if len(text) < SHORT_QUESTION_LENGTH:
        return True
    if text.count("?") > 1:
        return False
    if len(set(m.lower() for m in _KEYWORD_RE.findall(text))) > 1:
        return False
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
    if len(sentences) > 1:
        return False
    return True


def split_complex_query(query: str) -> List[str]:
    """Split on question marks and on commas between words; dedupe in order."""
    parts = []
    seen = set()
    for raw in _COMPLEX_SPLIT_RE.split(query):
        part = raw.strip().strip('"').strip()
        if len(part) <= MIN_PART_LENGTH or part in seen:
            continue
        seen.add(part)
        parts.append(part)
    return parts


def _dedupe(questions: List[str]) -> List[str]:
    seen = set()
    result = []
    for q in questions:
        if q not in seen:
            seen.add(q)
            result.append(q)
    return result


class QuestionSplitter:
    """
    Splits multi-question messages.

    Order of attempts:
    1. Heuristic single check (no split)
    2. Split on question marks
    3. Semantic split by the chat model
    4. Comma/question-mark heuristic split
    """

    def __init__(self, llm: Optional[LLMClient] = None):
        self._llm = llm

    async def split(self, text: str) -> SplitResult:
        text = text.strip()
        if is_short_or_single_question(text):
            return SplitResult(original=text, questions=[text], method=SplitMethod.SINGLE)

        parts = [p.strip() for p in _QUESTION_RE.findall(text) if len(p.strip()) > 2]
        if len(parts) > 1:
            return SplitResult(original=text, questions=_dedupe(parts), method=SplitMethod.PUNCTUATION)

        semantic = await self._semantic_split(text)
        if semantic:
            return SplitResult(original=text, questions=semantic, method=SplitMethod.SEMANTIC)

        heuristic = split_complex_query(text)
        if heuristic:
            return SplitResult(original=text, questions=heuristic, method=SplitMethod.HEURISTIC)

        return SplitResult(original=text, questions=[text], method=SplitMethod.SINGLE)

    async def _semantic_split(self, text: str) -> List[str]:
        if not self._llm or not self._llm.is_available:
            return []
        try:
            raw = await self._llm.generate(
                SPLIT_PROMPT.format(text=text),
                system=SPLIT_SYSTEM_PROMPT,
                temperature=0.0,
                max_tokens=400,
            )
        except UpstreamError as e:
            logger.warning("Semantic split failed, using heuristic split: %s", e)
            return []

        data = parse_llm_json(raw)
        questions = string_list(data.get("questions"))
        if not questions:
            # Any array value is accepted
            for value in data.values():
                questions = string_list(value)
                if questions:
                    break
        return _dedupe(questions)


async def smart_split(text: str, llm: Optional[LLMClient] = None) -> List[str]:
    """Convenience wrapper returning just the question list."""
    result = await QuestionSplitter(llm).split(text)
    return result.questions
