"""
Frustration Detector

Conservative detection of user frustration. The chat model scores the
conversation; escalation additionally requires contextual evidence
(swearing, repeated questions, shouting, negative phrasing) or enough
trigger phrases. Any failure yields a no-escalation result.
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence

from ..common.errors import UpstreamError
from ..common.llm_client import LLMClient
from ..common.llm_utils import clamp_unit, parse_llm_json, string_list
from ..memory.models import ChatMessage, MessageRole

logger = logging.getLogger("eaa_assistant.assistants.frustration")

HISTORY_WINDOW = 8
REPEAT_SIMILARITY = 0.6

FRUSTRATION_SYSTEM_PROMPT = """You are an expert in analyzing user sentiment in business chatbots.

YOUR TASK: Carefully and accurately determine the user's frustration level.

HIGH FRUSTRATION (0.8-1.0):
- Explicit complaints about a non-working product/service
- Swearing or aggressive language
- "You're not helping", "useless", "wasting my time"
- Threats to switch to a competitor
- Repeatedly asking the same questions after failed answers

MEDIUM FRUSTRATION (0.5-0.7):
- Disappointment without aggression
- "I don't understand", "it's complicated", "it's not working out"
- Doubts about the effectiveness of the solution

LOW/NO FRUSTRATION (0.0-0.4):
- Neutral or positive messages, constructive questions, politeness
- The first questions in a session

CAUTION:
- Do not count normal criticism or technical questions as frustration
- Do not react to single negative words
- Consider the whole conversation, not just one message

Respond ONLY in JSON:
{"frustration_level": 0.0, "confidence": 0.0, "patterns": [], "triggers": [], "reasoning": ""}"""

NEGATIVE_PHRASES = [
    "doesn't work", "not helping", "useless", "in vain", "bad", "terrible",
    "awful", "disappointed", "don't understand", "waste of time",
    "не работает", "не помогает", "бесполезно", "зря", "плохо", "ужасно",
    "неверно", "не понимаю", "не получается", "третий раз", "опять", "снова",
    "не то", "не так", "ошибка", "неправильно",
]

SWEAR_WORDS = ["fuck", "shit", "damn", "херня", "блять", "черт", "дерьмо"]

_SWEAR_RE = re.compile(r"\b(" + "|".join(SWEAR_WORDS) + r")", re.IGNORECASE)
_ALL_CAPS_RE = re.compile(r"\b[А-ЯA-Z]{3,}\b")


@dataclass
class ContextFactors:
    """Rule-based signals from the current message and history"""
    repeated_questions: bool = False
    message_count: int = 0
    negative_keywords_count: int = 0
    has_swearing: bool = False
    exclamation_count: int = 0
    all_caps_words: List[str] = field(default_factory=list)

    @property
    def has_excessive_exclamations(self) -> bool:
        return self.exclamation_count >= 3

    @property
    def has_all_caps(self) -> bool:
        return bool(self.all_caps_words)

    def supporting_factors(self) -> List[str]:
        factors = []
        if self.has_swearing:
            factors.append("profanity")
        if self.repeated_questions:
            factors.append("repeated questions")
        if self.has_excessive_exclamations:
            factors.append("excessive exclamations")
        if self.has_all_caps:
            factors.append("all caps")
        if self.negative_keywords_count >= 2:
            factors.append(f"{self.negative_keywords_count} negative phrases")
        return factors


@dataclass
class FrustrationAnalysis:
    """Outcome of frustration analysis"""
    frustration_level: float = 0.0
    confidence: float = 0.0
    patterns: List[str] = field(default_factory=list)
    triggers: List[str] = field(default_factory=list)
    reasoning: str = ""
    context: ContextFactors = field(default_factory=ContextFactors)
    should_escalate: bool = False
    escalation_reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _message_similarity(a: str, b: str) -> float:
    words_a = [w for w in a.lower().split() if len(w) > 2]
    words_b = [w for w in b.lower().split() if len(w) > 2]
    if not words_a or not words_b:
        return 0.0
    common = [w for w in words_a if w in words_b]
    return len(common) / len(set(words_a) | set(words_b))


def analyze_context_factors(current_message: str, history: Sequence[ChatMessage]) -> ContextFactors:
    lowered = current_message.lower()
    user_texts = [m.content for m in history if m.role == MessageRole.USER][-2:] + [current_message]

    repeated = False
    for i in range(len(user_texts)):
        for j in range(i + 1, len(user_texts)):
            if _message_similarity(user_texts[i], user_texts[j]) > REPEAT_SIMILARITY:
                repeated = True

    return ContextFactors(
        repeated_questions=repeated,
        message_count=len(history),
        negative_keywords_count=sum(1 for phrase in NEGATIVE_PHRASES if phrase in lowered),
        has_swearing=bool(_SWEAR_RE.search(current_message)),
        exclamation_count=current_message.count("!"),
        all_caps_words=_ALL_CAPS_RE.findall(current_message),
    )


class FrustrationDetector:
    """
    Scores frustration and recommends escalation to a human.

    Escalation requires all of:
    - frustration_level >= min_level
    - confidence >= min_confidence
    - at least one supporting context factor, or >= min_triggers triggers
    """

    def __init__(
        self,
        llm: Optional[LLMClient],
        min_level: float = 0.75,
        min_confidence: float = 0.85,
        min_triggers: int = 2,
    ):
        self._llm = llm
        self.min_level = min_level
        self.min_confidence = min_confidence
        self.min_triggers = min_triggers

    @property
    def is_available(self) -> bool:
        return self._llm is not None and self._llm.is_available

    async def analyze(self, current_message: str, history: Sequence[ChatMessage]) -> FrustrationAnalysis:
        """Analyze the current message in the context of recent history."""
        context = analyze_context_factors(current_message, history)
        if not self.is_available:
            return FrustrationAnalysis(context=context, escalation_reason="Analyzer unavailable")

        try:
            raw = await self._llm.generate(
                self._build_prompt(current_message, history),
                system=FRUSTRATION_SYSTEM_PROMPT,
                temperature=0.1,
                max_tokens=500,
            )
        except UpstreamError as e:
            logger.warning("Frustration analysis failed: %s", e)
            return FrustrationAnalysis(context=context, escalation_reason="Analysis error, escalation blocked")

        data = parse_llm_json(raw)
        if not data:
            logger.warning("Frustration analysis returned no JSON")
            return FrustrationAnalysis(context=context, escalation_reason="Analysis error, escalation blocked")

        return self._apply_safety_checks(data, context)

    def _apply_safety_checks(self, data: Dict[str, Any], context: ContextFactors) -> FrustrationAnalysis:
        analysis = FrustrationAnalysis(
            frustration_level=clamp_unit(data.get("frustration_level")),
            confidence=clamp_unit(data.get("confidence")),
            patterns=string_list(data.get("patterns")),
            triggers=string_list(data.get("triggers")),
            reasoning=str(data.get("reasoning") or ""),
            context=context,
        )

        if analysis.frustration_level < self.min_level or analysis.confidence < self.min_confidence:
            logger.debug(
                "No escalation: level %.2f / confidence %.2f below thresholds",
                analysis.frustration_level, analysis.confidence,
            )
            return analysis

        supporting = context.supporting_factors()
        if supporting or len(analysis.triggers) >= self.min_triggers:
            analysis.should_escalate = True
            analysis.escalation_reason = (
                f"High frustration ({analysis.frustration_level:.2f}, confidence "
                f"{analysis.confidence:.2f}). Supporting factors: {', '.join(supporting) or 'none'}. "
                f"Triggers: {', '.join(analysis.triggers) or 'none'}"
            )
            logger.info("Escalation recommended: %s", analysis.escalation_reason)
        else:
            analysis.escalation_reason = "Frustration detected but insufficient supporting evidence"
        return analysis

    def _build_prompt(self, current_message: str, history: Sequence[ChatMessage]) -> str:
        recent = list(history)[-HISTORY_WINDOW:]
        lines = [
            f"[{idx}] {'USER' if m.role == MessageRole.USER else 'BOT'}: {m.content}"
            for idx, m in enumerate(recent, start=1)
        ]
        user_count = sum(1 for m in recent if m.role == MessageRole.USER)
        return (
            "CONVERSATION HISTORY:\n"
            + ("\n".join(lines) or "(no previous messages)")
            + f"\n\nCURRENT MESSAGE TO ANALYZE:\nUSER: {current_message}"
            + f"\n\nMETRICS:\n- Messages in conversation: {len(recent)}"
            + f"\n- User questions asked: {user_count}"
        )
