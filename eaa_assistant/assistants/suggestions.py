"""
Suggestion Generator

Produces three follow-up questions tailored to what is known about the
user (facts) and the conversation so far. Falls back to a fixed set when
the chat model is unavailable or returns nothing usable.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..common.errors import UpstreamError
from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_json, string_list
from ..common.text_utils import normalize_text, truncate
from ..memory.manager import ChatMemory
from ..memory.models import ChatMessage, MessageRole, UserFact

logger = logging.getLogger("eaa_assistant.assistants.suggestions")

MAX_SUGGESTIONS = 3
MAX_SUGGESTION_LENGTH = 80
HISTORY_WINDOW = 10

DEFAULT_HEADER = "Choose a suggestion or ask a clarifying question:"

FALLBACK_HEADER = "EAA Compliance Guidance"
FALLBACK_SUGGESTIONS = [
    "What specific EAA requirements do you need help with?",
    "Would you like to see a compliance checklist for your website?",
    "Do you need guidance on accessibility testing tools?",
    "Should we start with a basic accessibility audit?",
]

FIRST_INTERACTION_SUGGESTIONS = [
    "Am I obligated to comply with EAA for my digital product?",
    "What penalties might I face for not complying with EAA?",
    "Where do I start preparing for EAA compliance?",
]

FOLLOW_UP_SUGGESTIONS = [
    "How do I conduct an accessibility audit of my website?",
    "What tools can help me check WCAG compliance?",
    "How much time do I need to implement EAA requirements?",
]

AI_SUGGESTIONS_SYSTEM_PROMPT = """You are an expert analyst on the European Accessibility Act (EAA) who generates personalized suggestions for users.

IMPORTANT: You work in a specialized EAA chatbot. When users ask about "web accessibility" or "new accessibility laws", they mean the EUROPEAN ACCESSIBILITY ACT. Do not suggest clarifying which law.

YOUR TASK:
Analyze all available user information and generate the 3 MOST RELEVANT questions to help them deepen their understanding of EAA as it applies to their situation.

PRINCIPLES:
1. EVOLUTION - suggestions evolve with the conversation history
2. PERSONALIZATION - consider the user's business specifics
3. PROGRESSION - suggest logical next steps in EAA learning
4. RELEVANCE - avoid repeating already asked questions

FORMULATION RULES:
- Questions should be specific and practical
- Maximum 80 characters per question
- Use the user's terminology
- Focus on actions, not theory

Respond ONLY in JSON:
{
  "suggestions": ["question 1", "question 2", "question 3"],
  "header": "Header for suggestions block",
  "reasoning": "Brief explanation of the logic behind these suggestions"
}"""

_STAGE_KEYWORDS = [
    ("implementation", ("implement", "start", "begin")),
    ("deep_dive", ("details", "specific", "how exactly")),
    ("exploration", ("learn", "understand", "explain")),
]


@dataclass
class SuggestionSet:
    """Suggestions shown under an answer or on the welcome screen"""
    suggestions: List[str]
    header: str = DEFAULT_HEADER
    reasoning: str = ""
    analytics: Dict[str, Any] = field(default_factory=dict)
    generated_by: str = "ai_suggestions_v1"
    model_used: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggestions": list(self.suggestions),
            "header": self.header,
            "reasoning": self.reasoning,
            "analytics": dict(self.analytics),
            "generated_by": self.generated_by,
            "model_used": self.model_used,
        }


def fallback_suggestions() -> SuggestionSet:
    """Fixed rule-based suggestion set."""
    return SuggestionSet(
        suggestions=list(FALLBACK_SUGGESTIONS),
        header=FALLBACK_HEADER,
        reasoning="Fallback suggestions for reliable user experience",
        analytics={
            "user_persona": "unknown",
            "business_maturity": "unknown",
            "conversation_stage": "discovery",
            "opportunity_score": 0.5,
        },
        generated_by="fallback_system_v1",
        model_used="rule_based",
    )


def conversation_stage(messages: Sequence[ChatMessage]) -> str:
    """discovery / exploration / deep_dive / implementation from recent text."""
    if not messages:
        return "discovery"
    text = " ".join(m.content for m in list(messages)[-5:]).lower()
    for stage, keywords in _STAGE_KEYWORDS:
        if any(k in text for k in keywords):
            return stage
    return "discovery"


def build_analytics(facts: Sequence[UserFact], messages: Sequence[ChatMessage]) -> Dict[str, Any]:
    by_type = {f.fact_type: f.fact_value for f in facts}
    stage = conversation_stage(messages)

    if by_type.get("accessibility_audit_done", "").lower() in ("yes", "true"):
        maturity = "advanced"
    elif "compliance_status" in by_type:
        maturity = "intermediate"
    elif facts:
        maturity = "beginner"
    else:
        maturity = "unknown"

    score = 0.3 + 0.1 * min(len(facts), 4)
    if stage in ("deep_dive", "implementation"):
        score += 0.2
    return {
        "user_persona": by_type.get("business_type", "unknown"),
        "business_maturity": maturity,
        "conversation_stage": stage,
        "opportunity_score": round(min(score, 1.0), 2),
    }


class SuggestionGenerator:
    """Personalized follow-up questions from the chat model."""

    def __init__(self, llm: Optional[LLMClient], memory: ChatMemory):
        self._llm = llm
        self._memory = memory

    @property
    def is_available(self) -> bool:
        return self._llm is not None and self._llm.is_available

    async def generate(
        self,
        user_id: str,
        session_id: str,
        current_question: str = "",
    ) -> SuggestionSet:
        """
        Generate suggestions for a user and session.

        Never raises; any failure returns the rule-based set.
        """
        try:
            facts = await self._memory.get_user_facts(user_id)
            messages = await self._memory.get_recent_messages(session_id, limit=HISTORY_WINDOW)
        except UpstreamError as e:
            logger.warning("Suggestion context unavailable for %s: %s", user_id, e)
            return fallback_suggestions()

        analytics = build_analytics(facts, messages)
        if not self.is_available:
            return self._rule_based(facts, messages, current_question, analytics)

        try:
            raw = await self._llm.generate(
                self._build_prompt(facts, messages, current_question),
                system=AI_SUGGESTIONS_SYSTEM_PROMPT,
                temperature=0.7,
                max_tokens=400,
            )
        except UpstreamError as e:
            logger.warning("AI suggestions failed for %s: %s", user_id, e)
            return self._rule_based(facts, messages, current_question, analytics)

        data = parse_llm_json(raw)
        suggestions = self._clean(string_list(data.get("suggestions")), current_question)
        if not suggestions:
            logger.warning("AI suggestions returned no usable items")
            return self._rule_based(facts, messages, current_question, analytics)

        logger.debug("Generated %d suggestions for %s", len(suggestions), user_id)
        return SuggestionSet(
            suggestions=suggestions,
            header=str(data.get("header") or DEFAULT_HEADER),
            reasoning=str(data.get("reasoning") or ""),
            analytics=analytics,
            model_used=self._llm.model,
        )

    async def health(self) -> Dict[str, Any]:
        store_ok = await self._memory.store.ping()
        healthy = self.is_available and store_ok
        return {
            "status": "healthy" if healthy else "unhealthy",
            "llm_available": self.is_available,
            "store_available": store_ok,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def _rule_based(
        self,
        facts: Sequence[UserFact],
        messages: Sequence[ChatMessage],
        current_question: str,
        analytics: Dict[str, Any],
    ) -> SuggestionSet:
        pool = FIRST_INTERACTION_SUGGESTIONS if not facts and not messages else FOLLOW_UP_SUGGESTIONS
        result = fallback_suggestions()
        result.suggestions = self._clean(pool, current_question)
        result.header = DEFAULT_HEADER
        result.analytics = analytics
        return result

    @staticmethod
    def _clean(items: Sequence[str], current_question: str) -> List[str]:
        asked = normalize_text(current_question)
        seen = set()
        cleaned = []
        for item in items:
            key = normalize_text(item)
            if not key or key == asked or key in seen:
                continue
            seen.add(key)
            cleaned.append(truncate(item, MAX_SUGGESTION_LENGTH))
        return cleaned[:MAX_SUGGESTIONS]

    @staticmethod
    def _build_prompt(
        facts: Sequence[UserFact],
        messages: Sequence[ChatMessage],
        current_question: str,
    ) -> str:
        fact_lines = [f"- {f.fact_type}: {f.fact_value}" for f in facts]
        history = [
            f"{'User' if m.role == MessageRole.USER else 'Bot'}: {truncate(m.content, 300)}" for m in messages
        ]
        first = "yes" if not messages else "no"
        return (
            f"### Known facts about the user\n{chr(10).join(fact_lines) or 'No data'}\n\n"
            f"### Conversation history\n{chr(10).join(history) or 'No data'}\n\n"
            f"### Current question\n{current_question or 'None'}\n\n"
            f"First interaction: {first}"
        )
