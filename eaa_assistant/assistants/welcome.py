"""
Welcome Builder

Greets returning users with what is already known about their business and
offers up to three starting suggestions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..common.errors import UpstreamError
from ..memory.manager import ChatMemory
from ..memory.models import UserFact
from .suggestions import SuggestionGenerator

logger = logging.getLogger("eaa_assistant.assistants.welcome")

DEFAULT_GREETING = "Hello! I can help you make sense of the European Accessibility Act."
FACT_MIN_CONFIDENCE = 0.6
AUDIT_MIN_CONFIDENCE = 0.5


@dataclass
class Welcome:
    greeting: str
    suggestions: List[str] = field(default_factory=list)
    has_context: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"greeting": self.greeting, "suggestions": list(self.suggestions), "has_context": self.has_context}


def _fact(facts: Sequence[UserFact], fact_type: str, min_confidence: float) -> Optional[str]:
    for f in facts:
        if f.fact_type == fact_type and f.confidence > min_confidence:
            return f.fact_value
    return None


def build_greeting(facts: Sequence[UserFact]) -> str:
    if not facts:
        return DEFAULT_GREETING

    business_type = _fact(facts, "business_type", FACT_MIN_CONFIDENCE)
    location = _fact(facts, "business_location", FACT_MIN_CONFIDENCE)
    presence = _fact(facts, "business_digital_presence", FACT_MIN_CONFIDENCE)
    audit = _fact(facts, "accessibility_audit_done", AUDIT_MIN_CONFIDENCE)

    parts = ["Welcome back"]
    if business_type:
        parts.append(f"I see you represent a {business_type}")
    if location:
        parts.append(f"in {location}")
    if presence:
        parts.append(f"with a {presence}")
    greeting = (parts[0] + ", " + " ".join(parts[1:]) if len(parts) > 1 else parts[0]) + ". "

    if (audit or "").lower() in ("yes", "true"):
        greeting += "Great, your accessibility audit is done, so let's discuss the next steps."
    else:
        greeting += "I'm ready to help with EAA requirements and an accessibility audit."
    return greeting


class WelcomeBuilder:
    def __init__(self, memory: ChatMemory, suggestions: SuggestionGenerator):
        self._memory = memory
        self._suggestions = suggestions

    async def build(self, user_id: str) -> Welcome:
        try:
            facts = await self._memory.get_user_facts(user_id)
        except UpstreamError as e:
            logger.warning("Could not load facts for %s: %s", user_id, e)
            facts = []

        # No session yet; the user id doubles as the session key
        suggestion_set = await self._suggestions.generate(user_id, user_id)
        return Welcome(
            greeting=build_greeting(facts),
            suggestions=suggestion_set.suggestions[:3],
            has_context=bool(facts),
        )
