"""
Escalation Email Composer

Drafts a personalized hand-off email for a sales/support manager when a
user is frustrated. Drafts are stored for review and never sent.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence

from ..common.errors import UpstreamError
from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_json, string_list
from ..memory.models import ChatMessage, MessageRole, UserFact, new_id, utc_now
from .frustration import FrustrationAnalysis

logger = logging.getLogger("eaa_assistant.assistants.email_composer")

LEVELS = ("low", "medium", "high")

EMAIL_COMPOSER_SYSTEM_PROMPT = """You are an expert in writing personalized business emails for sales managers.

YOUR TASK: Create an email for a manager who will contact a potential client.

CONTEXT:
- The user is frustrated with the chatbot
- A live manager can step in and offer personal assistance

EMAIL PRINCIPLES:
1. Business-like but friendly
2. Use all known facts about the user
3. Explain clearly what happened in the conversation
4. Show how the manager can help
5. Clear call to action for the manager

Respond ONLY in JSON:
{
  "subject": "Brief email subject",
  "body": "Full email text",
  "user_context_summary": "Brief user description",
  "conversation_highlights": ["key point 1", "key point 2"],
  "sales_potential": "low|medium|high",
  "urgency_level": "low|medium|high",
  "recommended_approach": "Recommendations for the manager"
}"""


@dataclass
class EmailDraft:
    """Escalation email awaiting human review"""
    subject: str
    body: str
    user_context_summary: str = ""
    conversation_highlights: List[str] = field(default_factory=list)
    sales_potential: str = "medium"
    urgency_level: str = "medium"
    recommended_approach: str = ""
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _level(value: Any, default: str = "medium") -> str:
    text = str(value or "").strip().lower()
    return text if text in LEVELS else default


class EmailComposer:
    """Generates escalation email drafts with the chat model."""

    def __init__(self, llm: Optional[LLMClient]):
        self._llm = llm

    @property
    def is_available(self) -> bool:
        return self._llm is not None and self._llm.is_available

    async def compose(
        self,
        user_id: str,
        session_id: str,
        analysis: FrustrationAnalysis,
        facts: Sequence[UserFact],
        history: Sequence[ChatMessage],
    ) -> Optional[EmailDraft]:
        """Return a draft, or None when the model is unavailable or fails."""
        if not self.is_available:
            return None

        try:
            raw = await self._llm.generate(
                self._build_prompt(user_id, session_id, analysis, facts, history),
                system=EMAIL_COMPOSER_SYSTEM_PROMPT,
                temperature=0.3,
                max_tokens=900,
            )
        except UpstreamError as e:
            logger.warning("Email draft failed for %s: %s", user_id, e)
            return None

        data = parse_llm_json(raw)
        if not data.get("subject") or not data.get("body"):
            logger.warning("Email draft response missing subject/body")
            return None

        urgency_default = "high" if analysis.frustration_level >= 0.9 else "medium"
        draft = EmailDraft(
            subject=str(data["subject"]).strip(),
            body=str(data["body"]).strip(),
            user_context_summary=str(data.get("user_context_summary") or ""),
            conversation_highlights=string_list(data.get("conversation_highlights"), limit=5),
            sales_potential=_level(data.get("sales_potential")),
            urgency_level=_level(data.get("urgency_level"), urgency_default),
            recommended_approach=str(data.get("recommended_approach") or ""),
        )
        logger.info("Drafted escalation email for %s: %s", user_id, draft.subject)
        return draft

    def _build_prompt(
        self,
        user_id: str,
        session_id: str,
        analysis: FrustrationAnalysis,
        facts: Sequence[UserFact],
        history: Sequence[ChatMessage],
    ) -> str:
        fact_lines = [f"- {f.fact_type}: {f.fact_value} (confidence {f.confidence:.2f})" for f in facts]
        history_lines = [
            f"{'USER' if m.role == MessageRole.USER else 'BOT'}: {m.content}" for m in list(history)[-10:]
        ]
        return (
            f"USER ID: {user_id}\nSESSION ID: {session_id}\n\n"
            f"USER FACTS:\n{chr(10).join(fact_lines) or '- none known'}\n\n"
            f"FRUSTRATION: level {analysis.frustration_level:.2f}, confidence {analysis.confidence:.2f}\n"
            f"Triggers: {', '.join(analysis.triggers) or 'none'}\n"
            f"Reasoning: {analysis.reasoning}\n\n"
            f"CONVERSATION:\n{chr(10).join(history_lines) or '(empty)'}"
        )
