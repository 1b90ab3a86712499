"""
Proactive Agent

While the user types, proposes one very short follow-up suggestion based on
what they are writing, what is known about them and the last few messages.
"""

import logging
from typing import Optional

from ..common.errors import UpstreamError
from ..common.llm_client import LLMClient
from ..memory.manager import ChatMemory
from ..memory.models import MessageRole

logger = logging.getLogger("eaa_assistant.assistants.proactive")

HISTORY_WINDOW = 5

PROACTIVE_AGENT_SYSTEM_PROMPT = """You are a proactive AI assistant in a specialized European Accessibility Act (EAA) chatbot. Your task is to analyze conversation context and help users with EAA questions.

IMPORTANT: You specialize ONLY in the European Accessibility Act. When users express confusion about terms from the chatbot's response (e.g. "gap analysis", "accessibility audit", "WCAG"), offer SPECIFIC explanations in the EAA context.

ANALYZE CONTEXT:
- If the user did not understand something from the previous answer, suggest an explanation
- If the user expresses confusion ("didn't understand", "what is"), help with clarification
- If the user asks about EAA terms, suggest specific explanations

RESPONSE RULES:
- The response must be VERY short (no more than 15 words)
- Focus on the EAA context
- Do not ask "which law", it is always EAA

EXAMPLES:
- User: "what is gap analysis" -> "Explain gap analysis in EAA audit?"
- User: "didn't understand WCAG" -> "Clarify WCAG relationship with EAA requirements?"

Return only the text of your suggestion."""


class ProactiveAgent:
    def __init__(self, llm: Optional[LLMClient], memory: ChatMemory):
        self._llm = llm
        self._memory = memory

    async def suggest(self, current_text: str, user_id: str, session_id: str) -> str:
        """
        One short suggestion for the text being typed.

        Raises:
            UpstreamError: the chat model is unavailable or failed
        """
        if self._llm is None:
            raise UpstreamError("chat", "LLM client is not available")

        facts = await self._memory.get_user_facts(user_id)
        messages = await self._memory.get_recent_messages(session_id, limit=HISTORY_WINDOW)

        facts_block = "\n".join(f"- {f.fact_type}: {f.fact_value}" for f in facts) or "No data"
        history_block = "\n".join(
            f"{'User' if m.role == MessageRole.USER else 'Bot'}: {m.content}" for m in messages
        ) or "No data"
        prompt = (
            f"### Known facts about the user\n{facts_block}\n\n"
            f"### Recent message history\n{history_block}\n\n"
            f'### Current user text (analyze this)\n"{current_text}"'
        )

        suggestion = await self._llm.generate(
            prompt,
            system=PROACTIVE_AGENT_SYSTEM_PROMPT,
            temperature=0.5,
            max_tokens=50,
        )
        logger.debug("Proactive suggestion for %s: %s", user_id, suggestion)
        return suggestion.strip().strip('"')
