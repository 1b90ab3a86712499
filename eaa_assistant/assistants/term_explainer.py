"""Plain-language explanations of EAA terms."""

import logging
from typing import Optional

from ..common.errors import UpstreamError
from ..common.llm_client import LLMClient

logger = logging.getLogger("eaa_assistant.assistants.term_explainer")

TERM_SYSTEM_PROMPT = "You are an expert on EAA. Explain the term in simple terms with examples."


def explanation_unavailable(term: str) -> str:
    return (
        f'Sorry, I couldn\'t generate an explanation for the term "{term}". '
        "Please try reformulating the question."
    )


class TermExplainer:
    def __init__(self, llm: Optional[LLMClient]):
        self._llm = llm

    async def explain(self, term: str, context: str = "") -> str:
        """Explain `term` in the EAA context; degrades to an apology text."""
        if self._llm is None or not self._llm.is_available:
            return explanation_unavailable(term)

        prompt = f'Explain the term "{term}" in the context of the European Accessibility Act.'
        if context:
            prompt += f" Context: {context}"

        try:
            explanation = await self._llm.generate(
                prompt,
                system=TERM_SYSTEM_PROMPT,
                temperature=0.4,
                max_tokens=300,
            )
        except UpstreamError as e:
            logger.warning("Term explanation failed for %r: %s", term, e)
            return explanation_unavailable(term)

        logger.debug("Explained %r (%d chars)", term, len(explanation))
        return explanation
