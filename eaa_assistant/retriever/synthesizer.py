"""
Answer Composer

LLM-based answer composition from retrieved EAA document chunks.

Key principle: answer only from the excerpts. When retrieval found nothing
the model is not called; a fixed no-information answer is returned.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from ..common.llm_client import LLMClient
from ..common.language import LanguageInfo
from .formatting import NO_RESULTS_ANSWER, format_rag_context

logger = logging.getLogger("eaa_assistant.retriever.synthesizer")


STRICT_SYSTEM_PROMPT = """You are an expert assistant specializing in the European Accessibility Act (EAA).

Your role:
- Provide accurate, helpful information about EAA compliance
- Answer questions clearly and professionally
- Use provided context to give relevant responses
- If information is not available in context, acknowledge limitations
- Always prioritize helpful, actionable guidance

Guidelines:
- Be concise but comprehensive
- Use professional tone
- Focus on practical implementation"""

CONCISE_SYSTEM_PROMPT = """You are an expert on the European Accessibility Act (EAA).

TASK: Provide a brief, accurate answer to one question out of several the user asked.

RULES:
- Maximum 2-3 sentences.
- Use only information from the context.
- Be specific and practical."""

# Returned in place of an answer when composition fails upstream
FAILED_ANSWER = (
    "Sorry, I could not generate an answer to this question right now. "
    "Please try again in a moment."
)


@dataclass
class ComposedAnswer:
    """Answer text and the time spent generating it"""
    answer: str
    generate_ms: int = 0
    used_llm: bool = False


class AnswerComposer:
    """
    Composes answers from trimmed chunks with one chat-completion call.

    Upstream failures propagate as UpstreamError; the caller decides how
    to degrade.
    """

    def __init__(
        self,
        llm: LLMClient,
        temperature: float = 0.0,
        max_tokens: int = 1024,
    ):
        """
        Initialize composer.

        Args:
            llm: Chat client
            temperature: Sampling temperature for answers
            max_tokens: Output token limit for full answers
        """
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def compose(
        self,
        question: str,
        chunks: Sequence,
        memory_context: str = "",
        *,
        concise: bool = False,
        language: Optional[LanguageInfo] = None,
    ) -> ComposedAnswer:
        """
        Compose an answer for one question.

        Args:
            question: The (sub-)question
            chunks: Trimmed chunks, most similar first
            memory_context: Known facts and recent conversation
            concise: Short answer style used for multi-question requests
            language: Answer language (defaults to the question's)

        Raises:
            UpstreamError: the chat call failed
        """
        if not chunks:
            logger.info("No chunks for question, returning no-results answer")
            return ComposedAnswer(answer=NO_RESULTS_ANSWER)

        system_prompt = CONCISE_SYSTEM_PROMPT if concise else STRICT_SYSTEM_PROMPT
        if language is not None:
            system_prompt = f"{system_prompt}\n\n{language.instruction}"

        started = time.perf_counter()
        answer = await self._llm.complete(
            system_prompt,
            [{"role": "user", "content": format_rag_context(chunks, question, memory_context)}],
            temperature=self._temperature,
            max_tokens=300 if concise else self._max_tokens,
        )
        generate_ms = int(round((time.perf_counter() - started) * 1000))
        logger.info("Composed answer (%d chars) in %dms", len(answer), generate_ms)
        return ComposedAnswer(answer=answer, generate_ms=generate_ms, used_llm=True)
