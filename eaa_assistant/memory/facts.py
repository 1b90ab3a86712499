"""
Fact Extractor

Learns business facts about a user (type, location, size, digital
presence, ...) from their messages. A keyword gate keeps the chat model
out of messages that carry no business information.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from ..common.errors import UpstreamError
from ..common.llm_client import LLMClient
from ..common.llm_utils import clamp_unit, parse_llm_json
from .manager import ChatMemory

logger = logging.getLogger("eaa_assistant.memory.facts")

FACT_TYPES = (
    "business_type",
    "business_location",
    "business_size",
    "business_digital_presence",
    "business_sector",
    "customer_base",
    "service_types",
    "compliance_status",
    "accessibility_audit_done",
)

BUSINESS_INFO_RE = re.compile(
    r"компан|бизнес|организац|предприяти|фирм|работа|сайт|магазин|банк|финанс|"
    r"транспорт|отрасл|индустр|company|business|organi[sz]ation|enterprise|firm|"
    r"\bwork|website|shop|store|bank|financ|transport|industry|startup|corporat|"
    r"retail|e-?commerce|application|\bapps?\b|platform|service|customer|client|"
    r"market|sale|revenue|product|digital|technology|\btech\b|audit",
    re.IGNORECASE,
)

FACT_EXTRACTION_PROMPT = """You are a text analyst. Extract business/organization facts from the user's message.

Fact types:
- business_type: type of business or organization (restaurant, bank, online store, ...)
- business_location: country, region, or city
- business_size: small, medium, large, startup, ...
- business_digital_presence: website, mobile app, e-commerce, social media, ...
- business_sector: B2B, B2C, government, nonprofit, ...
- customer_base: target customers
- service_types: services or products offered
- compliance_status: any mention of accessibility compliance or standards
- accessibility_audit_done: "yes" or "no" if the user says whether an accessibility audit was done

Confidence from 0 to 1:
- 0.9-1.0: explicitly stated
- 0.7-0.8: strongly implied
- 0.5-0.6: probable but ambiguous
- below 0.5: do not include

Respond with JSON only:
{"facts": [{"fact_type": "business_type", "fact_value": "online store", "confidence": 0.9}]}

If nothing can be extracted, respond {"facts": []}. Messages may be in any language."""


@dataclass
class ExtractedFact:
    """A fact proposed by the model"""
    fact_type: str
    fact_value: str
    confidence: float


def contains_business_info(text: str) -> bool:
    return bool(text and BUSINESS_INFO_RE.search(text))


class FactExtractor:
    """
    Extracts and stores user facts.

    Never raises: extraction is an enrichment step and failures only log.
    """

    def __init__(
        self,
        llm: Optional[LLMClient],
        memory: ChatMemory,
        min_confidence: float = 0.5,
    ):
        self._llm = llm
        self._memory = memory
        self._min_confidence = min_confidence

    @property
    def is_available(self) -> bool:
        return self._llm is not None and self._llm.is_available

    async def extract(self, text: str) -> List[ExtractedFact]:
        """Ask the model for facts; returns [] on gate miss or failure."""
        if not contains_business_info(text):
            logger.debug("No business information in message, skipping fact extraction")
            return []
        if not self.is_available:
            return []

        try:
            raw = await self._llm.generate(
                text[:2000],
                system=FACT_EXTRACTION_PROMPT,
                temperature=0.1,
                max_tokens=400,
            )
        except UpstreamError as e:
            logger.warning("Fact extraction failed: %s", e)
            return []

        facts = []
        for item in parse_llm_json(raw).get("facts") or []:
            if not isinstance(item, dict):
                continue
            fact_type = str(item.get("fact_type", "")).strip()
            fact_value = str(item.get("fact_value", "")).strip()
            confidence = clamp_unit(item.get("confidence"), default=0.0)
            if fact_type not in FACT_TYPES or not fact_value:
                continue
            if confidence < self._min_confidence:
                continue
            facts.append(ExtractedFact(fact_type, fact_value, confidence))
        return facts

    async def extract_and_save(
        self,
        user_id: str,
        text: str,
        source_message_id: Optional[str] = None,
    ) -> List[ExtractedFact]:
        facts = await self.extract(text)
        saved = []
        for fact in facts:
            try:
                await self._memory.save_user_fact(
                    user_id, fact.fact_type, fact.fact_value, fact.confidence, source_message_id,
                )
                saved.append(fact)
            except UpstreamError as e:
                logger.warning("Could not save fact %s for %s: %s", fact.fact_type, user_id, e)
        if saved:
            logger.info("Saved %d facts for user %s", len(saved), user_id)
        return saved
