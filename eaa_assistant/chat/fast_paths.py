"""
Fast Paths

Messages answered without retrieval: short negations, greetings/thanks and
re-asks of the previous question.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..common.text_utils import normalize_text, word_overlap

SHORT_NEGATION_MAX_LENGTH = 8
REASK_MIN_LENGTH = 5
REASK_OVERLAP = 0.7
GREETING_MAX_LENGTH = 40

_NEGATION_RE = re.compile(r"^(no+|nope|nah|нет+|не\s*то)!?$")
_GREETING_RE = re.compile(
    r"^(hi|hello|hey|good (morning|afternoon|evening)|thanks?|thank you|thx|"
    r"привет|здравствуйте|добрый день|спасибо|благодарю)\b[\s!.,]*(there|you|a lot|so much)?[\s!.]*$"
)


@dataclass
class FastPathReply:
    """Canned reply for a message that skips retrieval"""
    kind: str
    answer: str
    suggestions: List[str] = field(default_factory=list)
    suggestions_header: str = ""


NEGATION_REPLY = FastPathReply(
    kind="negation",
    answer=(
        "Understood. Tell me what you were looking for and I'll try again. "
        "Mentioning your product or service and your EU country helps me give a precise answer."
    ),
    suggestions=[
        "Does the EAA apply to my business?",
        "What are the EAA deadlines?",
        "What does an accessibility audit involve?",
    ],
    suggestions_header="Maybe one of these:",
)

GREETING_REPLY = FastPathReply(
    kind="greeting",
    answer=(
        "Hello! I'm here to help with the European Accessibility Act: who it applies to, "
        "what it requires and how to prepare. What would you like to know?"
    ),
    suggestions=[
        "Am I obligated to comply with EAA for my digital product?",
        "What penalties might I face for not complying with EAA?",
        "Where do I start preparing for EAA compliance?",
    ],
    suggestions_header="Choose a suggestion or ask a clarifying question:",
)

REASK_REPLY = FastPathReply(
    kind="reask",
    answer=(
        "It looks like you repeated the same question. Add any missing details "
        "(context, product/service, EU country, deadline) to get a more precise answer."
    ),
    suggestions=[
        "What has changed since the previous message?",
        "Specify country and digital service (website/app/SaaS)",
        "Do you need penalties/timeline or a checklist?",
    ],
    suggestions_header="Please add details:",
)


def is_short_negation(text: str) -> bool:
    quick = (text or "").strip().lower()
    if len(quick) > SHORT_NEGATION_MAX_LENGTH:
        return False
    return bool(_NEGATION_RE.match(re.sub(r"\s+", "", quick)))


def is_greeting(text: str) -> bool:
    quick = (text or "").strip().lower()
    return len(quick) <= GREETING_MAX_LENGTH and bool(_GREETING_RE.match(quick))


def is_reask(previous: Optional[str], current: str) -> bool:
    """True when `current` repeats `previous` (>= 70% shared words)."""
    if not previous:
        return False
    a, b = normalize_text(previous), normalize_text(current)
    if len(a) < REASK_MIN_LENGTH or len(b) < REASK_MIN_LENGTH:
        return False
    return a == b or word_overlap(a, b) >= REASK_OVERLAP


def match_fast_path(question: str, previous_question: Optional[str] = None) -> Optional[FastPathReply]:
    if is_short_negation(question):
        return NEGATION_REPLY
    if is_greeting(question):
        return GREETING_REPLY
    if is_reask(previous_question, question):
        return REASK_REPLY
    return None
