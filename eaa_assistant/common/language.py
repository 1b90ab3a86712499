"""
Language Detection

Detects the language a user writes in so answers come back in the same
language. Uses langdetect with a Unicode-script check; Cyrillic input is
answered in Russian, Latin-script input defaults to English.
"""

import re
from dataclasses import dataclass

from langdetect import DetectorFactory, LangDetectException, detect_langs

# Seed langdetect for deterministic results
DetectorFactory.seed = 0

_CYRILLIC_RE = re.compile(r"[Ѐ-ӿ]")
_LATIN_RE = re.compile(r"[A-Za-zÀ-ɏ]")

# Languages the answer prompts are written to handle
LANGUAGE_NAMES = {
    "en": "English",
    "ru": "Russian",
    "uk": "Ukrainian",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "nl": "Dutch",
    "pl": "Polish",
}


@dataclass(frozen=True)
class LanguageInfo:
    """Detected language information"""
    code: str           # ISO 639-1: "en", "ru", ...
    confidence: float   # 0.0~1.0
    script: str         # "Latin", "Cyrillic", "Mixed"

    @property
    def is_english(self) -> bool:
        return self.code == "en"

    @property
    def name(self) -> str:
        return LANGUAGE_NAMES.get(self.code, "English")

    @property
    def instruction(self) -> str:
        """Prompt line telling the model which language to answer in"""
        return f"Respond in {self.name}."


def _detect_script(text: str) -> str:
    cyrillic = len(_CYRILLIC_RE.findall(text))
    latin = len(_LATIN_RE.findall(text))
    if cyrillic and latin and min(cyrillic, latin) > (cyrillic + latin) * 0.2:
        return "Mixed"
    if cyrillic > latin:
        return "Cyrillic"
    return "Latin"


def detect_language(text: str) -> LanguageInfo:
    """Detect language of input text.

    Short texts (<10 chars) are decided by script alone. Latin-script text
    is only reported as non-English when langdetect is confident, since
    short English questions are often misclassified.
    """
    if not text or not text.strip():
        return LanguageInfo(code="en", confidence=1.0, script="Latin")

    cleaned = text.strip()
    script = _detect_script(cleaned)

    if len(cleaned) < 10:
        if script == "Cyrillic":
            return LanguageInfo(code="ru", confidence=0.6, script=script)
        return LanguageInfo(code="en", confidence=0.5, script="Latin")

    try:
        results = detect_langs(cleaned)
    except LangDetectException:
        results = []

    if results:
        top = results[0]
        code, confidence = top.lang, round(top.prob, 4)
        if script == "Cyrillic":
            if code not in ("ru", "uk", "bg", "sr", "mk"):
                code = "ru"
            return LanguageInfo(code=code, confidence=confidence, script=script)
        if code != "en" and (code not in LANGUAGE_NAMES or confidence < 0.9):
            return LanguageInfo(code="en", confidence=0.5, script=script)
        return LanguageInfo(code=code, confidence=confidence, script=script)

    if script == "Cyrillic":
        return LanguageInfo(code="ru", confidence=0.7, script=script)
    return LanguageInfo(code="en", confidence=0.5, script=script)
