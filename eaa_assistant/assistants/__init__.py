"""
Assistants - auxiliary agents around the answer pipeline

Components:
- FrustrationDetector + EmailComposer: escalation to a human
- SuggestionGenerator: follow-up questions
- ProactiveAgent: suggestion while typing
- TermExplainer: EAA glossary on demand
- WelcomeBuilder: personalized greeting
- Transcriber: voice input
"""

from .email_composer import EmailComposer, EmailDraft
from .frustration import ContextFactors, FrustrationAnalysis, FrustrationDetector
from .proactive import ProactiveAgent
from .suggestions import SuggestionGenerator, SuggestionSet, fallback_suggestions
from .term_explainer import TermExplainer
from .transcriber import Transcriber
from .welcome import Welcome, WelcomeBuilder

__all__ = [
    "EmailComposer",
    "EmailDraft",
    "ContextFactors",
    "FrustrationAnalysis",
    "FrustrationDetector",
    "ProactiveAgent",
    "SuggestionGenerator",
    "SuggestionSet",
    "fallback_suggestions",
    "TermExplainer",
    "Transcriber",
    "Welcome",
    "WelcomeBuilder",
]
