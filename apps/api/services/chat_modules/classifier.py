"""
Chat Safety & Intent Classifier

Maps a user message to safety flags, per-domain intent scores and handoff
answers. `IntentClassifier` is the interface the routing engine depends on;
`KeywordClassifier` is the lexical implementation shipped today.

Scores are saturating, not probabilities: three distinct lexicon hits in a
domain already give full confidence 1.0.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .lexicons import DEFAULT_LEXICONS, Lexicons
from .roles import IntentDomain, MessageIntent, SafetyFlag

# Hits needed for full confidence
SATURATION_HITS = 3


@dataclass(frozen=True)
class IntentScores:
    """Per-domain intent confidence in [0, 1]."""
    training: float = 0.0
    nutrition: float = 0.0
    psychology: float = 0.0

    @property
    def all_zero(self) -> bool:
        return self.training == 0 and self.nutrition == 0 and self.psychology == 0

    @property
    def max_score(self) -> float:
        return max(self.training, self.nutrition, self.psychology)

    def for_domain(self, domain: IntentDomain) -> float:
        return getattr(self, domain.value)


class IntentClassifier(ABC):
    """
    Interface consumed by the routing engine.

    Implementations must be deterministic and free of side effects so that
    routing can run synchronously inside a turn.
    """

    @abstractmethod
    def detect_safety_flags(self, text: str) -> List[SafetyFlag]:
        """Return the safety flags present, in SafetyFlag declaration order."""

    @abstractmethod
    def detect_intent(self, text: str, domain: IntentDomain) -> float:
        """Return the confidence in [0, 1] that the text belongs to `domain`."""

    def score_intents(self, text: str) -> IntentScores:
        return IntentScores(
            training=self.detect_intent(text, IntentDomain.TRAINING),
            nutrition=self.detect_intent(text, IntentDomain.NUTRITION),
            psychology=self.detect_intent(text, IntentDomain.PSYCHOLOGY),
        )

    @abstractmethod
    def has_symptom_marker(self, text: str) -> bool:
        """Raw pain/injury/symptom marker, independent of the safety flags."""

    @abstractmethod
    def detect_eating_disorder_signs(self, text: str) -> bool:
        ...

    @abstractmethod
    def detect_handoff_confirmation(self, text: str) -> bool:
        ...

    @abstractmethod
    def detect_handoff_rejection(self, text: str) -> bool:
        ...

    @abstractmethod
    def detect_message_intent(self, text: str) -> MessageIntent:
        ...


def _contains_any(lower_text: str, keywords: Iterable[str]) -> bool:
    return any(kw in lower_text for kw in keywords)


def _matches_phrase(lower_text: str, phrases: Iterable[str]) -> bool:
    """Exact match, or the phrase followed by more words."""
    return any(lower_text == p or lower_text.startswith(p + " ") for p in phrases)


class KeywordClassifier(IntentClassifier):
    """Case-insensitive substring classifier over injected lexicons."""

    def __init__(self, lexicons: Optional[Lexicons] = None):
        self.lexicons = lexicons or DEFAULT_LEXICONS
        self._domain_lexicons = {
            IntentDomain.TRAINING: self.lexicons.training,
            IntentDomain.NUTRITION: self.lexicons.nutrition,
            IntentDomain.PSYCHOLOGY: self.lexicons.psychology,
        }
        self._flag_lexicons = (
            (SafetyFlag.MEDICAL_EMERGENCY, self.lexicons.medical_emergency),
            (SafetyFlag.INJURY_RISK, self.lexicons.injury_risk),
            (SafetyFlag.MEDICAL_ADVICE, self.lexicons.medical_advice),
        )

    def detect_safety_flags(self, text: str) -> List[SafetyFlag]:
        lower = (text or "").lower()
        return [flag for flag, keywords in self._flag_lexicons if _contains_any(lower, keywords)]

    def detect_intent(self, text: str, domain: IntentDomain) -> float:
        lower = (text or "").lower()
        # Distinct entries; a repeated word counts once
        hits = sum(1 for kw in set(self._domain_lexicons[domain]) if kw in lower)
        return min(hits / SATURATION_HITS, 1.0)

    def has_symptom_marker(self, text: str) -> bool:
        return _contains_any((text or "").lower(), self.lexicons.symptom_markers)

    def detect_eating_disorder_signs(self, text: str) -> bool:
        return _contains_any((text or "").lower(), self.lexicons.eating_disorder)

    def detect_handoff_confirmation(self, text: str) -> bool:
        # Deliberately broad: a false "yes" costs less than a missed one
        lower = (text or "").lower().strip()
        if not lower:
            return False
        return _matches_phrase(lower, self.lexicons.handoff_confirm) or (
            self.lexicons.handoff_connect_stem in lower
        )

    def detect_handoff_rejection(self, text: str) -> bool:
        lower = (text or "").lower().strip()
        if not lower:
            return False
        return _matches_phrase(lower, self.lexicons.handoff_reject)

    def detect_message_intent(self, text: str) -> MessageIntent:
        lower = (text or "").lower()
        if _contains_any(lower, self.lexicons.generate_workout):
            return MessageIntent.GENERATE_WORKOUT
        if _contains_any(lower, self.lexicons.edit_workout):
            return MessageIntent.EDIT_WORKOUT
        return MessageIntent.CHAT
