"""
Intent classification for handoff, context reset and emergencies.
The keyword classifier is a deliberately simple default; anything smarter
plugs in by implementing IntentClassifier.

Version: 1.0.0
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern

logger = logging.getLogger(__name__)

# Phrases that ask for a human
HANDOFF_KEYWORDS = [
    "human",
    "agent",
    "person",
    "representative",
    "speak to",
    "talk to",
    "connect me",
    "transfer",
    "escalate",
    "supervisor",
    "manager",
    "real person",
    "not satisfied",
    "complaint",
    "urgent",
    "emergency",
]

# Phrases that start a new topic
CLEAR_CONTEXT_PHRASES = [
    "new topic",
    "change topic",
    "start over",
    "reset",
    "clear chat",
    "new conversation",
    "forget that",
    "never mind",
]

# Words that raise the priority of a ticket
EMERGENCY_KEYWORDS = [
    "emergency", "urgent", "critical", "immediate", "asap", "help me",
    "crisis", "serious", "important", "priority", "accident", "injury",
    "danger", "threat", "security", "fraud", "scam", "hack", "breach",
    "stolen", "medical", "hospital", "ambulance", "police", "fire",
]


@dataclass
class HandoffIntent:
    """A detected request for a human, with the phrase that matched."""
    matched: str
    reason: str


class IntentClassifier(ABC):
    """Decides what an inbound text asks for beyond a normal reply."""

    @abstractmethod
    def detect_handoff(self, text: str) -> Optional[HandoffIntent]:
        """Return a HandoffIntent when the text asks for a human agent."""
        pass

    @abstractmethod
    def should_clear_context(self, text: str) -> bool:
        """True when the text asks to drop the conversation history."""
        pass

    @abstractmethod
    def emergency_matches(self, text: str) -> List[str]:
        """Emergency keywords present in the text."""
        pass

    def is_emergency(self, text: str) -> bool:
        return bool(self.emergency_matches(text))


def _compile(phrases: Iterable[str]) -> List[Pattern]:
    return [
        re.compile(r"\b" + re.escape(phrase.lower()) + r"\b")
        for phrase in phrases
    ]


class KeywordIntentClassifier(IntentClassifier):
    """
    Whole-word keyword matching, case-insensitive. A clear-context phrase
    anywhere in the message wipes the history.
    """

    def __init__(
        self,
        handoff_keywords: Optional[Iterable[str]] = None,
        clear_phrases: Optional[Iterable[str]] = None,
        emergency_keywords: Optional[Iterable[str]] = None
    ):
        self.handoff_keywords = list(handoff_keywords or HANDOFF_KEYWORDS)
        self.clear_phrases = [p.lower() for p in (clear_phrases or CLEAR_CONTEXT_PHRASES)]
        self.emergency_keywords = list(emergency_keywords or EMERGENCY_KEYWORDS)

        self._handoff_patterns = list(zip(self.handoff_keywords, _compile(self.handoff_keywords)))
        self._clear_patterns = list(zip(self.clear_phrases, _compile(self.clear_phrases)))
        self._emergency_patterns = list(zip(self.emergency_keywords, _compile(self.emergency_keywords)))

        logger.info(
            f"✓ KeywordIntentClassifier initialized "
            f"({len(self.handoff_keywords)} handoff, {len(self.clear_phrases)} clear, "
            f"{len(self.emergency_keywords)} emergency keywords)"
        )

    def detect_handoff(self, text: str) -> Optional[HandoffIntent]:
        lowered = text.lower()
        for keyword, pattern in self._handoff_patterns:
            if pattern.search(lowered):
                return HandoffIntent(matched=keyword, reason=f"Customer asked for '{keyword}'")
        return None

    def should_clear_context(self, text: str) -> bool:
        lowered = text.lower()
        return any(pattern.search(lowered) for _, pattern in self._clear_patterns)

    def emergency_matches(self, text: str) -> List[str]:
        lowered = text.lower()
        return [keyword for keyword, pattern in self._emergency_patterns if pattern.search(lowered)]


__all__ = [
    'IntentClassifier',
    'KeywordIntentClassifier',
    'HandoffIntent',
    'HANDOFF_KEYWORDS',
    'CLEAR_CONTEXT_PHRASES',
    'EMERGENCY_KEYWORDS',
]
