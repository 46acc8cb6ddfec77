"""Pure text heuristics shared by the ledger, validator and engine.

Nothing here touches engine state. Every function takes text (and, where
needed, parsed actions) and returns plain values, so the rules can be tuned
and tested in isolation.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from roleplay_state.models import TrackedAction

QUOTE_CHARS = '"“”'

_WORD_RE = re.compile(r"[a-z0-9']+")

_EMOTION_PATTERNS = [
    re.compile(
        r"(\w+)(?:'s)?\s+(?:face|expression|eyes)\s+(?:showed?|revealed?|betrayed?)\s+(\w+)",
        re.IGNORECASE,
    ),
    re.compile(r"(\w+)\s+(?:felt|looked|seemed|appeared)\s+(\w+)", re.IGNORECASE),
]

_TENSION_UP = ("tension", "intense", "heated", "escalate", "surge", "spike")
_TENSION_DOWN = ("calm", "relax", "ease", "settle", "subside")

_POSITIVE_AFFECT = re.compile(
    r"\b(joy|happy|love|excitement|pleasure|delight)\b", re.IGNORECASE
)
_NEGATIVE_AFFECT = re.compile(
    r"\b(fear|anger|sadness|pain|distress|anxiety)\b", re.IGNORECASE
)

# Words that follow "felt/looked/seemed" without naming an emotion.
_NON_EMOTIONS = {
    "a", "an", "the", "like", "as", "at", "to", "up", "down", "over", "around",
    "back", "away", "into", "out", "through", "toward", "towards", "him",
    "her", "them", "it", "his", "their", "its", "more", "less", "so", "very",
    "almost", "for",
}


@dataclass
class EmotionChange:
    name: str
    emotion: str


@dataclass
class StateDelta:
    """Coarse state changes read out of a reply."""

    emotional_changes: list[EmotionChange] = field(default_factory=list)
    tension_delta: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.emotional_changes and self.tension_delta == 0


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def content_keywords(text: str, min_length: int = 4) -> list[str]:
    """Lower-cased words of at least min_length characters, in order."""
    return [w for w in _WORD_RE.findall(text.lower()) if len(w) >= min_length]


def shares_keyword(text: str, other: str, min_length: int = 4) -> bool:
    """True if any content keyword of text appears in other."""
    other_lower = other.lower()
    return any(word in other_lower for word in content_keywords(text, min_length))


def is_within_dialogue(text: str, index: int) -> bool:
    """True if index falls inside a double-quoted span.

    Counts quote characters before the index; an odd count means the
    position is inside dialogue.
    """
    count = sum(1 for ch in text[:index] if ch in QUOTE_CHARS)
    return count % 2 == 1


def word_phrases(text: str, size: int, min_chars: int = 16) -> list[str]:
    """Sliding windows of size words that are at least min_chars long."""
    words = text.split()
    phrases = []
    for i in range(len(words) - size + 1):
        phrase = " ".join(words[i:i + size])
        if len(phrase) >= min_chars:
            phrases.append(phrase)
    return phrases


def count_dialogue_segments(text: str) -> int:
    """Number of quoted segments (pairs of quote characters)."""
    return sum(1 for ch in text if ch in QUOTE_CHARS) // 2


def extract_state_deltas(reply: str) -> StateDelta:
    """Read emotion changes and a tension delta out of a reply."""
    delta = StateDelta()

    for pattern in _EMOTION_PATTERNS:
        for match in pattern.finditer(reply):
            name, emotion = match.group(1), match.group(2).lower()
            if emotion in _NON_EMOTIONS:
                continue
            delta.emotional_changes.append(EmotionChange(name=name, emotion=emotion))

    reply_lower = reply.lower()
    raw = 0.0
    for word in _TENSION_UP:
        if word in reply_lower:
            raw += 0.5
    for word in _TENSION_DOWN:
        if word in reply_lower:
            raw -= 0.5
    delta.tension_delta = round_half_up(raw)
    return delta


def score_event_importance(actions: list[TrackedAction], reply: str) -> int:
    """Importance of an exchange on the 1..10 scale."""
    importance = 5
    types = {a.action_type for a in actions}
    if "intimate" in types:
        importance += 2
    if "emotional" in types:
        importance += 1
    if len(reply) > 1000:
        importance += 1
    if count_dialogue_segments(reply) > 3:
        importance += 1
    return min(10, importance)


def score_emotional_weight(reply: str) -> int:
    """Positive/negative affect of a reply on the -10..10 scale."""
    weight = 0
    if _POSITIVE_AFFECT.search(reply):
        weight += 3
    if _NEGATIVE_AFFECT.search(reply):
        weight -= 3
    return max(-10, min(10, weight))


def classify_event(actions: list[TrackedAction]) -> str:
    types = {a.action_type for a in actions}
    if "intimate" in types:
        return "intimate"
    if types and types <= {"verbal"}:
        return "dialogue"
    return "action"


def summarize_exchange(user_message: str, reply: str, width: int = 50) -> str:
    """One-line summary of a user message and the reply to it."""

    def brief(text: str) -> str:
        text = " ".join(text.split())
        return text[:width] + ("..." if len(text) > width else "")

    return f"User: {brief(user_message)} -> Response: {brief(reply)}"
