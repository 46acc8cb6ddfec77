"""Action ledger: turns user text into tracked actions and resolves them.

Parsing is pattern based. A message is split into sentences (quoted and
bracketed spans are never split), scene-direction spans in ``*asterisks*``,
``[brackets]`` or ``(parentheses)`` become "meta" actions verbatim, and the
remaining text is scanned against per-type verb families. Every non-empty
user turn yields at least one action.
"""

from __future__ import annotations

import copy
import logging
import re
import time
import uuid
from collections import Counter
from typing import Callable

from roleplay_state.config import ResolutionPolicy
from roleplay_state.heuristics import content_keywords
from roleplay_state.models import ACTION_TYPES, ActionLedgerState, TrackedAction

logger = logging.getLogger(__name__)

_INFLECT = r"(?:s|es|d|ed|ing)?"


def _inflect(word: str) -> str:
    escaped = re.escape(word)
    forms = [rf"{escaped}{_INFLECT}"]
    if word.endswith("e"):
        # smile -> smiling
        forms.append(rf"{re.escape(word[:-1])}ing")
    elif word[-1] not in "aeiouwxy":
        # run -> running, step -> stepped
        forms.append(rf"{escaped}{re.escape(word[-1])}(?:ed|ing)")
    return "|".join(forms)


def _verb_family(*verbs: str) -> re.Pattern:
    """Match any verb in the family; only the first word of a phrase inflects."""
    alternatives = []
    for verb in verbs:
        head, *rest = verb.split()
        alternatives.append(r"\s+".join([f"(?:{_inflect(head)})", *map(re.escape, rest)]))
    return re.compile(rf"\b(?:{'|'.join(alternatives)})\b", re.IGNORECASE)


ACTION_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("physical", _verb_family(
        "walk", "run", "move", "step", "jump", "leap", "crawl", "climb", "fall",
        "push", "pull", "grab", "hold", "release", "throw", "catch", "hit",
        "strike", "punch", "kick", "block", "dodge", "roll", "crouch", "stand",
        "sit", "lie", "kneel", "reach", "stretch", "lean", "bend", "turn",
        "spin", "twist", "squeeze", "lift", "lower", "drop", "pick up",
    )),
    ("verbal", _verb_family(
        "say", "speak", "tell", "ask", "whisper", "shout", "yell", "scream",
        "mutter", "murmur", "growl", "hiss", "sigh", "moan", "groan", "laugh",
        "cry", "sob", "gasp", "demand", "order", "command", "call", "reply",
        "respond", "answer", "admit", "confess", "deny", "explain", "describe",
        "narrate",
    )),
    ("emotional", _verb_family(
        "smile", "frown", "grin", "smirk", "blush", "pale", "tremble", "shake",
        "shiver", "shudder", "tense", "relax", "flinch", "wince", "cringe",
        "glare", "stare", "gaze", "glance", "look away", "avert",
    )),
    ("observational", _verb_family(
        "look", "see", "watch", "observe", "notice", "spot", "examine",
        "inspect", "study", "scan", "search", "find", "discover", "recognize",
        "realize",
    )),
    ("environmental", _verb_family(
        "open", "close", "shut", "lock", "unlock", "break", "smash", "destroy",
        "build", "create", "light", "extinguish", "burn", "freeze", "melt",
        "pour", "spill", "clean", "arrange", "scatter",
    )),
    ("intimate", _verb_family(
        "kiss", "embrace", "hug", "caress", "stroke", "touch", "fondle", "press",
        "rub", "massage", "nuzzle", "nibble", "lick", "bite", "taste", "feel",
        "explore", "undress", "remove", "slip off", "pull down",
    )),
]

META_PATTERN = re.compile(r"\*([^*]+)\*|\[([^\]]+)\]|\(([^)]+)\)")

_COMPOUND = re.compile(r"\b(?:and then|then|before|after|while|as)\b", re.IGNORECASE)
_TARGET_PATTERNS = [
    re.compile(
        r"\b(?:to|at|toward|towards|into|onto|against)\s+(?:(?:the|a|an)\s+)?([A-Za-z]+)",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:his|her|their|your)\s+([A-Za-z]+)", re.IGNORECASE),
]
_CONSEQUENCE_PATTERNS = [
    re.compile(r"\b(?:result|consequence|effect|react|respond|feel|sense|notice)", re.IGNORECASE),
    re.compile(r"\b(?:because|due to|from|caused|led to|made)\b", re.IGNORECASE),
]

TYPE_INDICATORS: dict[str, tuple[str, ...]] = {
    "physical": ("movement", "motion", "body", "force", "impact", "contact", "position"),
    "verbal": ("said", "spoke", "voice", "word", "tone", "reply", "response"),
    "emotional": ("felt", "emotion", "expression", "face", "eyes", "heart", "feeling"),
    "observational": ("saw", "noticed", "observed", "appeared", "seemed", "looked"),
    "environmental": ("room", "space", "area", "atmosphere", "surroundings", "environment"),
    "intimate": ("touch", "skin", "body", "sensation", "warmth", "closeness"),
    "meta": ("scene", "moment", "time", "then", "suddenly", "meanwhile"),
    "other": (),
}

_PRONOUNS = {"i": "user", "he": "he", "she": "she", "they": "they", "we": "we", "you": "you"}
_NOT_SUBJECTS = {
    "the", "a", "an", "then", "and", "but", "so", "as", "when", "while", "after",
    "before", "hello", "hi", "hey", "oh", "ah", "well", "yes", "no", "okay",
    "please", "what", "who", "why", "how", "where", "slowly", "quickly",
}
_OPENERS = {'"': '"', "“": "”", "*": "*", "[": "]", "(": ")"}
_MAX_RAW_TEXT = 280

EMPTY_TURN_TEXT = "(empty turn)"


def split_sentences(text: str) -> list[str]:
    """Split text on . ! ? and newlines without breaking quoted or marked-up spans."""
    sentences: list[str] = []
    current: list[str] = []
    closer: str | None = None

    for i, char in enumerate(text):
        prev = text[i - 1] if i > 0 else " "
        nxt = text[i + 1] if i + 1 < len(text) else " "
        current.append(char)

        if closer is not None:
            if char == closer and (closer != "'" or not nxt.isalnum()):
                closer = None
            continue

        if char in _OPENERS:
            closer = _OPENERS[char]
        elif char == "'" and not prev.isalnum():
            closer = "'"
        elif char in ".!?\n":
            sentences.append("".join(current))
            current = []

    sentences.append("".join(current))
    return [s.strip() for s in sentences if any(c.isalnum() for c in s)]


def action_context(sentence: str, start: int, before: int = 2, after: int = 3) -> str:
    """Words around the match starting at ``start``: ``before`` words, the verb, ``after`` words."""
    words = sentence.split()
    index = len(sentence[:start].split())
    if sentence[:start] and not sentence[:start][-1].isspace():
        index -= 1  # match starts mid-token
    index = max(0, min(index, len(words) - 1))
    window = words[max(0, index - before):index + after + 1]
    return " ".join(window).strip().rstrip(".,!?;:").strip()


def infer_subject(sentence: str) -> str:
    words = sentence.strip().lstrip("*[(\"'“").split()
    if not words:
        return "user"
    first = words[0].strip(".,!?;:\"'”")
    if first.lower() in _PRONOUNS:
        return _PRONOUNS[first.lower()]
    if (
        re.fullmatch(r"[A-Z][a-z]+", first)
        and first.lower() not in _NOT_SUBJECTS
        and not any(pattern.fullmatch(first) for _, pattern in ACTION_PATTERNS)
    ):
        return first
    return "user"


def infer_target(sentence: str) -> str | None:
    for pattern in _TARGET_PATTERNS:
        match = pattern.search(sentence)
        if match:
            return match.group(1)
    return None


def _looks_like_speech(residual: str, used_markup: bool) -> bool:
    stripped = residual.strip()
    return used_markup or stripped[:1] in ("\"", "“", "'") or stripped.endswith("?")


def _cap(text: str) -> str:
    text = " ".join(text.split())
    if len(text) > _MAX_RAW_TEXT:
        return text[:_MAX_RAW_TEXT - 3].rstrip() + "..."
    return text


def extract_action_phrases(message: str) -> list[tuple[str, str, str]]:
    """Find the actions described in a message.

    Returns ``(action_type, text, sentence)`` triples in reading order. Never
    returns an empty list.
    """
    found: list[tuple[str, str, str]] = []
    seen: set[str] = set()

    def add(action_type: str, text: str, sentence: str) -> None:
        text = _cap(text)
        key = f"{action_type}:{text.lower()}"
        if text and key not in seen:
            seen.add(key)
            found.append((action_type, text, sentence))

    used_markup = bool(META_PATTERN.search(message))

    for sentence in split_sentences(message):
        for match in META_PATTERN.finditer(sentence):
            content = next(g for g in match.groups() if g is not None).strip()
            add("meta", content, content)

        residual = META_PATTERN.sub(" ", sentence)
        if not any(c.isalnum() for c in residual):
            continue

        before = len(found)
        for action_type, pattern in ACTION_PATTERNS:
            for match in pattern.finditer(residual):
                add(action_type, action_context(residual, match.start()), residual)

        if len(found) == before:
            if _looks_like_speech(residual, used_markup):
                add("verbal", residual.strip().rstrip(".!"), residual)
            elif not found and _COMPOUND.search(residual):
                add("other", residual, residual)

    if not found:
        stripped = message.strip()
        if not stripped:
            found.append(("other", EMPTY_TURN_TEXT, ""))
        elif stripped[:1] in ("\"", "“", "'"):
            found.append(("verbal", _cap(stripped), stripped))
        else:
            found.append(("other", _cap(stripped), stripped))
    return found


def has_consequence_cue(response: str) -> bool:
    return any(p.search(response) for p in _CONSEQUENCE_PATTERNS)


def was_action_addressed(
    response: str,
    action: TrackedAction,
    policy: ResolutionPolicy | None = None,
) -> bool:
    """Heuristic check that a reply acknowledged an action.

    True when the reply shares a content keyword with the action and also
    carries a consequence cue or a type indicator, or when the reply is long
    enough to presume the narrative moved on.
    """
    policy = policy or ResolutionPolicy()
    if len(response) > policy.long_reply_threshold:
        return True

    response_lower = response.lower()
    keywords = content_keywords(action.raw_text, policy.min_keyword_length)
    if not any(word in response_lower for word in keywords):
        return False

    if has_consequence_cue(response):
        return True
    return any(ind in response_lower for ind in TYPE_INDICATORS.get(action.action_type, ()))


class ActionLedger:
    """Tracks user actions until the narrative acknowledges them."""

    def __init__(
        self,
        max_pending: int = 20,
        retention_turns: int = 5,
        policy: ResolutionPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_pending = max_pending
        self.retention_turns = retention_turns
        self.policy = policy or ResolutionPolicy()
        self._clock = clock
        self.state = ActionLedgerState()

    @property
    def current_turn(self) -> int:
        return self.state.current_turn

    @property
    def pending_count(self) -> int:
        return self.state.pending_count

    def advance_turn(self) -> int:
        self.state.current_turn += 1
        return self.state.current_turn

    # -------------------------------------------------------------------------
    # Parsing and tracking
    # -------------------------------------------------------------------------

    def parse_user_message(self, message: str) -> list[TrackedAction]:
        """Parse a user message into new, unresolved actions for the current turn."""
        now = self._clock()
        return [
            TrackedAction(
                id=f"act_{uuid.uuid4().hex[:12]}",
                raw_text=text,
                action_type=action_type,
                subject=infer_subject(sentence),
                target=infer_target(sentence),
                turn_created=self.state.current_turn,
                timestamp=now,
            )
            for action_type, text, sentence in extract_action_phrases(message)
        ]

    def track_actions(self, actions: list[TrackedAction]) -> None:
        for action in actions:
            if action.action_type not in ACTION_TYPES:
                raise ValueError(f"Invalid action type: {action.action_type}")
            self.state.actions.append(action)
        self._trim()

    def get_pending_actions(self) -> list[TrackedAction]:
        return [copy.copy(a) for a in self.state.actions if not a.resolved]

    def get_action(self, action_id: str) -> TrackedAction | None:
        for action in self.state.actions:
            if action.id == action_id:
                return copy.copy(action)
        return None

    def pending_actions_for_prompt(self) -> str:
        pending = self.get_pending_actions()
        if not pending:
            return ""
        lines = ["UNRESOLVED USER ACTIONS (must all be addressed):"]
        for idx, action in enumerate(pending, 1):
            lines.append(f"{idx}. [{action.action_type.upper()}] {action.raw_text}")
            if action.target:
                lines.append(f"   Target: {action.target}")
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def check_actions_in_response(
        self, response: str, actions: list[TrackedAction]
    ) -> dict[str, bool]:
        return {a.id: was_action_addressed(response, a, self.policy) for a in actions}

    def resolve_actions(self, action_ids: list[str], note: str | None = None) -> list[str]:
        """Mark actions resolved. Returns the ids that were actually pending."""
        wanted = set(action_ids)
        resolved = []
        for action in self.state.actions:
            if action.id in wanted and not action.resolved:
                action.resolved = True
                action.turn_resolved = self.state.current_turn
                action.resolution_note = note
                resolved.append(action.id)
        return resolved

    def auto_resolve_from_response(self, response: str) -> list[str]:
        results = self.check_actions_in_response(response, self.get_pending_actions())
        addressed = [action_id for action_id, ok in results.items() if ok]
        if not addressed:
            return []
        return self.resolve_actions(addressed, "Auto-resolved from response analysis")

    def force_resolve_all(self, reason: str) -> list[str]:
        ids = [a.id for a in self.state.actions if not a.resolved]
        if ids:
            logger.info("Force resolving %d pending actions: %s", len(ids), reason)
        return self.resolve_actions(ids, f"Force resolved: {reason}")

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def _trim(self) -> None:
        cutoff = self.state.current_turn - self.retention_turns
        self.state.actions = [
            a for a in self.state.actions if not a.resolved or a.turn_created >= cutoff
        ]

        pending = [a for a in self.state.actions if not a.resolved]
        overflow = len(pending) - self.max_pending
        if overflow > 0:
            logger.warning(
                "Pending action limit %d exceeded, resolving %d oldest",
                self.max_pending,
                overflow,
            )
            self.resolve_actions(
                [a.id for a in pending[:overflow]], "Auto-resolved due to pending limit"
            )

    def clear(self) -> None:
        """Drop every action. The turn counter is kept."""
        self.state = ActionLedgerState(current_turn=self.state.current_turn)

    def export_state(self) -> ActionLedgerState:
        return copy.deepcopy(self.state)

    def import_state(self, state: ActionLedgerState) -> None:
        self.state = copy.deepcopy(state)

    def get_statistics(self) -> dict:
        by_type = Counter({t: 0 for t in ACTION_TYPES})
        resolution_turns = []
        for action in self.state.actions:
            by_type[action.action_type] += 1
            if action.resolved and action.turn_resolved is not None:
                resolution_turns.append(action.turn_resolved - action.turn_created)

        resolved = sum(1 for a in self.state.actions if a.resolved)
        return {
            "total_actions": len(self.state.actions),
            "pending_actions": self.state.pending_count,
            "resolved_actions": resolved,
            "actions_by_type": dict(by_type),
            "average_resolution_turns": (
                sum(resolution_turns) / len(resolution_turns) if resolution_turns else 0.0
            ),
            "current_turn": self.state.current_turn,
        }
