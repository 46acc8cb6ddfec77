"""Short-term (per scene) and long-term (per session) memory stores."""

from __future__ import annotations

import copy
import dataclasses
import logging
import re
import time
import uuid
from collections import deque
from typing import Any, Callable

from roleplay_state.embedding import EmbeddingBackend, cosine_similarity
from roleplay_state.models import (
    EVENT_TYPES,
    FACT_CATEGORIES,
    CharacterMemoryRecord,
    ConversationThread,
    FactMemory,
    LongTermMemory,
    MemoryEvent,
    RelationshipMemory,
    ShortTermMemory,
    UserProfile,
    clamp,
)

logger = logging.getLogger(__name__)

HIGH_IMPORTANCE = 7
MAX_KEY_MOMENTS = 20
MAX_RELATIONSHIP_HISTORY = 20
MAX_PROFILE_TAGS = 10


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _keep_most_important(events: list[MemoryEvent], limit: int) -> list[MemoryEvent]:
    """Keep the ``limit`` most important events, newer first on ties, in original order."""
    if len(events) <= limit:
        return events
    ranked = sorted(
        enumerate(events), key=lambda pair: (pair[1].importance, pair[0]), reverse=True
    )
    kept = sorted(ranked[:limit], key=lambda pair: pair[0])
    return [event for _, event in kept]


def _push_capped(items: list[str], item: str, limit: int) -> None:
    if item in items:
        return
    items.append(item)
    del items[:-limit]


class ShortTermMemoryManager:
    """Scene-scoped events, conversation threads and scratch state."""

    def __init__(
        self,
        scene_id: str,
        max_events: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self.memory = ShortTermMemory(scene_id=scene_id, max_events=max_events)

    @property
    def scene_id(self) -> str:
        return self.memory.scene_id

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def add_event(
        self,
        turn_number: int,
        event_type: str,
        summary: str,
        participants: list[str] | None = None,
        importance: int = 5,
        emotional_weight: int = 0,
    ) -> MemoryEvent:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Invalid event type: {event_type}")
        event = MemoryEvent(
            id=_new_id("evt"),
            timestamp=self._clock(),
            turn_number=turn_number,
            event_type=event_type,
            summary=summary,
            participants=list(participants or []),
            importance=int(clamp(importance, 1, 10)),
            emotional_weight=int(clamp(emotional_weight, -10, 10)),
        )
        self.memory.events.append(event)
        self.memory.events = _keep_most_important(self.memory.events, self.memory.max_events)
        return copy.deepcopy(event)

    def get_recent_events(self, count: int | None = None) -> list[MemoryEvent]:
        if count is None:
            return copy.deepcopy(self.memory.events)
        if count <= 0:
            return []
        return copy.deepcopy(self.memory.events[-count:])

    def get_events_by_type(self, event_type: str) -> list[MemoryEvent]:
        return copy.deepcopy([e for e in self.memory.events if e.event_type == event_type])

    def get_events_by_participant(self, participant: str) -> list[MemoryEvent]:
        wanted = participant.lower()
        return copy.deepcopy([
            e for e in self.memory.events
            if any(p.lower() == wanted for p in e.participants)
        ])

    def get_high_importance_events(self, min_importance: int = HIGH_IMPORTANCE) -> list[MemoryEvent]:
        return copy.deepcopy([e for e in self.memory.events if e.importance >= min_importance])

    # -------------------------------------------------------------------------
    # Threads
    # -------------------------------------------------------------------------

    def start_thread(self, topic: str, participants: list[str], turn_number: int) -> ConversationThread:
        thread = ConversationThread(
            id=_new_id("thread"),
            topic=topic,
            participants=list(participants),
            start_turn=turn_number,
            last_turn=turn_number,
        )
        self.memory.threads.append(thread)
        return copy.deepcopy(thread)

    def _thread(self, thread_id: str) -> ConversationThread:
        for thread in self.memory.threads:
            if thread.id == thread_id:
                return thread
        raise KeyError(f"Thread not found: {thread_id}")

    def update_thread(self, thread_id: str, **updates) -> None:
        thread = self._thread(thread_id)
        names = {f.name for f in dataclasses.fields(thread)} - {"id"}
        for key, value in updates.items():
            if key not in names:
                raise ValueError(f"Unknown thread field: {key}")
            setattr(thread, key, value)

    def add_key_point(self, thread_id: str, key_point: str, turn_number: int | None = None) -> None:
        thread = self._thread(thread_id)
        thread.key_points.append(key_point)
        if turn_number is not None:
            thread.last_turn = max(thread.last_turn, turn_number)

    def resolve_thread(self, thread_id: str) -> None:
        self._thread(thread_id).resolved = True

    def get_active_threads(self) -> list[ConversationThread]:
        return copy.deepcopy([t for t in self.memory.threads if not t.resolved])

    def get_thread_by_topic(self, keyword: str) -> ConversationThread | None:
        keyword = keyword.lower()
        for thread in self.memory.threads:
            if not thread.resolved and keyword in thread.topic.lower():
                return copy.deepcopy(thread)
        return None

    # -------------------------------------------------------------------------
    # Scratch state
    # -------------------------------------------------------------------------

    def set_temp_state(self, key: str, value: Any) -> None:
        self.memory.temp_states[key] = value

    def get_temp_state(self, key: str, default: Any = None) -> Any:
        return self.memory.temp_states.get(key, default)

    def clear_temp_state(self, key: str) -> None:
        self.memory.temp_states.pop(key, None)

    # -------------------------------------------------------------------------
    # Lifecycle and summaries
    # -------------------------------------------------------------------------

    def reset(self, scene_id: str) -> None:
        self.memory = ShortTermMemory(scene_id=scene_id, max_events=self.memory.max_events)

    def summary_for_prompt(self, max_events: int = 5) -> str:
        recent = self.memory.events[-max_events:] if max_events > 0 else []
        if not recent:
            return ""
        lines = ["Recent scene events:"]
        lines.extend(f"- [{e.event_type}] {e.summary}" for e in recent)
        return "\n".join(lines)

    def compact_summary(self) -> str:
        parts = []
        important = [e.summary for e in self.memory.events if e.importance >= HIGH_IMPORTANCE]
        if important:
            parts.append("Key events: " + "; ".join(important))
        active = [t.topic for t in self.memory.threads if not t.resolved]
        if active:
            parts.append("Active topics: " + ", ".join(active))
        return " | ".join(parts)

    def export_state(self) -> ShortTermMemory:
        return copy.deepcopy(self.memory)

    def import_state(self, memory: ShortTermMemory) -> None:
        self.memory = copy.deepcopy(memory)


class LongTermMemoryManager:
    """Cross-scene memory: user profile, per-character records, relationships and facts."""

    def __init__(
        self,
        max_facts: int = 100,
        max_interactions: int = 50,
        embedding: EmbeddingBackend | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_facts = max_facts
        self.max_interactions = max_interactions
        self._embedding = embedding
        self._fact_vectors: dict[str, list[float]] = {}
        self._clock = clock
        self.memory = LongTermMemory()

    # -------------------------------------------------------------------------
    # User profile
    # -------------------------------------------------------------------------

    def get_user_profile(self) -> UserProfile:
        return copy.deepcopy(self.memory.user_profile)

    def update_user_profile(self, **updates) -> None:
        profile = self.memory.user_profile
        names = {f.name for f in dataclasses.fields(profile)}
        for key, value in updates.items():
            if key not in names:
                raise ValueError(f"Unknown user profile field: {key}")
            if key == "pacing_preference" and value not in ("slow", "moderate", "fast"):
                raise ValueError(f"Invalid pacing preference: {value}")
            setattr(profile, key, copy.deepcopy(value))

    def add_interaction_style(self, style: str) -> None:
        _push_capped(self.memory.user_profile.interaction_style, style, MAX_PROFILE_TAGS)

    def add_user_pattern(self, pattern: str) -> None:
        _push_capped(self.memory.user_profile.patterns, pattern, MAX_PROFILE_TAGS)

    def set_user_preference(self, key: str, value: bool) -> None:
        self.memory.user_profile.preferences[key] = bool(value)

    # -------------------------------------------------------------------------
    # Character memory
    # -------------------------------------------------------------------------

    def get_character_memory(self, character_id: str) -> CharacterMemoryRecord | None:
        record = self.memory.character_memories.get(character_id)
        return copy.deepcopy(record) if record else None

    def _record(self, character_id: str) -> CharacterMemoryRecord:
        return self.memory.character_memories.setdefault(
            character_id, CharacterMemoryRecord(character_id=character_id)
        )

    def initialize_character_memory(self, character_id: str) -> CharacterMemoryRecord:
        return copy.deepcopy(self._record(character_id))

    def add_character_interaction(self, character_id: str, event: MemoryEvent) -> None:
        record = self._record(character_id)
        record.interactions.append(copy.deepcopy(event))
        record.interactions = _keep_most_important(record.interactions, self.max_interactions)

    def add_key_moment(self, character_id: str, moment: str) -> None:
        _push_capped(self._record(character_id).key_moments, moment, MAX_KEY_MOMENTS)

    def update_character_disposition(self, character_id: str, delta: float) -> float:
        record = self._record(character_id)
        record.disposition = clamp(record.disposition + delta, -10, 10)
        return record.disposition

    def update_character_relationship(self, character_id: str, relationship: str) -> None:
        self._record(character_id).user_relationship = relationship

    def clear_character_memory(self, character_id: str) -> None:
        self.memory.character_memories.pop(character_id, None)

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------

    def _find_relationship(self, a: str, b: str) -> RelationshipMemory | None:
        for rel in self.memory.relationships:
            if {rel.character_a, rel.character_b} == {a, b}:
                return rel
        return None

    def get_relationship(self, a: str, b: str) -> RelationshipMemory | None:
        rel = self._find_relationship(a, b)
        return copy.deepcopy(rel) if rel else None

    def set_relationship(self, relationship: RelationshipMemory) -> None:
        relationship = copy.deepcopy(relationship)
        relationship.tension = clamp(relationship.tension, 0, 10)
        del relationship.history[:-MAX_RELATIONSHIP_HISTORY]
        existing = self._find_relationship(relationship.character_a, relationship.character_b)
        if existing:
            self.memory.relationships[self.memory.relationships.index(existing)] = relationship
        else:
            self.memory.relationships.append(relationship)

    def update_relationship_history(self, a: str, b: str, event: str) -> None:
        rel = self._find_relationship(a, b)
        if rel is None:
            rel = RelationshipMemory(character_a=a, character_b=b)
            self.memory.relationships.append(rel)
        rel.history.append(event)
        del rel.history[:-MAX_RELATIONSHIP_HISTORY]

    def adjust_relationship_tension(self, a: str, b: str, delta: float) -> float:
        rel = self._find_relationship(a, b)
        if rel is None:
            rel = RelationshipMemory(character_a=a, character_b=b)
            self.memory.relationships.append(rel)
        rel.tension = clamp(rel.tension + delta, 0, 10)
        return rel.tension

    # -------------------------------------------------------------------------
    # Facts
    # -------------------------------------------------------------------------

    def add_fact(
        self,
        category: str,
        content: str,
        confidence: float = 1.0,
        source: str = "conversation",
    ) -> FactMemory:
        """Store a fact, evicting the lowest ranked one if over capacity.

        Facts rank by confidence, then by when they were last referenced.
        """
        if category not in FACT_CATEGORIES:
            raise ValueError(f"Invalid fact category: {category}")
        now = self._clock()
        fact = FactMemory(
            id=_new_id("fact"),
            category=category,
            content=content,
            confidence=clamp(confidence, 0, 1),
            source=source,
            created_at=now,
            last_referenced_at=now,
        )
        self.memory.facts.append(fact)
        self._evict_facts()
        return copy.deepcopy(fact)

    def _evict_facts(self) -> None:
        facts = self.memory.facts
        if len(facts) <= self.max_facts:
            return
        ranked = sorted(
            enumerate(facts),
            key=lambda pair: (pair[1].confidence, pair[1].last_referenced_at, pair[0]),
            reverse=True,
        )
        kept = sorted(ranked[:self.max_facts], key=lambda pair: pair[0])
        kept_ids = {fact.id for _, fact in kept}
        for fact in facts:
            if fact.id not in kept_ids:
                logger.debug("Evicting fact %s (confidence %.2f)", fact.id, fact.confidence)
                self._fact_vectors.pop(fact.id, None)
        self.memory.facts = [fact for _, fact in kept]

    def get_fact(self, fact_id: str) -> FactMemory | None:
        for fact in self.memory.facts:
            if fact.id == fact_id:
                return copy.deepcopy(fact)
        return None

    def get_facts_by_category(self, category: str) -> list[FactMemory]:
        return copy.deepcopy([f for f in self.memory.facts if f.category == category])

    def search_facts(self, query: str) -> list[FactMemory]:
        query = query.lower()
        return copy.deepcopy([
            f for f in self.memory.facts
            if query in f.content.lower() or query in f.source.lower()
        ])

    def reference_fact(self, fact_id: str) -> None:
        for fact in self.memory.facts:
            if fact.id == fact_id:
                fact.last_referenced_at = self._clock()
                return

    def update_fact_confidence(self, fact_id: str, confidence: float) -> None:
        for fact in self.memory.facts:
            if fact.id == fact_id:
                fact.confidence = clamp(confidence, 0, 1)
                return

    def get_relevant_facts(self, keywords: list[str], max_facts: int = 5) -> list[FactMemory]:
        """Facts mentioning any keyword, most confident first. Marks them referenced."""
        lowered = [k.lower() for k in keywords if k]
        matches = [
            f for f in self.memory.facts
            if any(k in f.content.lower() for k in lowered)
        ]
        matches.sort(key=lambda f: f.confidence, reverse=True)
        now = self._clock()
        for fact in matches[:max_facts]:
            fact.last_referenced_at = now
        return copy.deepcopy(matches[:max_facts])

    def get_similar_facts(self, query: str, limit: int = 5) -> list[tuple[FactMemory, float]]:
        """Facts ordered by embedding similarity to the query."""
        if self._embedding is None:
            raise ValueError("No embedding backend configured")
        if not self.memory.facts:
            return []
        missing = [f for f in self.memory.facts if f.id not in self._fact_vectors]
        if missing:
            vectors = self._embedding.embed_batch([f.content for f in missing])
            for fact, vector in zip(missing, vectors):
                self._fact_vectors[fact.id] = vector

        query_vector = self._embedding.embed(query)
        scored = [
            (fact, cosine_similarity(query_vector, self._fact_vectors[fact.id]))
            for fact in self.memory.facts
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [(copy.deepcopy(f), score) for f, score in scored[:limit]]

    # -------------------------------------------------------------------------
    # Prompt summaries
    # -------------------------------------------------------------------------

    def user_model_notes(self) -> str:
        profile = self.memory.user_profile
        lines = []
        if profile.user_name:
            lines.append(f"User: {profile.user_name}")
        lines.append(f"Pacing preference: {profile.pacing_preference}")
        if profile.interaction_style:
            lines.append("Interaction style: " + ", ".join(profile.interaction_style[-3:]))
        if profile.patterns:
            lines.append("Notable patterns: " + ", ".join(profile.patterns[-3:]))
        return "\n".join(lines)

    def character_memory_summary(self, character_id: str) -> str:
        record = self.memory.character_memories.get(character_id)
        if record is None:
            return ""
        lines = [
            f"Relationship with user: {record.user_relationship}",
            f"Disposition: {record.disposition:g}/10",
        ]
        if record.key_moments:
            lines.append("Key moments: " + "; ".join(record.key_moments[-3:]))
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def clear_all(self) -> None:
        self.memory = LongTermMemory()
        self._fact_vectors.clear()

    def export_state(self) -> LongTermMemory:
        return copy.deepcopy(self.memory)

    def import_state(self, memory: LongTermMemory) -> None:
        self.memory = copy.deepcopy(memory)
        self._fact_vectors.clear()


_STYLE_PATTERNS = [
    ("action-oriented", re.compile(r"\*[^*]+\*")),
    ("dialogue-heavy", re.compile(r"\"[^\"]+\"|“[^”]+”")),
    ("descriptive", re.compile(r"describe|detail|show|reveal")),
    ("emotionally-engaged", re.compile(r"feel|emotion|heart|soul")),
]

_THEME_PATTERNS = [
    ("romance", re.compile(r"love|romantic|kiss|embrace|heart")),
    ("action", re.compile(r"fight|attack|defend|run|escape")),
    ("mystery", re.compile(r"secret|hidden|discover|reveal|mystery")),
    ("tension", re.compile(r"tense|nervous|afraid|worried|anxious")),
]


@dataclasses.dataclass
class UserPatterns:
    pacing_preference: str
    interaction_styles: list[str]
    common_themes: list[str]


class UserPatternAnalyzer:
    """Statistics over the user's recent messages."""

    def __init__(self, max_history: int = 100):
        self.messages: deque[str] = deque(maxlen=max_history)

    def add_message(self, message: str) -> None:
        self.messages.append(message)

    def analyze_patterns(self) -> UserPatterns:
        avg_length = sum(len(m) for m in self.messages) / max(1, len(self.messages))
        if avg_length > 300:
            pacing = "slow"
        elif avg_length < 100:
            pacing = "fast"
        else:
            pacing = "moderate"

        text = " ".join(self.messages).lower()
        return UserPatterns(
            pacing_preference=pacing,
            interaction_styles=[name for name, p in _STYLE_PATTERNS if p.search(text)],
            common_themes=[name for name, p in _THEME_PATTERNS if p.search(text)],
        )
