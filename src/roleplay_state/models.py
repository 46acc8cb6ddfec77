"""Data models for Roleplay State."""

from dataclasses import dataclass, field
from typing import Literal, get_args

ActionType = Literal[
    "physical",  # movement, combat, touch
    "verbal",  # dialogue, commands
    "emotional",  # expressions
    "observational",  # looking, noticing
    "environmental",  # interacting with the setting
    "intimate",  # romantic/sensual
    "meta",  # scene direction in *asterisks*, [brackets] or (parentheses)
    "other",
]

EscalationPhase = Literal[
    "introduction",
    "tension-building",
    "rising-action",
    "climax",
    "resolution",
    "aftermath",
]

Pacing = Literal["slow", "moderate", "fast", "intense"]

EventType = Literal["action", "dialogue", "revelation", "state_change", "intimate"]

FactCategory = Literal[
    "user_preference",
    "world_fact",
    "character_trait",
    "established_lore",
]

Severity = Literal["warning", "error", "critical"]

ACTION_TYPES = get_args(ActionType)
ESCALATION_PHASES = get_args(EscalationPhase)
PACING_LEVELS = get_args(Pacing)
EVENT_TYPES = get_args(EventType)
FACT_CATEGORIES = get_args(FactCategory)
SEVERITIES = get_args(Severity)


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


# -------------------------------------------------------------------------
# Actions
# -------------------------------------------------------------------------


@dataclass
class TrackedAction:
    """A discrete user action awaiting acknowledgement in the narrative."""

    id: str
    raw_text: str
    action_type: ActionType
    subject: str
    target: str | None
    turn_created: int
    timestamp: float
    resolved: bool = False
    turn_resolved: int | None = None
    resolution_note: str | None = None


@dataclass
class ActionLedgerState:
    """Serializable ledger contents."""

    actions: list[TrackedAction] = field(default_factory=list)
    current_turn: int = 0

    @property
    def pending_count(self) -> int:
        return sum(1 for a in self.actions if not a.resolved)


# -------------------------------------------------------------------------
# Scene
# -------------------------------------------------------------------------


@dataclass
class LocationState:
    name: str = "Unspecified"
    description: str = ""
    spatial_layout: str = ""
    connected_areas: list[str] = field(default_factory=list)
    interactable_objects: list[str] = field(default_factory=list)


@dataclass
class PhysicalState:
    position: str = "standing"
    posture: str = "relaxed"
    clothing: str = "clothed"
    injuries: list[str] = field(default_factory=list)
    effects: list[str] = field(default_factory=list)
    sensitivity: dict[str, float] = field(default_factory=dict)  # zone -> 0..10


@dataclass
class EmotionalState:
    primary: str = "neutral"
    secondary: str | None = None
    intensity: float = 5  # 0..10
    triggers: list[str] = field(default_factory=list)


@dataclass
class CharacterState:
    """A character present in the scene."""

    id: str
    name: str
    position: str = "present"
    physical_state: PhysicalState = field(default_factory=PhysicalState)
    emotional_state: EmotionalState = field(default_factory=EmotionalState)
    current_focus: str = ""
    profile: dict = field(default_factory=dict)


@dataclass
class NPCState(CharacterState):
    """A side character the narrator may drive independently."""

    autonomy: float = 0.5  # 0..1
    motivations: list[str] = field(default_factory=list)
    perception: str = ""
    emotional_threshold: float = 7
    pending_actions: list[str] = field(default_factory=list)


@dataclass
class EnvironmentState:
    lighting: str = "ambient"
    soundscape: str = "quiet"
    temperature: str = "comfortable"
    scents: list[str] = field(default_factory=list)
    ambiance: str = "neutral"
    weather: str | None = None
    time_of_day: str | None = None


@dataclass
class NarrativeState:
    escalation_phase: EscalationPhase = "introduction"
    tension: float = 3  # 0..10
    pacing: Pacing = "moderate"
    recent_events: list[str] = field(default_factory=list)
    foreshadowing: list[str] = field(default_factory=list)


@dataclass
class SceneState:
    """The mutable world model for the current scene."""

    scene_id: str
    location: LocationState = field(default_factory=LocationState)
    characters: list[CharacterState] = field(default_factory=list)
    npcs: list[NPCState] = field(default_factory=list)
    environment: EnvironmentState = field(default_factory=EnvironmentState)
    narrative: NarrativeState = field(default_factory=NarrativeState)
    flags: dict = field(default_factory=dict)
    updated_at: float = 0.0


# -------------------------------------------------------------------------
# Memory
# -------------------------------------------------------------------------


@dataclass
class MemoryEvent:
    id: str
    timestamp: float
    turn_number: int
    event_type: EventType
    summary: str
    participants: list[str] = field(default_factory=list)
    importance: int = 5  # 1..10
    emotional_weight: int = 0  # -10..10, negative = distressing


@dataclass
class ConversationThread:
    id: str
    topic: str
    participants: list[str] = field(default_factory=list)
    start_turn: int = 0
    last_turn: int = 0
    resolved: bool = False
    key_points: list[str] = field(default_factory=list)


@dataclass
class ShortTermMemory:
    """Scene-scoped memory, discarded when the scene changes."""

    scene_id: str
    events: list[MemoryEvent] = field(default_factory=list)
    threads: list[ConversationThread] = field(default_factory=list)
    temp_states: dict = field(default_factory=dict)
    max_events: int = 50


@dataclass
class UserProfile:
    user_name: str | None = None
    pacing_preference: str = "moderate"  # slow | moderate | fast
    interaction_style: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    preferences: dict[str, bool] = field(default_factory=dict)


@dataclass
class CharacterMemoryRecord:
    character_id: str
    interactions: list[MemoryEvent] = field(default_factory=list)
    user_relationship: str = "new acquaintance"
    disposition: float = 0  # -10..10
    key_moments: list[str] = field(default_factory=list)


@dataclass
class RelationshipMemory:
    character_a: str
    character_b: str
    relationship_type: str = "acquaintance"
    status: str = "neutral"
    history: list[str] = field(default_factory=list)
    tension: float = 0  # 0..10


@dataclass
class FactMemory:
    id: str
    category: FactCategory
    content: str
    confidence: float  # 0..1
    source: str
    created_at: float
    last_referenced_at: float


@dataclass
class LongTermMemory:
    """Cross-scene memory, survives scene resets."""

    user_profile: UserProfile = field(default_factory=UserProfile)
    character_memories: dict[str, CharacterMemoryRecord] = field(default_factory=dict)
    relationships: list[RelationshipMemory] = field(default_factory=list)
    facts: list[FactMemory] = field(default_factory=list)


# -------------------------------------------------------------------------
# Validation
# -------------------------------------------------------------------------


@dataclass
class ValidationIssue:
    type: str
    severity: Severity
    description: str
    location: str | None = None
    suggestion: str | None = None


@dataclass
class ValidationResult:
    valid: bool
    issues: list[ValidationIssue]
    score: int  # 0..100
    requires_regeneration: bool


@dataclass
class ValidationContext:
    """What a reply is checked against."""

    user_message: str
    pending_actions: list[TrackedAction]
    scene: SceneState | None = None
    character_name: str = ""
    previous_responses: list[str] = field(default_factory=list)


# -------------------------------------------------------------------------
# External records
# -------------------------------------------------------------------------


@dataclass
class CharacterProfile:
    """Character record supplied by the host application."""

    id: str
    name: str
    description: str = ""
    personality: str = ""
    scenario: str = ""
    example_dialogue: str = ""
    overview_memory: str | None = None
    memory_bank: list[str] = field(default_factory=list)
    recent_experiences: list[str] = field(default_factory=list)


@dataclass
class LoreEntry:
    """World lore supplied by the host application."""

    name: str
    content: str
    category: str = "other"
    importance: int = 5  # 1..10
    keys: list[str] = field(default_factory=list)
    id: str | None = None


# -------------------------------------------------------------------------
# Turns and snapshots
# -------------------------------------------------------------------------


@dataclass
class TurnContext:
    """Everything prepared for one turn before the provider is called."""

    turn: int
    user_message: str
    parsed_actions: list[TrackedAction]
    scene_prompt: str
    full_prompt: str
    timestamp: float


@dataclass
class TurnResult:
    response: str
    validation: ValidationResult
    scene: SceneState
    resolved_action_ids: list[str]
    new_action_ids: list[str]
    memory_events: list[MemoryEvent]
    regeneration_count: int = 0


@dataclass
class EngineState:
    """Persistence snapshot of one engine."""

    session_id: str
    current_scene: SceneState
    action_ledger: ActionLedgerState
    short_term_memory: ShortTermMemory
    long_term_memory: LongTermMemory
    turn_count: int
    last_response_timestamp: float | None = None
    character: CharacterProfile | None = None
    user_messages: list[str] = field(default_factory=list)
    response_history: list[str] = field(default_factory=list)
