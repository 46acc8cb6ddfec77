"""Roleplay Engine - per-session turn orchestration."""

from __future__ import annotations

import copy
import logging
import time
import uuid
from typing import Callable

from roleplay_state.actions import ActionLedger
from roleplay_state.config import EngineConfig
from roleplay_state.embedding import EmbeddingBackend, create_embedding_backend
from roleplay_state.errors import (
    EmptyReplyError,
    NoPreparedTurnError,
    SessionNotActiveError,
    SnapshotError,
)
from roleplay_state.heuristics import (
    classify_event,
    extract_state_deltas,
    score_emotional_weight,
    score_event_importance,
    summarize_exchange,
)
from roleplay_state.lore import render_lore_section, select_lore
from roleplay_state.memory import (
    HIGH_IMPORTANCE,
    LongTermMemoryManager,
    ShortTermMemoryManager,
    UserPatternAnalyzer,
)
from roleplay_state.models import (
    ActionLedgerState,
    CharacterProfile,
    EngineState,
    LongTermMemory,
    LoreEntry,
    NPCState,
    SceneState,
    ShortTermMemory,
    TrackedAction,
    TurnContext,
    TurnResult,
    ValidationContext,
    ValidationResult,
)
from roleplay_state.prompts import (
    PromptLayerManager,
    compose_instructions,
    render_character_section,
    render_memory_bank_section,
    render_token_efficient_scene_prompt,
)
from roleplay_state.scene import SceneStateManager
from roleplay_state.validation import (
    ResponseValidator,
    build_regeneration_prompt,
    generate_regeneration_guidance,
)

logger = logging.getLogger(__name__)

MAX_RESPONSE_HISTORY = 10
PREVIOUS_RESPONSES_CHECKED = 3
CONVERSATION_WINDOW = 5
DEFAULT_EMOTION_INTENSITY = 5


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


class RoleplayEngine:
    """Owns one conversation session's narrative state.

    The engine is uninitialized until ``set_character`` is called. Each turn
    is a ``prepare_turn`` / ``process_response`` pair; the reply itself comes
    from an external completion provider.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        embedding: EmbeddingBackend | None = None,
        clock: Callable[[], float] = time.time,
    ):
        # Each engine owns its config; validator settings are mutated per session.
        self.config = copy.deepcopy(config) if config is not None else EngineConfig()
        self._clock = clock
        if embedding is None:
            embedding = create_embedding_backend(
                self.config.embedding_backend,
                embedding_model=self.config.embedding_model,
                openai_model=self.config.openai_model,
                dimensions=self.config.vector_dimensions,
            )
        self.embedding = embedding

        limits = self.config.memory
        self.ledger = ActionLedger(
            max_pending=limits.max_unresolved_actions,
            retention_turns=limits.action_retention_turns,
            policy=self.config.resolution,
            clock=clock,
        )
        self.scene = SceneStateManager(
            default_autonomy=self.config.npc.default_autonomy,
            default_emotional_threshold=self.config.npc.default_emotional_threshold,
            clock=clock,
        )
        self.short_term = ShortTermMemoryManager(
            self.scene.scene_id, max_events=limits.short_term_max_events, clock=clock
        )
        self.long_term = LongTermMemoryManager(
            max_facts=limits.long_term_max_facts,
            max_interactions=limits.max_character_interactions,
            embedding=embedding,
            clock=clock,
        )
        self.validator = ResponseValidator(self.config.validation)
        self.prompts = PromptLayerManager()
        self.patterns = UserPatternAnalyzer()

        self.session_id = new_session_id()
        self.turn_count = 0
        self.character: CharacterProfile | None = None
        self.lore: list[LoreEntry] = []
        self.response_history: list[str] = []
        self.last_response_timestamp: float | None = None
        self._last_context: TurnContext | None = None

    @property
    def is_active(self) -> bool:
        return self.character is not None

    def _require_active(self) -> CharacterProfile:
        if self.character is None:
            raise SessionNotActiveError("No character set for this session")
        return self.character

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def set_character(self, profile: CharacterProfile) -> None:
        """Activate the session for a character."""
        previous = self.character
        if previous is not None and previous.id != profile.id:
            if self.scene.get_character(previous.id) is not None:
                self.scene.remove_character(previous.id)
        self.character = copy.deepcopy(profile)
        self.long_term.initialize_character_memory(profile.id)
        self.scene.add_character(
            profile.id,
            profile.name,
            profile={"description": profile.description, "personality": profile.personality},
        )
        logger.info("Session %s active for character %s", self.session_id, profile.id)

    def set_lore(self, entries: list[LoreEntry]) -> None:
        self.lore = copy.deepcopy(entries)

    def new_scene(
        self,
        location: dict | None = None,
        preserve_characters: bool = True,
        preserve_npcs: bool = False,
    ) -> str:
        """Start a new scene. Pending actions and short-term memory are discarded."""
        scene_id = self.scene.new_scene(
            location=location,
            preserve_characters=preserve_characters,
            preserve_npcs=preserve_npcs,
        )
        if self.character is not None and self.scene.get_character(self.character.id) is None:
            self.scene.add_character(self.character.id, self.character.name)
        self.ledger.clear()
        self.short_term.reset(scene_id)
        self._last_context = None
        logger.info("Session %s moved to scene %s", self.session_id, scene_id)
        return scene_id

    def reset(self) -> None:
        """Return to the uninitialized state. Long-term memory is kept."""
        self.session_id = new_session_id()
        self.turn_count = 0
        self.character = None
        self.response_history = []
        self.last_response_timestamp = None
        self._last_context = None
        self.ledger.import_state(ActionLedgerState())
        self.scene.reset()
        self.short_term.reset(self.scene.scene_id)
        self.patterns = UserPatternAnalyzer()

    # -------------------------------------------------------------------------
    # Turn lifecycle
    # -------------------------------------------------------------------------

    def prepare_turn(
        self,
        user_message: str,
        lore: list[LoreEntry] | None = None,
        conversation: str | None = None,
        custom_directives: str | None = None,
    ) -> TurnContext:
        """Start a turn: track the user's actions and render the prompt.

        Args:
            user_message: Raw user text
            lore: Lore entries to consider instead of the session's lore
            conversation: Recent conversation text for lore relevance
            custom_directives: Extra style directives for the developer layer

        Returns:
            The turn context to hand back to ``process_response``
        """
        self._require_active()
        self.turn_count += 1
        self.ledger.advance_turn()

        actions = self.ledger.parse_user_message(user_message)
        self.ledger.track_actions(actions)
        self.patterns.add_message(user_message)

        scene_prompt = render_token_efficient_scene_prompt(
            self.scene.get_state(),
            self.ledger.get_pending_actions(),
            self.config.tokens.scene_prompt,
        )
        full_prompt = self.build_instructions(
            scene_prompt,
            user_message,
            lore=lore,
            conversation=conversation,
            custom_directives=custom_directives,
        )

        context = TurnContext(
            turn=self.turn_count,
            user_message=user_message,
            parsed_actions=copy.deepcopy(actions),
            scene_prompt=scene_prompt,
            full_prompt=full_prompt,
            timestamp=self._clock(),
        )
        self._last_context = context
        logger.debug(
            "Turn %d prepared with %d actions (%d pending)",
            self.turn_count,
            len(actions),
            self.ledger.pending_count,
        )
        return context

    def build_instructions(
        self,
        scene_prompt: str,
        user_message: str = "",
        lore: list[LoreEntry] | None = None,
        conversation: str | None = None,
        custom_directives: str | None = None,
    ) -> str:
        """Compose the full instruction string for the completion provider."""
        character = self._require_active()
        settings = self.config.prompts

        lore_section = ""
        entries = self.lore if lore is None else lore
        if entries and settings.auto_inject_lore:
            if conversation is None:
                recent = list(self.patterns.messages)[-CONVERSATION_WINDOW:]
                conversation = " ".join(recent + self.response_history[-CONVERSATION_WINDOW:])
            selected = select_lore(
                entries,
                f"{conversation} {user_message}",
                threshold=settings.lore_importance_threshold,
                limit=settings.max_lore_entries,
                embedding=self.embedding,
            )
            lore_section = render_lore_section(selected, character.name)

        return compose_instructions(
            global_instructions=settings.global_system_prompt,
            system=self.prompts.build_system_prompt(),
            developer=self.prompts.build_developer_prompt(custom_directives),
            character=render_character_section(
                character, self.long_term.character_memory_summary(character.id)
            ),
            memory_bank=render_memory_bank_section(character),
            lore=lore_section,
            scene=scene_prompt,
            pending_actions=self.ledger.pending_actions_for_prompt(),
            user_notes=self.long_term.user_model_notes(),
        )

    def _resolve_context(self, context: TurnContext | None) -> TurnContext:
        context = context or self._last_context
        if context is None:
            raise NoPreparedTurnError("No prepared turn to process")
        return context

    def _validation_context(self, context: TurnContext) -> ValidationContext:
        turn_ids = {a.id for a in context.parsed_actions}
        return ValidationContext(
            user_message=context.user_message,
            pending_actions=[a for a in self.ledger.get_pending_actions() if a.id in turn_ids],
            scene=self.scene.get_state(),
            character_name=self.character.name if self.character else "",
            previous_responses=self.response_history[-PREVIOUS_RESPONSES_CHECKED:],
        )

    def validate_response(self, reply: str, context: TurnContext | None = None) -> ValidationResult:
        """Score a reply without changing any state."""
        self._require_active()
        return self.validator.validate(reply, self._validation_context(self._resolve_context(context)))

    def process_response(self, reply: str, context: TurnContext | None = None) -> TurnResult:
        """Fold an accepted reply into the session state."""
        character = self._require_active()
        context = self._resolve_context(context)
        if not reply or not reply.strip():
            raise EmptyReplyError("Empty reply from completion provider")

        validation = self.validate_response(reply, context)
        resolved = self.ledger.auto_resolve_from_response(reply)
        self._apply_state_deltas(reply, context.parsed_actions)

        self.response_history.append(reply)
        del self.response_history[:-MAX_RESPONSE_HISTORY]

        event = self.short_term.add_event(
            turn_number=context.turn,
            event_type=classify_event(context.parsed_actions),
            summary=summarize_exchange(context.user_message, reply),
            participants=[character.name, "user"],
            importance=score_event_importance(context.parsed_actions, reply),
            emotional_weight=score_emotional_weight(reply),
        )
        if event.importance >= HIGH_IMPORTANCE:
            self.long_term.add_character_interaction(character.id, event)

        cadence = self.config.pattern_analysis_every
        if cadence > 0 and self.turn_count % cadence == 0:
            self._update_user_patterns()

        self.last_response_timestamp = self._clock()
        return TurnResult(
            response=reply,
            validation=validation,
            scene=self.scene.get_state(),
            resolved_action_ids=resolved,
            new_action_ids=[a.id for a in context.parsed_actions],
            memory_events=[event],
        )

    def _apply_state_deltas(self, reply: str, actions: list[TrackedAction]) -> None:
        deltas = extract_state_deltas(reply)
        if deltas.tension_delta:
            self.scene.adjust_tension(deltas.tension_delta)

        for change in deltas.emotional_changes:
            entry = self.scene.find_by_name(change.name)
            if entry is None:
                continue
            update = {
                "emotional_state": {
                    "primary": change.emotion,
                    "intensity": DEFAULT_EMOTION_INTENSITY,
                    "triggers": [],
                }
            }
            if isinstance(entry, NPCState):
                self.scene.update_npc(entry.id, **update)
            else:
                self.scene.update_character(entry.id, **update)

        if any(a.action_type == "intimate" for a in actions):
            if self.scene.advance_escalation():
                logger.info(
                    "Escalation advanced to %s",
                    self.scene.get_narrative().escalation_phase,
                )

        if actions:
            self.scene.add_recent_event(
                f"Turn {self.turn_count}: " + "; ".join(a.raw_text for a in actions)
            )

    def _update_user_patterns(self) -> None:
        patterns = self.patterns.analyze_patterns()
        self.long_term.update_user_profile(pacing_preference=patterns.pacing_preference)
        for style in patterns.interaction_styles:
            self.long_term.add_interaction_style(style)
        for theme in patterns.common_themes:
            self.long_term.add_user_pattern(f"Interested in: {theme}")

    def regeneration_guidance(self, validation: ValidationResult) -> str | None:
        """Instruction text for a retry, or None if the reply passed."""
        if validation.valid:
            return None
        return build_regeneration_prompt(generate_regeneration_guidance(validation.issues))

    # -------------------------------------------------------------------------
    # Scene passthrough
    # -------------------------------------------------------------------------

    def get_scene_state(self) -> SceneState:
        return self.scene.get_state()

    def update_location(self, **updates) -> None:
        self.scene.update_location(**updates)

    def update_environment(self, **updates) -> None:
        self.scene.update_environment(**updates)

    def set_escalation_phase(self, phase: str) -> None:
        self.scene.set_escalation_phase(phase)

    def set_tension(self, value: float) -> None:
        self.scene.set_tension(value)

    def set_pacing(self, pacing: str) -> None:
        self.scene.set_pacing(pacing)

    def apply_scene_update(self, updates: dict) -> None:
        self.scene.apply_bulk_update(updates)

    def add_npc(self, npc_id: str, name: str, **fields) -> None:
        self.scene.add_npc(npc_id, name, **fields)

    def update_npc(self, npc_id: str, **updates) -> None:
        self.scene.update_npc(npc_id, **updates)

    def remove_npc(self, npc_id: str) -> None:
        self.scene.remove_npc(npc_id)

    def queue_npc_action(self, npc_id: str, action: str) -> None:
        self.scene.queue_npc_action(npc_id, action)

    def get_autonomous_npcs(self) -> list[NPCState]:
        if not self.config.npc.enable_autonomy:
            return []
        return self.scene.check_npc_autonomous_triggers()

    # -------------------------------------------------------------------------
    # Actions, memory and validation passthrough
    # -------------------------------------------------------------------------

    def get_pending_actions(self) -> list[TrackedAction]:
        return self.ledger.get_pending_actions()

    def pending_actions_prompt(self) -> str:
        return self.ledger.pending_actions_for_prompt()

    def action_statistics(self) -> dict:
        return self.ledger.get_statistics()

    def force_resolve_all_actions(self, reason: str) -> list[str]:
        return self.ledger.force_resolve_all(reason)

    def short_term_summary(self) -> str:
        return self.short_term.compact_summary()

    def user_model_notes(self) -> str:
        return self.long_term.user_model_notes()

    def character_memory_summary(self) -> str:
        if self.character is None:
            return ""
        return self.long_term.character_memory_summary(self.character.id)

    def set_minimum_validation_score(self, score: int) -> None:
        self.config.validation.minimum_score = max(0, min(100, score))

    def enable_validation_check(self, check: str) -> None:
        self.validator.enable_check(check)

    def disable_validation_check(self, check: str) -> None:
        self.validator.disable_check(check)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def export_state(self) -> EngineState:
        return EngineState(
            session_id=self.session_id,
            current_scene=self.scene.export_state(),
            action_ledger=self.ledger.export_state(),
            short_term_memory=self.short_term.export_state(),
            long_term_memory=self.long_term.export_state(),
            turn_count=self.turn_count,
            last_response_timestamp=self.last_response_timestamp,
            character=copy.deepcopy(self.character),
            user_messages=list(self.patterns.messages),
            response_history=list(self.response_history),
        )

    def import_state(self, state: EngineState) -> None:
        """Replace all session state. Nothing changes if the state is malformed."""
        expected = {
            "current_scene": SceneState,
            "action_ledger": ActionLedgerState,
            "short_term_memory": ShortTermMemory,
            "long_term_memory": LongTermMemory,
        }
        for name, kind in expected.items():
            if not isinstance(getattr(state, name, None), kind):
                raise SnapshotError(f"expected {kind.__name__}", path=name)
        if not isinstance(state.turn_count, int) or state.turn_count < 0:
            raise SnapshotError("must be a non-negative integer", path="turn_count")
        if state.character is not None and not isinstance(state.character, CharacterProfile):
            raise SnapshotError("expected CharacterProfile", path="character")

        patterns = UserPatternAnalyzer()
        for message in state.user_messages:
            patterns.add_message(message)

        self.session_id = state.session_id
        self.turn_count = state.turn_count
        self.last_response_timestamp = state.last_response_timestamp
        self.character = copy.deepcopy(state.character)
        self.response_history = list(state.response_history)[-MAX_RESPONSE_HISTORY:]
        self.patterns = patterns
        self.scene.import_state(state.current_scene)
        self.ledger.import_state(state.action_ledger)
        self.short_term.import_state(state.short_term_memory)
        self.long_term.import_state(state.long_term_memory)
        self._last_context = None
