"""Scene state manager: the mutable world model with single-step undo."""

from __future__ import annotations

import copy
import dataclasses
import logging
import time
import uuid
from collections import deque
from typing import Any, Callable

from roleplay_state.models import (
    ESCALATION_PHASES,
    PACING_LEVELS,
    CharacterState,
    EmotionalState,
    LocationState,
    NPCState,
    PhysicalState,
    SceneState,
    clamp,
)

logger = logging.getLogger(__name__)

HISTORY_DEPTH = 10
MAX_RECENT_EVENTS = 10
NPC_AUTONOMY_TRIGGER = 0.7
# Automatic progression never moves past this phase.
AUTO_ESCALATION_LIMIT = "climax"


def new_scene_id() -> str:
    return f"scene_{uuid.uuid4().hex[:12]}"


def _merge(target: Any, updates: dict, path: str) -> None:
    """Apply a partial update to a dataclass, merging nested dataclasses."""
    names = {f.name for f in dataclasses.fields(target)}
    for key, value in updates.items():
        if key not in names:
            raise ValueError(f"Unknown field for {path}: {key}")
        current = getattr(target, key)
        if dataclasses.is_dataclass(current) and isinstance(value, dict):
            _merge(current, value, f"{path}.{key}")
        else:
            setattr(target, key, copy.deepcopy(value))


def _normalize_character(character: CharacterState) -> None:
    emotional = character.emotional_state
    emotional.intensity = clamp(emotional.intensity, 0, 10)
    physical = character.physical_state
    physical.sensitivity = {
        zone: clamp(level, 0, 10) for zone, level in physical.sensitivity.items()
    }
    if isinstance(character, NPCState):
        character.autonomy = clamp(character.autonomy, 0, 1)
        character.emotional_threshold = clamp(character.emotional_threshold, 0, 10)


class SceneStateManager:
    """Owns the current SceneState.

    Every mutation snapshots the previous state first, so ``undo`` restores
    the state from before the last change. Getters return copies.
    """

    def __init__(
        self,
        state: SceneState | None = None,
        default_autonomy: float = 0.5,
        default_emotional_threshold: float = 7,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self.default_autonomy = default_autonomy
        self.default_emotional_threshold = default_emotional_threshold
        self._state = copy.deepcopy(state) if state else self._default_state()
        self._history: deque[SceneState] = deque(maxlen=HISTORY_DEPTH)

    def _default_state(self, location: LocationState | None = None) -> SceneState:
        return SceneState(
            scene_id=new_scene_id(),
            location=location or LocationState(),
            updated_at=self._clock(),
        )

    def _save_history(self) -> None:
        self._history.append(copy.deepcopy(self._state))

    def _touch(self) -> None:
        self._state.updated_at = self._clock()

    @property
    def scene_id(self) -> str:
        return self._state.scene_id

    @property
    def history_size(self) -> int:
        return len(self._history)

    # -------------------------------------------------------------------------
    # Getters
    # -------------------------------------------------------------------------

    def get_state(self) -> SceneState:
        return copy.deepcopy(self._state)

    def get_location(self) -> LocationState:
        return copy.deepcopy(self._state.location)

    def get_characters(self) -> list[CharacterState]:
        return copy.deepcopy(self._state.characters)

    def get_npcs(self) -> list[NPCState]:
        return copy.deepcopy(self._state.npcs)

    def get_environment(self):
        return copy.deepcopy(self._state.environment)

    def get_narrative(self):
        return copy.deepcopy(self._state.narrative)

    def get_character(self, character_id: str) -> CharacterState | None:
        for character in self._state.characters:
            if character.id == character_id:
                return copy.deepcopy(character)
        return None

    def get_npc(self, npc_id: str) -> NPCState | None:
        for npc in self._state.npcs:
            if npc.id == npc_id:
                return copy.deepcopy(npc)
        return None

    def find_by_name(self, name: str) -> CharacterState | None:
        """Character or NPC with the given name, case-insensitive."""
        wanted = name.lower()
        for entry in [*self._state.characters, *self._state.npcs]:
            if entry.name.lower() == wanted:
                return copy.deepcopy(entry)
        return None

    def _require_character(self, character_id: str) -> CharacterState:
        for character in self._state.characters:
            if character.id == character_id:
                return character
        raise KeyError(f"Character not found: {character_id}")

    def _require_npc(self, npc_id: str) -> NPCState:
        for npc in self._state.npcs:
            if npc.id == npc_id:
                return npc
        raise KeyError(f"NPC not found: {npc_id}")

    # -------------------------------------------------------------------------
    # Location
    # -------------------------------------------------------------------------

    def set_location(self, **fields) -> None:
        """Replace the location; unspecified fields take their defaults."""
        location = LocationState()
        _merge(location, fields, "location")
        self._save_history()
        self._state.location = location
        self._touch()

    def update_location(self, **updates) -> None:
        location = copy.deepcopy(self._state.location)
        _merge(location, updates, "location")
        self._save_history()
        self._state.location = location
        self._touch()

    def add_interactable_object(self, name: str) -> None:
        if name in self._state.location.interactable_objects:
            return
        self._save_history()
        self._state.location.interactable_objects.append(name)
        self._touch()

    def remove_interactable_object(self, name: str) -> None:
        if name not in self._state.location.interactable_objects:
            return
        self._save_history()
        self._state.location.interactable_objects.remove(name)
        self._touch()

    # -------------------------------------------------------------------------
    # Characters and NPCs
    # -------------------------------------------------------------------------

    def add_character(self, character_id: str, name: str, **fields) -> None:
        """Add a character, or replace the one with the same id."""
        character = CharacterState(id=character_id, name=name)
        _merge(character, fields, "character")
        _normalize_character(character)
        self._save_history()
        self._state.characters = [
            c for c in self._state.characters if c.id != character_id
        ] + [character]
        self._touch()

    def update_character(self, character_id: str, **updates) -> None:
        character = copy.deepcopy(self._require_character(character_id))
        _merge(character, updates, "character")
        _normalize_character(character)
        self._save_history()
        self._state.characters = [
            character if c.id == character_id else c for c in self._state.characters
        ]
        self._touch()

    def remove_character(self, character_id: str) -> None:
        self._require_character(character_id)
        self._save_history()
        self._state.characters = [
            c for c in self._state.characters if c.id != character_id
        ]
        self._touch()

    def add_npc(self, npc_id: str, name: str, **fields) -> None:
        """Add an NPC, or replace the one with the same id."""
        npc = NPCState(
            id=npc_id,
            name=name,
            autonomy=self.default_autonomy,
            emotional_threshold=self.default_emotional_threshold,
        )
        _merge(npc, fields, "npc")
        _normalize_character(npc)
        self._save_history()
        self._state.npcs = [n for n in self._state.npcs if n.id != npc_id] + [npc]
        self._touch()

    def update_npc(self, npc_id: str, **updates) -> None:
        npc = copy.deepcopy(self._require_npc(npc_id))
        _merge(npc, updates, "npc")
        _normalize_character(npc)
        self._save_history()
        self._state.npcs = [npc if n.id == npc_id else n for n in self._state.npcs]
        self._touch()

    def remove_npc(self, npc_id: str) -> None:
        self._require_npc(npc_id)
        self._save_history()
        self._state.npcs = [n for n in self._state.npcs if n.id != npc_id]
        self._touch()

    def check_npc_autonomous_triggers(self) -> list[NPCState]:
        """NPCs eligible to act on their own this turn."""
        return [
            copy.deepcopy(npc)
            for npc in self._state.npcs
            if npc.autonomy >= NPC_AUTONOMY_TRIGGER
            or npc.emotional_state.intensity >= npc.emotional_threshold
            or npc.pending_actions
        ]

    def queue_npc_action(self, npc_id: str, action: str) -> None:
        npc = self._require_npc(npc_id)
        self._save_history()
        npc.pending_actions.append(action)
        self._touch()

    def clear_npc_actions(self, npc_id: str) -> None:
        npc = self._require_npc(npc_id)
        self._save_history()
        npc.pending_actions.clear()
        self._touch()

    # -------------------------------------------------------------------------
    # Environment
    # -------------------------------------------------------------------------

    def update_environment(self, **updates) -> None:
        environment = copy.deepcopy(self._state.environment)
        _merge(environment, updates, "environment")
        self._save_history()
        self._state.environment = environment
        self._touch()

    def add_scent(self, scent: str) -> None:
        if scent in self._state.environment.scents:
            return
        self._save_history()
        self._state.environment.scents.append(scent)
        self._touch()

    def remove_scent(self, scent: str) -> None:
        if scent not in self._state.environment.scents:
            return
        self._save_history()
        self._state.environment.scents.remove(scent)
        self._touch()

    # -------------------------------------------------------------------------
    # Narrative
    # -------------------------------------------------------------------------

    def update_narrative(self, **updates) -> None:
        narrative = copy.deepcopy(self._state.narrative)
        _merge(narrative, updates, "narrative")
        self._check_narrative(narrative)
        self._save_history()
        self._state.narrative = narrative
        self._touch()

    @staticmethod
    def _check_narrative(narrative) -> None:
        if narrative.escalation_phase not in ESCALATION_PHASES:
            raise ValueError(f"Invalid escalation phase: {narrative.escalation_phase}")
        if narrative.pacing not in PACING_LEVELS:
            raise ValueError(f"Invalid pacing: {narrative.pacing}")
        narrative.tension = clamp(narrative.tension, 0, 10)
        del narrative.recent_events[:-MAX_RECENT_EVENTS]

    def set_escalation_phase(self, phase: str) -> None:
        """Move to any phase, forward or back."""
        if phase not in ESCALATION_PHASES:
            raise ValueError(f"Invalid escalation phase: {phase}")
        self._save_history()
        self._state.narrative.escalation_phase = phase
        self._touch()

    def advance_escalation(self) -> bool:
        """Step one phase forward, stopping at climax.

        Returns True if the phase changed.
        """
        current = ESCALATION_PHASES.index(self._state.narrative.escalation_phase)
        if current >= ESCALATION_PHASES.index(AUTO_ESCALATION_LIMIT):
            return False
        phase = ESCALATION_PHASES[current + 1]
        self._save_history()
        self._state.narrative.escalation_phase = phase
        self._touch()
        logger.debug("Escalation advanced to %s in %s", phase, self._state.scene_id)
        return True

    def adjust_tension(self, delta: float) -> None:
        self._save_history()
        narrative = self._state.narrative
        narrative.tension = clamp(narrative.tension + delta, 0, 10)
        self._touch()

    def set_tension(self, value: float) -> None:
        self._save_history()
        self._state.narrative.tension = clamp(value, 0, 10)
        self._touch()

    def set_pacing(self, pacing: str) -> None:
        if pacing not in PACING_LEVELS:
            raise ValueError(f"Invalid pacing: {pacing}")
        self._save_history()
        self._state.narrative.pacing = pacing
        self._touch()

    def add_recent_event(self, event: str) -> None:
        self._save_history()
        events = self._state.narrative.recent_events
        events.append(event)
        del events[:-MAX_RECENT_EVENTS]
        self._touch()

    def add_foreshadowing(self, hint: str) -> None:
        self._save_history()
        self._state.narrative.foreshadowing.append(hint)
        self._touch()

    # -------------------------------------------------------------------------
    # Flags
    # -------------------------------------------------------------------------

    def set_flag(self, key: str, value: bool | str | int | float) -> None:
        self._save_history()
        self._state.flags[key] = value
        self._touch()

    def get_flag(self, key: str, default=None):
        return self._state.flags.get(key, default)

    def clear_flag(self, key: str) -> None:
        if key not in self._state.flags:
            return
        self._save_history()
        del self._state.flags[key]
        self._touch()

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def undo(self) -> bool:
        """Restore the state from before the last mutation."""
        if not self._history:
            return False
        self._state = self._history.pop()
        return True

    def apply_bulk_update(self, updates: dict) -> None:
        """Apply several partial updates as one undoable change.

        Recognized keys: location, characters, npcs (lists of partial records
        carrying an ``id``), environment, narrative, flags, recent_event.
        Nothing is applied if any part is invalid.
        """
        known = {"location", "characters", "npcs", "environment", "narrative", "flags", "recent_event"}
        unknown = set(updates) - known
        if unknown:
            raise ValueError(f"Unknown scene update keys: {sorted(unknown)}")

        state = copy.deepcopy(self._state)
        if updates.get("location"):
            _merge(state.location, updates["location"], "location")

        for key, entries in (("characters", state.characters), ("npcs", state.npcs)):
            by_id = {entry.id: entry for entry in entries}
            for partial in updates.get(key) or []:
                partial = dict(partial)
                entry = by_id.get(partial.pop("id", None))
                if entry is None:
                    continue
                _merge(entry, partial, key)
                _normalize_character(entry)

        if updates.get("environment"):
            _merge(state.environment, updates["environment"], "environment")
        if updates.get("narrative"):
            _merge(state.narrative, updates["narrative"], "narrative")
        if updates.get("flags"):
            state.flags.update(updates["flags"])
        if updates.get("recent_event"):
            state.narrative.recent_events.append(updates["recent_event"])
        self._check_narrative(state.narrative)

        self._save_history()
        self._state = state
        self._touch()

    # -------------------------------------------------------------------------
    # Scene lifecycle
    # -------------------------------------------------------------------------

    def new_scene(
        self,
        location: dict | None = None,
        preserve_characters: bool = False,
        preserve_npcs: bool = False,
    ) -> str:
        """Replace the scene wholesale and return the new scene id.

        A given location is merged over the current one. Preserved characters
        and NPCs keep identity and profile but lose physical and emotional
        state; NPC action queues are emptied. Undo history is cleared.
        """
        new_location = None
        if location:
            new_location = copy.deepcopy(self._state.location)
            _merge(new_location, location, "location")

        state = self._default_state(new_location)
        if preserve_characters:
            for character in self._state.characters:
                state.characters.append(dataclasses.replace(
                    copy.deepcopy(character),
                    physical_state=PhysicalState(),
                    emotional_state=EmotionalState(),
                ))
        if preserve_npcs:
            for npc in self._state.npcs:
                state.npcs.append(dataclasses.replace(
                    copy.deepcopy(npc),
                    physical_state=PhysicalState(),
                    emotional_state=EmotionalState(),
                    pending_actions=[],
                ))

        self._state = state
        self._history.clear()
        logger.debug("Started scene %s", state.scene_id)
        return state.scene_id

    def reset(self) -> None:
        self._state = self._default_state()
        self._history.clear()

    def export_state(self) -> SceneState:
        return copy.deepcopy(self._state)

    def import_state(self, state: SceneState) -> None:
        self._history.clear()
        self._state = copy.deepcopy(state)

    def summary(self) -> str:
        """One-line scene summary."""
        state = self._state
        parts = [f"Location: {state.location.name}"]
        if state.characters:
            parts.append("Characters: " + ", ".join(
                f"{c.name} ({c.emotional_state.primary})" for c in state.characters
            ))
        if state.npcs:
            parts.append("NPCs: " + ", ".join(n.name for n in state.npcs))
        parts.append(f"Atmosphere: {state.environment.ambiance}")
        parts.append(
            f"Phase: {state.narrative.escalation_phase} | "
            f"Tension: {state.narrative.tension:g}/10"
        )
        return " | ".join(parts)
