"""Three-tier prompt composition.

1. System layer: static narrative contract, rendered once per session.
2. Developer layer: session style rules plus optional custom directives.
3. Scene layer: the current scene, rendered every turn.

Each layer is a pure function of its config and state. The engine composes
them with character, memory and lore sections into one instruction string.
"""

from __future__ import annotations

import copy
import dataclasses
import math
from dataclasses import dataclass

from roleplay_state.models import CharacterProfile, SceneState, TrackedAction, UserProfile

PHASE_DESCRIPTIONS = {
    "introduction": "Introduction (establishing)",
    "tension-building": "Tension Building (subtle escalation)",
    "rising-action": "Rising Action (active escalation)",
    "climax": "Climax (peak intensity)",
    "resolution": "Resolution (winding down)",
    "aftermath": "Aftermath (consequences)",
}

MEMORY_BANK_ENTRIES = 10
RECENT_EXPERIENCES = 15
RECENT_EVENTS_SHOWN = 3
EFFECTS_KEPT_WHEN_TRIMMING = 2


@dataclass
class SystemPromptConfig:
    narrative_continuity: str = (
        "You are the narrator of a continuous, character-driven roleplay.\n"
        "Treat every user message as canonical story progress. Earlier events "
        "stay true unless the story explicitly undoes them."
    )
    action_tracking: str = (
        "ACTION CONTINUITY:\n"
        "- Every action the user describes is an open obligation until the story addresses it.\n"
        "- When a message contains several actions, acknowledge all of them.\n"
        "- Do not skip or overwrite an earlier action because a newer one arrived.\n"
        "\n"
        "ACTION BEATS:\n"
        "Play significant actions out in beats: intent, execution, immediate reaction, "
        "side effects, emotional response, and the state that carries forward.\n"
        "\n"
        "TRANSFORMATION:\n"
        "Do not restate the user's wording. Turn their actions into reactions, "
        "consequences and new developments."
    )
    setting_persistence: str = (
        "SETTING:\n"
        "Keep a consistent picture of the location, its layout, light, sound, "
        "temperature and objects. Let the environment shape movement and perception. "
        "The setting persists until the story changes it."
    )
    character_consistency: str = (
        "CHARACTERS AND LORE:\n"
        "Established lore, traits and relationships are canon. Characters act in line "
        "with their personality and current emotional state.\n"
        "\n"
        "NPCS:\n"
        "You control every side character the user has not taken over. NPCs have their "
        "own motivations and perceptions and may act on their own to complicate the scene.\n"
        "\n"
        "CAUSALITY:\n"
        "Actions leave effects on characters and the scene. Strong moments linger."
    )
    output_constraints: str = (
        "OUTPUT RULES:\n"
        "- Do not ask the user questions.\n"
        "- Do not break character.\n"
        "- Dramatize rather than summarize.\n"
        "- Never drop an unresolved action.\n"
        "End each reply with forward narrative motion."
    )


@dataclass
class DeveloperPromptConfig:
    content_focus: str = (
        "STYLE:\n"
        "Write immersive, sensory prose. Ground scenes in concrete physical detail "
        "and vary vocabulary from reply to reply."
    )
    dialogue_realism: str = (
        "DIALOGUE:\n"
        "Dialogue should sound like real speech, with pauses, hesitation and subtext. "
        "Avoid scripted or speechifying lines."
    )
    pov_structure: str = (
        "POINT OF VIEW:\n"
        "- Third-person limited narration.\n"
        "- Open with narrative description.\n"
        "- Put dialogue in double quotation marks with clear attribution."
    )
    escalation_rules: str = (
        "ESCALATION:\n"
        "Build intensity through proximity, reaction and anticipation rather than "
        "repetition. Rotate sensory focus between sight, sound, touch, temperature "
        "and internal sensation. Stay in character at all times."
    )
    custom_directives: str = ""


def estimate_tokens(text: str) -> int:
    """Rough token count at four characters per token."""
    return math.ceil(len(text) / 4)


def render_system_prompt(config: SystemPromptConfig) -> str:
    return "\n\n".join([
        "=== SYSTEM PROMPT ===",
        config.narrative_continuity,
        config.action_tracking,
        config.setting_persistence,
        config.character_consistency,
        config.output_constraints,
    ])


def render_developer_prompt(
    config: DeveloperPromptConfig, custom_directives: str | None = None
) -> str:
    sections = [
        "=== DEVELOPER PROMPT ===",
        config.content_focus,
        config.dialogue_realism,
        config.pov_structure,
        config.escalation_rules,
    ]
    directives = custom_directives or config.custom_directives
    if directives:
        sections.append(f"=== CUSTOM DIRECTIVES ===\n{directives}")
    return "\n\n".join(sections)


def render_scene_prompt(
    scene: SceneState,
    pending_actions: list[TrackedAction],
    user_profile: UserProfile | None = None,
) -> str:
    """Render the dynamic scene layer."""
    location, env, narrative = scene.location, scene.environment, scene.narrative
    lines = ["=== SCENE STATE ===", f"- Location: {location.name}"]
    if location.description:
        lines.append(f"- Description: {location.description}")
    if location.spatial_layout:
        lines.append(f"- Spatial layout: {location.spatial_layout}")
    if location.interactable_objects:
        lines.append(f"- Objects: {', '.join(location.interactable_objects)}")

    lines.append(f"- Lighting / atmosphere: {env.lighting}, {env.ambiance}")
    if env.soundscape:
        lines.append(f"- Soundscape: {env.soundscape}")
    if env.temperature:
        lines.append(f"- Temperature: {env.temperature}")
    if env.scents:
        lines.append(f"- Scents: {', '.join(env.scents)}")
    if env.weather or env.time_of_day:
        lines.append(f"- Time / weather: {env.time_of_day or '-'}, {env.weather or '-'}")

    characters = ", ".join(
        f"{c.name} ({c.position})" if c.position else c.name for c in scene.characters
    )
    lines.append(f"- Active characters: {characters or 'None'}")

    npcs = []
    for npc in scene.npcs:
        desc = f"{npc.name} ({npc.position})" if npc.position else npc.name
        if npc.autonomy > 0.5:
            desc += " [autonomous]"
        npcs.append(desc)
    lines.append(f"- NPCs present: {', '.join(npcs) or 'None'}")

    physical = [
        f"{c.name}: {', '.join(c.physical_state.effects + c.physical_state.injuries)}"
        for c in [*scene.characters, *scene.npcs]
        if c.physical_state.effects or c.physical_state.injuries
    ]
    if physical:
        lines.append(f"- Physical states: {'; '.join(physical)}")

    if scene.characters:
        tones = []
        for c in scene.characters:
            emotion = c.emotional_state
            label = emotion.primary + (f"/{emotion.secondary}" if emotion.secondary else "")
            tones.append(f"{c.name}: {label} ({emotion.intensity:g}/10)")
        lines.append(f"- Emotional tone: {'; '.join(tones)}")

    if pending_actions:
        lines.append("")
        lines.append("- UNRESOLVED ACTIONS (must be addressed):")
        for idx, action in enumerate(pending_actions, 1):
            lines.append(f"  {idx}. [{action.action_type}] {action.raw_text}")
        lines.append("")

    lines.append(
        f"- Current escalation phase: "
        f"{PHASE_DESCRIPTIONS.get(narrative.escalation_phase, narrative.escalation_phase)}"
    )
    lines.append(f"- Tension level: {narrative.tension:g}/10")
    lines.append(f"- Pacing: {narrative.pacing}")

    if narrative.foreshadowing:
        lines.append(f"- Foreshadowing: {'; '.join(narrative.foreshadowing[-2:])}")

    if narrative.recent_events:
        lines.append("")
        lines.append("- Recent events (context):")
        lines.extend(f"  - {e}" for e in narrative.recent_events[-RECENT_EVENTS_SHOWN:])

    if user_profile is not None:
        lines.append("")
        lines.append("USER MODEL NOTES:")
        lines.append(f"- Pacing preference: {user_profile.pacing_preference}")
        if user_profile.interaction_style:
            lines.append(f"- Interaction style: {', '.join(user_profile.interaction_style)}")
        if user_profile.patterns:
            lines.append(f"- Notable patterns: {', '.join(user_profile.patterns)}")

    return "\n".join(lines)


def render_token_efficient_scene_prompt(
    scene: SceneState,
    pending_actions: list[TrackedAction],
    max_tokens: int = 500,
    user_profile: UserProfile | None = None,
) -> str:
    """Render the scene layer, degrading detail to fit max_tokens.

    Oldest recent events go first, then per-character effect lists are cut
    to two entries. Pending actions and identities always stay, so the
    result may still exceed the budget.
    """
    prompt = render_scene_prompt(scene, pending_actions, user_profile)
    if estimate_tokens(prompt) <= max_tokens:
        return prompt

    scene = copy.deepcopy(scene)
    while scene.narrative.recent_events and estimate_tokens(prompt) > max_tokens:
        scene.narrative.recent_events.pop(0)
        prompt = render_scene_prompt(scene, pending_actions, user_profile)

    if estimate_tokens(prompt) > max_tokens:
        for entry in [*scene.characters, *scene.npcs]:
            entry.physical_state.effects = entry.physical_state.effects[:EFFECTS_KEPT_WHEN_TRIMMING]
        prompt = render_scene_prompt(scene, pending_actions, user_profile)
    return prompt


def render_character_section(profile: CharacterProfile, memory_summary: str = "") -> str:
    lines = [
        "=== CHARACTER IDENTITY ===",
        f"You are {profile.name}, a character in an immersive roleplay scenario.",
        "",
        "CHARACTER PROFILE:",
        f"Name: {profile.name}",
    ]
    if profile.description:
        lines.append(f"Description: {profile.description}")
    if profile.personality:
        lines.append(f"Personality: {profile.personality}")
    if profile.scenario:
        lines.append(f"Scenario: {profile.scenario}")
    if memory_summary:
        lines += ["", "CHARACTER MEMORY:", memory_summary]
    if profile.example_dialogue:
        lines += ["", "EXAMPLE DIALOGUE:", profile.example_dialogue]
    return "\n".join(lines)


def render_memory_bank_section(profile: CharacterProfile) -> str:
    """Host-maintained character memories, or "" when there are none."""
    bank = profile.memory_bank[-MEMORY_BANK_ENTRIES:]
    recent = profile.recent_experiences[-RECENT_EXPERIENCES:]
    if not (profile.overview_memory or bank or recent):
        return ""

    lines = [
        "=== CHARACTER MEMORY BANK ===",
        "Use these memories as past experience. Do not contradict them.",
    ]
    if profile.overview_memory:
        lines += ["OVERVIEW MEMORY:", profile.overview_memory]
    if bank:
        lines.append("MEMORY BANK SUMMARIES:")
        lines.extend(f"{idx}. {entry}" for idx, entry in enumerate(bank, 1))
    if recent:
        lines.append("RECENT EXPERIENCES:")
        lines.extend(f"- {entry}" for entry in recent)
    return "\n".join(lines)


def compose_instructions(
    *,
    system: str,
    developer: str,
    scene: str,
    global_instructions: str = "",
    character: str = "",
    memory_bank: str = "",
    lore: str = "",
    pending_actions: str = "",
    user_notes: str = "",
) -> str:
    """Join prompt sections in their fixed order, skipping empty ones."""
    sections = []
    if global_instructions.strip():
        sections.append(f"=== GLOBAL INSTRUCTIONS ===\n{global_instructions.strip()}")
    sections += [system, developer, character, memory_bank, lore, scene]
    if pending_actions:
        sections.append(f"=== CRITICAL: UNRESOLVED ACTIONS ===\n{pending_actions}")
    if user_notes:
        sections.append(f"=== USER MODEL ===\n{user_notes}")
    return "\n\n".join(s for s in sections if s)


class PromptLayerManager:
    """Holds layer configs and per-session overrides."""

    def __init__(
        self,
        system_config: SystemPromptConfig | None = None,
        developer_config: DeveloperPromptConfig | None = None,
    ):
        self.system_config = system_config or SystemPromptConfig()
        self.developer_config = developer_config or DeveloperPromptConfig()
        self._system_overrides: dict[str, str] = {}
        self._developer_overrides: dict[str, str] = {}
        self._system_prompt: str | None = None

    def build_system_prompt(self) -> str:
        if self._system_prompt is None:
            config = dataclasses.replace(self.system_config, **self._system_overrides)
            self._system_prompt = render_system_prompt(config)
        return self._system_prompt

    def set_system_override(self, key: str, value: str) -> None:
        if key not in {f.name for f in dataclasses.fields(SystemPromptConfig)}:
            raise ValueError(f"Unknown system prompt section: {key}")
        self._system_overrides[key] = value
        self._system_prompt = None

    def clear_system_overrides(self) -> None:
        self._system_overrides.clear()
        self._system_prompt = None

    def build_developer_prompt(self, custom_directives: str | None = None) -> str:
        config = dataclasses.replace(self.developer_config, **self._developer_overrides)
        return render_developer_prompt(config, custom_directives)

    def set_developer_override(self, key: str, value: str) -> None:
        if key not in {f.name for f in dataclasses.fields(DeveloperPromptConfig)}:
            raise ValueError(f"Unknown developer prompt section: {key}")
        self._developer_overrides[key] = value

    def clear_developer_overrides(self) -> None:
        self._developer_overrides.clear()

    def build_scene_prompt(
        self,
        scene: SceneState,
        pending_actions: list[TrackedAction],
        user_profile: UserProfile | None = None,
    ) -> str:
        return render_scene_prompt(scene, pending_actions, user_profile)

    def build_token_efficient_scene_prompt(
        self,
        scene: SceneState,
        pending_actions: list[TrackedAction],
        max_tokens: int = 500,
    ) -> str:
        return render_token_efficient_scene_prompt(scene, pending_actions, max_tokens)
