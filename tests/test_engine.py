"""Tests for the roleplay engine turn lifecycle."""

import pytest
from roleplay_state import (
    CharacterProfile,
    EmptyReplyError,
    EngineConfig,
    LoreEntry,
    NoPreparedTurnError,
    RoleplayEngine,
    SessionNotActiveError,
    SnapshotError,
)
from roleplay_state.config import NPCSettings, PromptSettings
from roleplay_state.models import EngineState

ARRIVAL = "*walks into the tavern* Hello there, who's in charge?"
ARRIVAL_REPLY = (
    "Mara looks up from the bar as you walk into the tavern. "
    '"I am in charge here," she says, wiping her hands. '
    '"And you are dripping on my floor."'
)


def play(engine, message, reply):
    context = engine.prepare_turn(message)
    return engine.process_response(reply, context)


# -------------------------------------------------------------------------
# Session lifecycle
# -------------------------------------------------------------------------


def test_engine_starts_inactive(engine):
    assert not engine.is_active
    assert engine.session_id.startswith("session_")

    with pytest.raises(SessionNotActiveError):
        engine.prepare_turn("Hello")


def test_set_character_activates(engine, profile):
    engine.set_character(profile)

    assert engine.is_active
    character = engine.scene.get_character("mara")
    assert character.name == "Mara"
    assert character.profile["personality"] == "Wry, protective, slow to trust."
    assert engine.long_term.get_character_memory("mara") is not None


def test_switching_character_replaces_scene_entry(active_engine):
    active_engine.set_character(CharacterProfile(id="tobin", name="Tobin"))

    ids = [c.id for c in active_engine.scene.get_characters()]
    assert ids == ["tobin"]


def test_process_without_prepared_turn(active_engine):
    assert active_engine.is_active
    with pytest.raises(NoPreparedTurnError):
        active_engine.process_response("Mara nods.")
    with pytest.raises(NoPreparedTurnError):
        active_engine.validate_response("Mara nods.")


# -------------------------------------------------------------------------
# Turns
# -------------------------------------------------------------------------


def test_prepare_turn_tracks_actions(active_engine, clock):
    """Arrival with speech yields a meta and a verbal action."""
    context = active_engine.prepare_turn(ARRIVAL)

    assert context.turn == 1
    assert context.timestamp == clock.now
    assert [a.action_type for a in context.parsed_actions] == ["meta", "verbal"]
    assert [a.raw_text for a in context.parsed_actions] == [
        "walks into the tavern",
        "Hello there, who's in charge?",
    ]
    assert active_engine.ledger.pending_count == 2
    assert active_engine.turn_count == 1


def test_full_prompt_sections(active_engine):
    context = active_engine.prepare_turn(ARRIVAL)
    prompt = context.full_prompt

    order = [
        "=== SYSTEM PROMPT ===",
        "=== DEVELOPER PROMPT ===",
        "=== CHARACTER IDENTITY ===",
        "=== SCENE STATE ===",
        "=== CRITICAL: UNRESOLVED ACTIONS ===",
        "=== USER MODEL ===",
    ]
    positions = [prompt.index(marker) for marker in order]
    assert positions == sorted(positions)
    assert "- Location: The Gilded Anchor" in context.scene_prompt
    assert "1. [META] walks into the tavern" in prompt
    assert "GLOBAL INSTRUCTIONS" not in prompt


def test_global_instructions_lead_the_prompt(clock, profile):
    config = EngineConfig(prompts=PromptSettings(global_system_prompt="Keep it PG."))
    engine = RoleplayEngine(config, clock=clock)
    engine.set_character(profile)

    prompt = engine.prepare_turn("Hello.").full_prompt

    assert prompt.startswith("=== GLOBAL INSTRUCTIONS ===\nKeep it PG.")


def test_custom_directives_reach_the_prompt(active_engine):
    context = active_engine.prepare_turn("Hello.", custom_directives="Short replies only.")

    assert "=== CUSTOM DIRECTIVES ===\nShort replies only." in context.full_prompt


def test_process_response_resolves_addressed_actions(active_engine):
    context = active_engine.prepare_turn(ARRIVAL)

    result = active_engine.process_response(ARRIVAL_REPLY, context)

    assert result.response == ARRIVAL_REPLY
    assert result.validation.valid
    assert result.validation.score == 100
    assert sorted(result.resolved_action_ids) == sorted(result.new_action_ids)
    assert len(result.new_action_ids) == 2
    assert active_engine.ledger.pending_count == 0
    assert result.scene.narrative.recent_events == [
        "Turn 1: walks into the tavern; Hello there, who's in charge?"
    ]


def test_process_response_records_memory(active_engine, clock):
    clock.tick(30)
    result = play(active_engine, ARRIVAL, ARRIVAL_REPLY)

    [event] = result.memory_events
    assert event.event_type == "action"
    assert event.turn_number == 1
    assert event.importance == 5
    assert event.participants == ["Mara", "user"]
    assert event.summary.startswith("User: *walks into the tavern*")
    assert " -> Response: Mara looks up" in event.summary
    assert active_engine.short_term.get_recent_events()[0].id == event.id
    assert active_engine.response_history == [ARRIVAL_REPLY]
    assert active_engine.last_response_timestamp == clock.now


def test_empty_reply_rejected(active_engine):
    context = active_engine.prepare_turn(ARRIVAL)

    with pytest.raises(EmptyReplyError):
        active_engine.process_response("   ", context)

    assert active_engine.ledger.pending_count == 2
    assert active_engine.response_history == []


def test_validate_response_has_no_side_effects(active_engine):
    active_engine.prepare_turn(ARRIVAL)

    result = active_engine.validate_response("As an AI, I cannot do that")

    assert "breaks_character" in [i.type for i in result.issues]
    assert result.requires_regeneration
    assert active_engine.ledger.pending_count == 2
    assert active_engine.response_history == []
    assert active_engine.short_term.get_recent_events() == []


def test_regeneration_guidance(active_engine):
    active_engine.prepare_turn(ARRIVAL)

    failed = active_engine.validate_response("As an AI, I cannot do that")
    passed = active_engine.validate_response(ARRIVAL_REPLY)

    guidance = active_engine.regeneration_guidance(failed)
    assert guidance.startswith("=== REGENERATION GUIDANCE ===")
    assert "- Stay fully in character" in guidance
    assert active_engine.regeneration_guidance(passed) is None


def test_validation_checks_only_this_turns_actions(active_engine):
    """Actions left over from earlier turns do not fail a new reply."""
    play(active_engine, "*lights the lamp*", "Mara nods.")
    assert active_engine.ledger.pending_count == 1

    active_engine.prepare_turn("*waves at Mara*")
    result = active_engine.validate_response("Mara waves back from the bar.")

    assert "ignores_action" not in [i.type for i in result.issues]
    assert active_engine.ledger.pending_count == 2


def test_intimate_actions_escalate_one_phase_per_turn(active_engine):
    phases = []
    for _ in range(5):
        play(active_engine, "I kiss her softly.", "Mara smiles.")
        phases.append(active_engine.get_scene_state().narrative.escalation_phase)

    assert phases == [
        "tension-building",
        "rising-action",
        "climax",
        "climax",
        "climax",
    ]


def test_non_intimate_turns_do_not_escalate(active_engine):
    play(active_engine, ARRIVAL, ARRIVAL_REPLY)

    assert active_engine.get_scene_state().narrative.escalation_phase == "introduction"


def test_reply_updates_emotions_and_tension(active_engine):
    active_engine.add_npc("guard", "Guard")

    play(
        active_engine,
        "I slam the door.",
        "Mara felt uneasy as the tension grew heated. The guard looked furious.",
    )

    scene = active_engine.get_scene_state()
    assert scene.characters[0].emotional_state.primary == "uneasy"
    assert scene.npcs[0].emotional_state.primary == "furious"
    assert scene.narrative.tension == 4


def test_half_tension_rounds_up(active_engine):
    play(active_engine, "I wait.", "The tension breaks the silence.")

    assert active_engine.get_scene_state().narrative.tension == 4


def test_opposing_tension_words_cancel(active_engine):
    play(active_engine, "I wait.", "The tension fades into calm.")

    assert active_engine.get_scene_state().narrative.tension == 3


def test_important_events_reach_long_term_memory(active_engine):
    result = play(active_engine, "I kiss her and smile.", "Mara smiles.")

    [event] = result.memory_events
    assert event.event_type == "intimate"
    assert event.importance == 8
    record = active_engine.long_term.get_character_memory("mara")
    assert [e.id for e in record.interactions] == [event.id]


def test_response_history_is_bounded(active_engine):
    for i in range(12):
        play(active_engine, "I wait.", f"Reply number {i}.")

    assert len(active_engine.response_history) == 10
    assert active_engine.response_history[0] == "Reply number 2."


def test_user_patterns_analyzed_on_cadence(clock, profile):
    engine = RoleplayEngine(EngineConfig(pattern_analysis_every=2), clock=clock)
    engine.set_character(profile)

    play(engine, '*grins* "Run!"', "Mara laughs.")
    assert engine.long_term.get_user_profile().interaction_style == []

    play(engine, "I kiss her hand.", "Mara blushes.")
    profile_state = engine.long_term.get_user_profile()
    assert profile_state.pacing_preference == "fast"
    assert "action-oriented" in profile_state.interaction_style
    assert "Interested in: romance" in profile_state.patterns


# -------------------------------------------------------------------------
# Lore
# -------------------------------------------------------------------------


def test_relevant_lore_is_injected(active_engine):
    active_engine.set_lore([
        LoreEntry(name="Harbor Guild", content="Controls the docks.", importance=7, keys=["docks"]),
        LoreEntry(name="Minor Rumor", content="Nobody cares.", importance=2),
    ])

    prompt = active_engine.prepare_turn("I ask about the docks.").full_prompt

    assert "=== WORLD LORE & CONTEXT ===" in prompt
    assert "Harbor Guild" in prompt
    assert "Minor Rumor" not in prompt
    assert prompt.index("WORLD LORE") < prompt.index("SCENE STATE")


def test_lore_injection_can_be_disabled(clock, profile):
    engine = RoleplayEngine(EngineConfig(prompts=PromptSettings(auto_inject_lore=False)), clock=clock)
    engine.set_character(profile)
    engine.set_lore([LoreEntry(name="Harbor Guild", content="Controls the docks.", importance=7)])

    assert "WORLD LORE" not in engine.prepare_turn("Hello.").full_prompt


# -------------------------------------------------------------------------
# Scene lifecycle
# -------------------------------------------------------------------------


def test_new_scene_discards_scene_state(active_engine):
    active_engine.add_npc("guard", "Guard")
    active_engine.prepare_turn(ARRIVAL)
    active_engine.process_response("Mara nods.")
    active_engine.long_term.add_fact("world_fact", "The anchor is cursed")

    scene_id = active_engine.new_scene(location={"name": "Lighthouse"})

    assert active_engine.ledger.pending_count == 0
    assert active_engine.short_term.get_recent_events() == []
    assert active_engine.short_term.scene_id == scene_id
    assert active_engine.scene.get_character("mara") is not None
    assert active_engine.scene.get_npcs() == []
    assert active_engine.scene.get_location().name == "Lighthouse"
    assert [f.content for f in active_engine.long_term.memory.facts] == ["The anchor is cursed"]
    assert active_engine.turn_count == 1

    with pytest.raises(NoPreparedTurnError):
        active_engine.process_response("Mara nods.")


def test_new_scene_without_characters_keeps_active_one(active_engine):
    active_engine.new_scene(preserve_characters=False)

    assert [c.id for c in active_engine.scene.get_characters()] == ["mara"]


def test_reset_keeps_long_term_memory(active_engine):
    play(active_engine, ARRIVAL, "Mara nods.")
    active_engine.long_term.add_fact("user_preference", "Likes slow scenes")
    old_session = active_engine.session_id

    active_engine.reset()

    assert not active_engine.is_active
    assert active_engine.turn_count == 0
    assert active_engine.session_id != old_session
    assert active_engine.ledger.pending_count == 0
    assert active_engine.response_history == []
    assert len(active_engine.long_term.memory.facts) == 1


# -------------------------------------------------------------------------
# Passthrough settings
# -------------------------------------------------------------------------


def test_autonomous_npcs(active_engine):
    active_engine.add_npc("guard", "Guard", autonomy=0.9)
    active_engine.add_npc("cat", "Cat", autonomy=0.1)
    active_engine.queue_npc_action("cat", "knocks over a cup")

    assert {n.id for n in active_engine.get_autonomous_npcs()} == {"guard", "cat"}


def test_autonomy_can_be_disabled(clock, profile):
    engine = RoleplayEngine(EngineConfig(npc=NPCSettings(enable_autonomy=False)), clock=clock)
    engine.set_character(profile)
    engine.add_npc("guard", "Guard", autonomy=0.9)

    assert engine.get_autonomous_npcs() == []


def test_minimum_score_setting(active_engine):
    active_engine.prepare_turn("I shrug.")
    active_engine.set_minimum_validation_score(80)

    result = active_engine.validate_response("Mara shrugs. What do you do next?")

    assert result.score == 75
    assert not result.valid

    active_engine.disable_validation_check("asks_question")
    assert active_engine.validate_response("Mara shrugs. What do you do next?").valid


def test_force_resolve_all_actions(active_engine):
    active_engine.prepare_turn(ARRIVAL)

    resolved = active_engine.force_resolve_all_actions("skip ahead")

    assert len(resolved) == 2
    assert active_engine.get_pending_actions() == []
    assert active_engine.pending_actions_prompt() == ""
    assert active_engine.action_statistics()["resolved_actions"] == 2


# -------------------------------------------------------------------------
# Snapshots
# -------------------------------------------------------------------------


def test_export_import_round_trip(active_engine, clock):
    play(active_engine, ARRIVAL, "Mara nods.")
    active_engine.long_term.add_fact("world_fact", "The anchor is cursed")
    state = active_engine.export_state()

    other = RoleplayEngine(clock=clock)
    other.import_state(state)

    assert other.is_active
    assert other.session_id == active_engine.session_id
    assert other.turn_count == 1
    assert other.ledger.pending_count == active_engine.ledger.pending_count
    assert other.scene.summary() == active_engine.scene.summary()
    assert other.response_history == ["Mara nods."]
    assert list(other.patterns.messages) == [ARRIVAL]
    assert [f.content for f in other.long_term.memory.facts] == ["The anchor is cursed"]

    # Imported state is independent of the source engine
    active_engine.set_tension(9)
    assert other.get_scene_state().narrative.tension == 3


def test_imported_engine_continues_turns(active_engine, clock):
    play(active_engine, ARRIVAL, "Mara nods.")
    other = RoleplayEngine(clock=clock)
    other.import_state(active_engine.export_state())

    context = other.prepare_turn("I sit at the bar.")

    assert context.turn == 2


def test_malformed_import_changes_nothing(active_engine):
    play(active_engine, ARRIVAL, "Mara nods.")
    good = active_engine.export_state()
    bad = EngineState(
        session_id="session_bad",
        current_scene={"scene_id": "nope"},
        action_ledger=good.action_ledger,
        short_term_memory=good.short_term_memory,
        long_term_memory=good.long_term_memory,
        turn_count=4,
    )

    with pytest.raises(SnapshotError):
        active_engine.import_state(bad)

    assert active_engine.session_id == good.session_id
    assert active_engine.turn_count == 1
