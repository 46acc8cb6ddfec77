"""Tests for the scene state manager."""

import pytest
from roleplay_state.models import LocationState, SceneState
from roleplay_state.scene import SceneStateManager


@pytest.fixture
def scene(clock):
    manager = SceneStateManager(clock=clock)
    manager.set_location(name="Docks", description="Fog over black water.")
    manager.add_character("mara", "Mara")
    return manager


def test_default_state():
    manager = SceneStateManager()
    state = manager.get_state()

    assert state.scene_id.startswith("scene_")
    assert state.location.name == "Unspecified"
    assert state.narrative.escalation_phase == "introduction"
    assert state.narrative.tension == 3
    assert state.narrative.pacing == "moderate"


def test_getters_return_copies(scene):
    """Mutating a returned state does not touch the manager."""
    state = scene.get_state()
    state.location.name = "Elsewhere"
    state.characters.clear()

    assert scene.get_location().name == "Docks"
    assert scene.get_character("mara") is not None


def test_update_location_merges(scene, clock):
    clock.tick(5)
    scene.update_location(spatial_layout="A long pier")

    location = scene.get_location()
    assert location.name == "Docks"
    assert location.spatial_layout == "A long pier"
    assert scene.get_state().updated_at == clock.now


def test_unknown_field_rejected(scene):
    with pytest.raises(ValueError):
        scene.update_location(altitude=30)
    with pytest.raises(ValueError):
        scene.update_character("mara", mood="bad")


def test_update_missing_character_raises(scene):
    with pytest.raises(KeyError):
        scene.update_character("nobody", position="sitting")


def test_add_character_replaces_same_id(scene):
    scene.add_character("mara", "Mara Vell")

    characters = scene.get_characters()
    assert len(characters) == 1
    assert characters[0].name == "Mara Vell"


def test_nested_character_update(scene):
    scene.update_character("mara", emotional_state={"primary": "wary", "intensity": 14})

    emotion = scene.get_character("mara").emotional_state
    assert emotion.primary == "wary"
    assert emotion.intensity == 10
    assert emotion.triggers == []


def test_npc_values_are_clamped(scene):
    scene.add_npc("guard", "Guard", autonomy=1.5, emotional_threshold=12)

    npc = scene.get_npc("guard")
    assert npc.autonomy == 1
    assert npc.emotional_threshold == 10


def test_npc_defaults_come_from_manager():
    manager = SceneStateManager(default_autonomy=0.3, default_emotional_threshold=4)
    manager.add_npc("cat", "Cat")

    npc = manager.get_npc("cat")
    assert npc.autonomy == 0.3
    assert npc.emotional_threshold == 4


def test_autonomous_triggers(scene):
    scene.add_npc("bold", "Bold", autonomy=0.8)
    scene.add_npc("meek", "Meek", autonomy=0.2)
    scene.add_npc("angry", "Angry", autonomy=0.2, emotional_state={"intensity": 8})
    scene.add_npc("busy", "Busy", autonomy=0.2)
    scene.queue_npc_action("busy", "drops a tray")

    triggered = {npc.id for npc in scene.check_npc_autonomous_triggers()}

    assert triggered == {"bold", "angry", "busy"}

    scene.clear_npc_actions("busy")
    assert "busy" not in {n.id for n in scene.check_npc_autonomous_triggers()}


def test_find_by_name_covers_npcs(scene):
    scene.add_npc("guard", "Old Guard")

    assert scene.find_by_name("MARA").id == "mara"
    assert scene.find_by_name("old guard").id == "guard"
    assert scene.find_by_name("nobody") is None


def test_tension_is_clamped(scene):
    scene.adjust_tension(20)
    assert scene.get_narrative().tension == 10

    scene.set_tension(-4)
    assert scene.get_narrative().tension == 0


def test_advance_escalation_stops_at_climax(scene):
    """Automatic progression moves one phase at a time and never past climax."""
    phases = []
    for _ in range(3):
        assert scene.advance_escalation()
        phases.append(scene.get_narrative().escalation_phase)

    assert phases == ["tension-building", "rising-action", "climax"]
    assert not scene.advance_escalation()
    assert scene.get_narrative().escalation_phase == "climax"


def test_explicit_phase_moves_anywhere(scene):
    scene.set_escalation_phase("aftermath")
    assert scene.get_narrative().escalation_phase == "aftermath"

    scene.set_escalation_phase("introduction")
    assert scene.get_narrative().escalation_phase == "introduction"

    with pytest.raises(ValueError):
        scene.set_escalation_phase("finale")


def test_invalid_pacing_rejected(scene):
    with pytest.raises(ValueError):
        scene.set_pacing("glacial")
    with pytest.raises(ValueError):
        scene.update_narrative(pacing="glacial")


def test_recent_events_capped(scene):
    for i in range(15):
        scene.add_recent_event(f"event {i}")

    events = scene.get_narrative().recent_events
    assert len(events) == 10
    assert events[0] == "event 5"
    assert events[-1] == "event 14"


def test_undo_restores_previous_state(scene):
    scene.set_tension(8)
    scene.add_scent("salt")

    assert scene.undo()
    assert scene.get_environment().scents == []
    assert scene.undo()
    assert scene.get_narrative().tension == 3


def test_undo_history_is_bounded():
    manager = SceneStateManager()
    for i in range(15):
        manager.set_flag("count", i)

    assert manager.history_size == 10


def test_undo_on_empty_history():
    assert not SceneStateManager().undo()


def test_noop_changes_do_not_record_history(scene):
    before = scene.history_size
    scene.remove_scent("nothing")
    scene.clear_flag("missing")
    scene.remove_interactable_object("ghost")

    assert scene.history_size == before


def test_flags(scene):
    scene.set_flag("door_locked", True)
    assert scene.get_flag("door_locked") is True

    scene.clear_flag("door_locked")
    assert scene.get_flag("door_locked", "unset") == "unset"


def test_interactable_objects(scene):
    scene.add_interactable_object("lantern")
    scene.add_interactable_object("lantern")
    assert scene.get_location().interactable_objects == ["lantern"]

    scene.remove_interactable_object("lantern")
    assert scene.get_location().interactable_objects == []


def test_bulk_update(scene):
    scene.add_npc("guard", "Guard")

    scene.apply_bulk_update({
        "location": {"description": "Rain hammers the boards."},
        "characters": [{"id": "mara", "position": "at the rail"}],
        "npcs": [{"id": "guard", "autonomy": 0.9}],
        "environment": {"weather": "storm"},
        "narrative": {"tension": 6},
        "flags": {"alarm": True},
        "recent_event": "The storm breaks.",
    })

    state = scene.get_state()
    assert state.location.name == "Docks"
    assert state.location.description == "Rain hammers the boards."
    assert state.characters[0].position == "at the rail"
    assert state.npcs[0].autonomy == 0.9
    assert state.environment.weather == "storm"
    assert state.narrative.tension == 6
    assert state.flags == {"alarm": True}
    assert state.narrative.recent_events == ["The storm breaks."]

    # One undo reverts the whole update
    scene.undo()
    assert scene.get_environment().weather is None


def test_bulk_update_is_atomic(scene):
    """A bad part rejects the whole update."""
    with pytest.raises(ValueError):
        scene.apply_bulk_update({
            "location": {"name": "Lighthouse"},
            "narrative": {"escalation_phase": "finale"},
        })

    assert scene.get_location().name == "Docks"


def test_bulk_update_rejects_unknown_keys(scene):
    with pytest.raises(ValueError):
        scene.apply_bulk_update({"weather": "rain"})


def test_new_scene(scene):
    scene.update_character("mara", emotional_state={"primary": "angry"})
    scene.add_npc("guard", "Guard")
    scene.set_tension(9)
    old_id = scene.scene_id

    new_id = scene.new_scene(location={"name": "Lighthouse"}, preserve_characters=True)

    state = scene.get_state()
    assert new_id == state.scene_id != old_id
    assert state.location.name == "Lighthouse"
    assert state.location.description == "Fog over black water."
    assert [c.id for c in state.characters] == ["mara"]
    assert state.characters[0].emotional_state.primary == "neutral"
    assert state.npcs == []
    assert state.narrative.tension == 3
    assert not scene.undo()


def test_new_scene_preserving_npcs_clears_queues(scene):
    scene.add_npc("guard", "Guard")
    scene.queue_npc_action("guard", "draws steel")

    scene.new_scene(preserve_npcs=True)

    npc = scene.get_npc("guard")
    assert npc is not None
    assert npc.pending_actions == []
    assert scene.get_characters() == []


def test_import_state_replaces_scene():
    manager = SceneStateManager()
    state = SceneState(scene_id="scene_fixed", location=LocationState(name="Attic"))

    manager.import_state(state)
    state.location.name = "Changed"

    assert manager.scene_id == "scene_fixed"
    assert manager.get_location().name == "Attic"


def test_summary():
    manager = SceneStateManager()
    manager.add_character("mara", "Mara")
    manager.add_npc("guard", "Guard")

    assert manager.summary() == (
        "Location: Unspecified | Characters: Mara (neutral) | NPCs: Guard | "
        "Atmosphere: neutral | Phase: introduction | Tension: 3/10"
    )
