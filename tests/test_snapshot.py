"""Tests for snapshot serialization and validation."""

import json

import pytest
from roleplay_state import SnapshotError
from roleplay_state.snapshot import (
    FORMAT_VERSION,
    dumps_state,
    engine_state_from_dict,
    engine_state_to_dict,
    loads_state,
    turn_result_to_dict,
)


@pytest.fixture
def snapshot(active_engine):
    active_engine.add_npc("guard", "Guard", motivations=["collect the toll"])
    context = active_engine.prepare_turn("*walks into the tavern* I kiss her hand.")
    active_engine.process_response("Mara felt flustered as the tension rose.", context)
    active_engine.long_term.add_fact("world_fact", "The anchor is cursed")
    active_engine.scene.set_flag("door_locked", True)
    return active_engine.export_state()


def test_json_round_trip(snapshot):
    """A snapshot survives JSON serialization unchanged."""
    text = dumps_state(snapshot)

    assert json.loads(text)["format_version"] == FORMAT_VERSION
    assert loads_state(text) == snapshot


def test_round_trip_keeps_nested_types(snapshot):
    restored = loads_state(dumps_state(snapshot, indent=2))

    assert type(restored.current_scene.npcs[0]).__name__ == "NPCState"
    assert restored.current_scene.npcs[0].motivations == ["collect the toll"]
    assert restored.long_term_memory.character_memories["mara"].character_id == "mara"
    assert restored.current_scene.flags == {"door_locked": True}


def test_missing_version_rejected(snapshot):
    data = engine_state_to_dict(snapshot)
    del data["format_version"]

    with pytest.raises(SnapshotError) as exc:
        engine_state_from_dict(data)

    assert exc.value.path == "format_version"


def test_wrong_type_names_path(snapshot):
    data = engine_state_to_dict(snapshot)
    data["turn_count"] = "3"

    with pytest.raises(SnapshotError) as exc:
        engine_state_from_dict(data)

    assert exc.value.path == "turn_count"
    assert "valid integer" in str(exc.value)
    assert str(exc.value).startswith("turn_count: ")


def test_numeric_string_not_coerced(snapshot):
    data = engine_state_to_dict(snapshot)
    data["current_scene"]["narrative"]["tension"] = "7"

    with pytest.raises(SnapshotError) as exc:
        engine_state_from_dict(data)

    assert exc.value.path == "current_scene.narrative.tension"


def test_dict_value_path(snapshot):
    data = engine_state_to_dict(snapshot)
    del data["long_term_memory"]["character_memories"]["mara"]["character_id"]

    with pytest.raises(SnapshotError) as exc:
        engine_state_from_dict(data)

    assert exc.value.path == "long_term_memory.character_memories.mara.character_id"


def test_boolean_is_not_an_integer(snapshot):
    data = engine_state_to_dict(snapshot)
    data["turn_count"] = True

    with pytest.raises(SnapshotError):
        engine_state_from_dict(data)


def test_invalid_choice_rejected(snapshot):
    data = engine_state_to_dict(snapshot)
    data["current_scene"]["narrative"]["escalation_phase"] = "finale"

    with pytest.raises(SnapshotError) as exc:
        engine_state_from_dict(data)

    assert exc.value.path == "current_scene.narrative.escalation_phase"


def test_invalid_list_item_path(snapshot):
    data = engine_state_to_dict(snapshot)
    data["action_ledger"]["actions"][0]["action_type"] = "dance"

    with pytest.raises(SnapshotError) as exc:
        engine_state_from_dict(data)

    assert exc.value.path == "action_ledger.actions[0].action_type"


def test_missing_required_field(snapshot):
    data = engine_state_to_dict(snapshot)
    del data["session_id"]

    with pytest.raises(SnapshotError) as exc:
        engine_state_from_dict(data)

    assert exc.value.path == "session_id"


def test_unknown_keys_ignored(snapshot):
    data = engine_state_to_dict(snapshot)
    data["extra"] = {"anything": 1}

    assert engine_state_from_dict(data) == snapshot


def test_invalid_json():
    with pytest.raises(SnapshotError):
        loads_state("{not json")
    with pytest.raises(ValueError):
        loads_state("[]")


def test_turn_result_is_json_serializable(active_engine):
    context = active_engine.prepare_turn("I wave.")
    result = active_engine.process_response("Mara waves back.", context)

    data = json.loads(json.dumps(turn_result_to_dict(result)))

    assert data["response"] == "Mara waves back."
    assert data["regeneration_count"] == 0
    assert data["memory_events"][0]["turn_number"] == 1
