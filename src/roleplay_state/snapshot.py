"""JSON-compatible engine snapshots.

``engine_state_from_dict`` validates structure and field types with pydantic
on the way in. Any mismatch raises SnapshotError naming the offending path,
so a bad snapshot never reaches an engine.
"""

from __future__ import annotations

import dataclasses
import json
import logging

from pydantic import TypeAdapter, ValidationError

from roleplay_state.errors import SnapshotError
from roleplay_state.models import EngineState, TurnResult

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

_ENGINE_STATE = TypeAdapter(EngineState)


def _error_path(loc: tuple) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def engine_state_to_dict(state: EngineState) -> dict:
    data = dataclasses.asdict(state)
    data["format_version"] = FORMAT_VERSION
    return data


def engine_state_from_dict(data: dict) -> EngineState:
    """Rebuild an EngineState, validating every field.

    Validation runs in strict JSON mode: objects build the nested
    dataclasses, while strings and booleans are never coerced to numbers.
    """
    if not isinstance(data, dict):
        raise SnapshotError("snapshot must be a JSON object")
    version = data.get("format_version")
    if version != FORMAT_VERSION:
        raise SnapshotError(f"unsupported snapshot version {version!r}", "format_version")
    try:
        return _ENGINE_STATE.validate_json(json.dumps(data), strict=True)
    except ValidationError as e:
        error = e.errors()[0]
        logger.warning("Rejected engine snapshot: %s", e)
        raise SnapshotError(error["msg"], _error_path(error["loc"])) from e
    except TypeError as e:
        raise SnapshotError(f"snapshot is not JSON-compatible: {e}") from e


def dumps_state(state: EngineState, indent: int | None = None) -> str:
    return json.dumps(engine_state_to_dict(state), indent=indent)


def loads_state(text: str) -> EngineState:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"invalid JSON: {e}") from e
    return engine_state_from_dict(data)


def turn_result_to_dict(result: TurnResult) -> dict:
    return dataclasses.asdict(result)
