"""Roleplay State - Narrative state orchestration for turn-based roleplay."""

import logging

from roleplay_state.config import EngineConfig, ValidationConfig
from roleplay_state.models import (
    CharacterProfile,
    LoreEntry,
    SceneState,
    TrackedAction,
    TurnContext,
    TurnResult,
    ValidationResult,
    EngineState,
)
from roleplay_state.errors import (
    RoleplayError,
    SessionNotActiveError,
    NoPreparedTurnError,
    SnapshotError,
    ProviderError,
    EmptyReplyError,
)
from roleplay_state.engine import RoleplayEngine
from roleplay_state.registry import SessionRegistry
from roleplay_state.store import SessionStore
from roleplay_state.conversation import run_turn

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "RoleplayEngine",
    "SessionRegistry",
    "SessionStore",
    "EngineConfig",
    "ValidationConfig",
    "CharacterProfile",
    "LoreEntry",
    "SceneState",
    "TrackedAction",
    "TurnContext",
    "TurnResult",
    "ValidationResult",
    "EngineState",
    "RoleplayError",
    "SessionNotActiveError",
    "NoPreparedTurnError",
    "SnapshotError",
    "ProviderError",
    "EmptyReplyError",
    "run_turn",
]
