"""Configuration for RoleplayEngine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable

VALIDATION_CHECKS = (
    "asks_question",  # reply asks the user something outside dialogue
    "ignores_action",  # a pending user action was not addressed
    "mirrors_phrasing",  # user phrases echoed back verbatim
    "breaks_character",  # AI self-reference
    "summarizes_instead",  # summarizing instead of dramatizing
    "wrong_perspective",  # first-person narration outside dialogue
    "repetitive_content",  # overlap with the previous reply
    "missing_consequences",  # physical/intimate action without a reaction
)


@dataclass
class ResolutionPolicy:
    """Heuristic for deciding that a reply addressed a pending action."""

    min_keyword_length: int = 4
    long_reply_threshold: int = 500


@dataclass
class CustomRule:
    """A validation rule supplied by the host.

    ``check(reply, context)`` returns a ValidationIssue or None.
    """

    name: str
    description: str
    check: Callable[[str, Any], Any]


@dataclass
class ValidationConfig:
    enabled_checks: set[str] = field(default_factory=lambda: set(VALIDATION_CHECKS))
    minimum_score: int = 70
    max_retries: int = 2
    custom_rules: list[CustomRule] = field(default_factory=list)


@dataclass
class MemoryLimits:
    short_term_max_events: int = 50
    long_term_max_facts: int = 100
    max_unresolved_actions: int = 20
    action_retention_turns: int = 5
    max_character_interactions: int = 50


@dataclass
class NPCSettings:
    enable_autonomy: bool = True
    default_autonomy: float = 0.5
    default_emotional_threshold: float = 7


@dataclass
class TokenLimits:
    scene_prompt: int = 500
    memory_summary: int = 200


@dataclass
class PromptSettings:
    global_system_prompt: str = ""
    auto_inject_lore: bool = True
    lore_importance_threshold: int = 5
    max_lore_entries: int = 15
    # Pass-through for the completion provider; not interpreted here.
    temperature: float = 0.8
    max_tokens: int = 1024


@dataclass
class EngineConfig:
    """Configuration for RoleplayEngine."""

    validation: ValidationConfig = field(default_factory=ValidationConfig)
    memory: MemoryLimits = field(default_factory=MemoryLimits)
    npc: NPCSettings = field(default_factory=NPCSettings)
    tokens: TokenLimits = field(default_factory=TokenLimits)
    prompts: PromptSettings = field(default_factory=PromptSettings)
    resolution: ResolutionPolicy = field(default_factory=ResolutionPolicy)
    pattern_analysis_every: int = 5  # turns
    embedding_backend: str = "none"  # "none" | "hash" | "local" | "openai"
    embedding_model: str = "all-MiniLM-L6-v2"  # for local
    openai_model: str = "text-embedding-3-small"  # if backend="openai"
    vector_dimensions: int = 256  # for hash

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        """Build a config from ROLEPLAY_* environment variables."""
        env = os.environ if environ is None else environ
        config = cls()

        config.validation.minimum_score = int(
            env.get("ROLEPLAY_MIN_SCORE", config.validation.minimum_score)
        )
        config.validation.max_retries = int(
            env.get("ROLEPLAY_MAX_RETRIES", config.validation.max_retries)
        )
        config.memory.short_term_max_events = int(
            env.get("ROLEPLAY_SHORT_TERM_MAX", config.memory.short_term_max_events)
        )
        config.memory.long_term_max_facts = int(
            env.get("ROLEPLAY_MAX_FACTS", config.memory.long_term_max_facts)
        )
        config.memory.max_unresolved_actions = int(
            env.get("ROLEPLAY_MAX_UNRESOLVED", config.memory.max_unresolved_actions)
        )
        config.tokens.scene_prompt = int(
            env.get("ROLEPLAY_SCENE_TOKENS", config.tokens.scene_prompt)
        )
        config.prompts.global_system_prompt = env.get(
            "ROLEPLAY_SYSTEM_PROMPT", config.prompts.global_system_prompt
        )
        config.prompts.auto_inject_lore = env.get(
            "ROLEPLAY_AUTO_LORE", "1"
        ).lower() not in ("0", "false", "no")
        config.embedding_backend = env.get(
            "ROLEPLAY_EMBEDDING_BACKEND", config.embedding_backend
        )
        config.embedding_model = env.get(
            "ROLEPLAY_EMBEDDING_MODEL", config.embedding_model
        )
        config.openai_model = env.get("ROLEPLAY_OPENAI_MODEL", config.openai_model)
        config.vector_dimensions = int(
            env.get("ROLEPLAY_VECTOR_DIMENSIONS", config.vector_dimensions)
        )
        return config
