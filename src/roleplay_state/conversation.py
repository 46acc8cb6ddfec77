"""Turn driver: runs one full exchange against a completion provider.

The package performs no network I/O. Hosts pass in anything with a
``complete(messages, *, temperature, max_tokens)`` method.
"""

from __future__ import annotations

import logging
from typing import Protocol

from roleplay_state.engine import RoleplayEngine
from roleplay_state.errors import EmptyReplyError, ProviderError
from roleplay_state.models import LoreEntry, TurnResult

logger = logging.getLogger(__name__)


class CompletionProvider(Protocol):
    """Protocol for text completion providers."""

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Return the assistant reply for a chat message list."""
        ...


def _complete(
    provider: CompletionProvider,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
) -> str:
    try:
        reply = provider.complete(messages, temperature=temperature, max_tokens=max_tokens)
    except ProviderError:
        raise
    except Exception as e:
        raise ProviderError(f"Completion failed: {e}") from e
    if not reply or not reply.strip():
        raise EmptyReplyError("Empty reply from completion provider")
    return reply.strip()


def run_turn(
    engine: RoleplayEngine,
    provider: CompletionProvider,
    user_message: str,
    history: list[dict[str, str]] | None = None,
    lore: list[LoreEntry] | None = None,
    custom_directives: str | None = None,
    auto_regenerate: bool = True,
    max_retries: int | None = None,
) -> TurnResult:
    """Prepare, generate, validate (retrying with guidance) and process one turn.

    Args:
        engine: An active engine
        provider: Completion provider
        user_message: The user's new message
        history: Prior chat messages as ``{"role", "content"}`` dicts
        lore: Lore entries to consider for this turn
        custom_directives: Extra developer-layer directives
        auto_regenerate: Retry replies that fail validation
        max_retries: Retry limit; defaults to the engine's validation config

    Returns:
        The processed turn result; ``regeneration_count`` records retries

    Raises:
        ProviderError: The provider failed or returned nothing usable
    """
    history = list(history or [])
    conversation = " ".join(m.get("content", "") for m in history)
    context = engine.prepare_turn(
        user_message,
        lore=lore,
        conversation=conversation,
        custom_directives=custom_directives,
    )

    settings = engine.config.prompts
    retries = engine.config.validation.max_retries if max_retries is None else max_retries
    base = [
        {"role": "system", "content": context.full_prompt},
        *history,
        {"role": "user", "content": user_message},
    ]

    attempt = 0
    guidance = None
    while True:
        messages = base + ([{"role": "system", "content": guidance}] if guidance else [])
        reply = _complete(provider, messages, settings.temperature, settings.max_tokens)
        validation = engine.validate_response(reply, context)
        if validation.valid or not auto_regenerate or attempt >= retries:
            break
        attempt += 1
        guidance = engine.regeneration_guidance(validation)
        logger.info(
            "Reply scored %d, regenerating (attempt %d/%d)",
            validation.score,
            attempt,
            retries,
        )

    result = engine.process_response(reply, context)
    result.regeneration_count = attempt
    return result
