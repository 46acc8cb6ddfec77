"""Lore selection and rendering for the instruction prompt."""

from __future__ import annotations

from dataclasses import dataclass, field

from roleplay_state.embedding import EmbeddingBackend, cosine_similarity
from roleplay_state.models import LoreEntry

KEY_MATCH_BONUS = 2
NAME_MATCH_BONUS = 3
SIMILARITY_WEIGHT = 5


@dataclass
class ScoredLore:
    entry: LoreEntry
    score: float
    matched_keys: list[str] = field(default_factory=list)


def select_lore(
    entries: list[LoreEntry],
    conversation: str,
    threshold: int = 5,
    limit: int = 15,
    embedding: EmbeddingBackend | None = None,
) -> list[ScoredLore]:
    """Rank lore entries by importance and relevance to the conversation.

    Entries below the importance threshold are dropped. Each key found in
    the conversation adds 2, the entry name adds 3, and with an embedding
    backend the cosine similarity to the conversation adds up to 5.
    """
    candidates = [e for e in entries if e.importance >= threshold]
    if not candidates:
        return []

    context = conversation.lower()
    scored = []
    for entry in candidates:
        matched = [k for k in entry.keys if k and k.lower() in context]
        score = entry.importance + KEY_MATCH_BONUS * len(matched)
        if entry.name and entry.name.lower() in context:
            score += NAME_MATCH_BONUS
        scored.append(ScoredLore(entry=entry, score=score, matched_keys=matched))

    if embedding is not None and conversation.strip():
        query = embedding.embed(conversation)
        vectors = embedding.embed_batch([f"{s.entry.name}\n{s.entry.content}" for s in scored])
        for item, vector in zip(scored, vectors):
            item.score += SIMILARITY_WEIGHT * max(0.0, cosine_similarity(query, vector))

    # sorted() is stable, so equal scores keep input order
    scored = sorted(scored, key=lambda s: s.score, reverse=True)
    return scored[:limit]


def render_lore_section(selected: list[ScoredLore], character_name: str = "") -> str:
    if not selected:
        return ""
    lines = [
        "=== WORLD LORE & CONTEXT ===",
        "The following lore entries are relevant to this conversation:",
        "",
    ]
    for item in selected:
        entry = item.entry
        lines.append(f"[{entry.category.upper()}] {entry.name} (Importance: {entry.importance}/10)")
        lines.append(entry.content)
        if entry.keys:
            keys = f"Keywords: {', '.join(entry.keys)}"
            if item.matched_keys:
                keys += f" [Active: {', '.join(item.matched_keys)}]"
            lines.append(keys)
        lines.append("")
    who = character_name or "the character"
    lines.append(f"Use this lore naturally when relevant, as {who} would know it.")
    return "\n".join(lines)
