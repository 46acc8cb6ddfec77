"""Tests for embedding backends and lore selection."""

from types import SimpleNamespace

import pytest
from roleplay_state.embedding import (
    HashEmbedding,
    LocalEmbedding,
    OpenAIEmbedding,
    cosine_similarity,
    create_embedding_backend,
)
from roleplay_state.lore import render_lore_section, select_lore
from roleplay_state.models import LoreEntry


def test_hash_embedding_is_deterministic():
    """Same text, same vector."""
    backend = HashEmbedding(dimensions=32)

    assert backend.embed("The Gilded Anchor") == backend.embed("the gilded anchor!")
    assert len(backend.embed("anything")) == 32
    assert backend.dimensions == 32


def test_hash_embedding_batch():
    backend = HashEmbedding(dimensions=16)

    batch = backend.embed_batch(["one", "two"])

    assert batch == [backend.embed("one"), backend.embed("two")]


def test_shared_vocabulary_is_closer():
    backend = HashEmbedding(dimensions=256)
    base = backend.embed("storm over the harbor lighthouse")

    near = cosine_similarity(base, backend.embed("the harbor lighthouse in a storm"))
    far = cosine_similarity(base, backend.embed("fresh bread and honey"))

    assert near > far


def test_cosine_similarity():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


class Vector(list):
    def tolist(self):
        return list(self)


class FakeSentenceModel:
    """Stands in for a loaded SentenceTransformer."""

    def __init__(self):
        self.calls = []

    def get_sentence_embedding_dimension(self):
        return 2

    def encode(self, texts, normalize_embeddings=False):
        self.calls.append((texts, normalize_embeddings))
        if isinstance(texts, list):
            return Vector(Vector([1.0, 0.0]) for _ in texts)
        return Vector([0.6, 0.8])


class FakeEmbeddingsAPI:
    def __init__(self):
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        # Out of order on purpose; results carry their input index.
        data = [
            SimpleNamespace(index=i, embedding=[float(i + 1)] * 4)
            for i in range(len(kwargs["input"]))
        ]
        return SimpleNamespace(data=list(reversed(data)))


def test_local_embedding_normalizes():
    model = FakeSentenceModel()
    backend = LocalEmbedding(model=model)

    assert backend.dimensions == 2
    assert backend.embed("harbor") == [0.6, 0.8]
    assert backend.embed_batch(["a", "b"]) == [[1.0, 0.0], [1.0, 0.0]]
    assert backend.embed_batch([]) == []
    assert all(normalize for _, normalize in model.calls)
    assert len(model.calls) == 2


def test_openai_embedding_skips_blank_texts():
    client = SimpleNamespace(embeddings=FakeEmbeddingsAPI())
    backend = OpenAIEmbedding(dimensions=4, client=client)

    vectors = backend.embed_batch(["harbor", "  ", "guild"])

    assert vectors == [[1.0] * 4, [0.0] * 4, [2.0] * 4]
    [request] = client.embeddings.requests
    assert request == {"input": ["harbor", "guild"], "model": "text-embedding-3-small", "dimensions": 4}


def test_openai_embedding_blank_text_makes_no_request():
    client = SimpleNamespace(embeddings=FakeEmbeddingsAPI())
    backend = OpenAIEmbedding(model="text-embedding-3-large", client=client)

    assert backend.dimensions == 3072
    assert backend.embed("") == [0.0] * 3072
    assert client.embeddings.requests == []


def test_create_embedding_backend():
    assert create_embedding_backend("none") is None
    assert isinstance(create_embedding_backend("hash", dimensions=8), HashEmbedding)

    with pytest.raises(ValueError):
        create_embedding_backend("telepathy")


# -------------------------------------------------------------------------
# Lore selection
# -------------------------------------------------------------------------


@pytest.fixture
def lore():
    return [
        LoreEntry(name="The Gilded Anchor", content="A dockside tavern.", category="location", importance=6, keys=["tavern"]),
        LoreEntry(name="Harbor Guild", content="Controls the docks.", category="faction", importance=8, keys=["docks", "guild"]),
        LoreEntry(name="Old Song", content="Sung at closing time.", category="culture", importance=3, keys=["song"]),
        LoreEntry(name="Tide Calendar", content="Ships sail at high tide.", category="world", importance=5),
    ]


def test_select_lore_filters_by_importance(lore):
    selected = select_lore(lore, "they sing a song", threshold=5)

    assert "Old Song" not in [s.entry.name for s in selected]
    assert len(selected) == 3


def test_select_lore_ranks_by_relevance(lore):
    """Key and name matches outrank raw importance."""
    selected = select_lore(lore, "I walk into the gilded anchor tavern", threshold=5)

    assert selected[0].entry.name == "The Gilded Anchor"
    assert selected[0].score == 6 + 2 + 3
    assert selected[0].matched_keys == ["tavern"]
    assert [s.entry.name for s in selected[1:]] == ["Harbor Guild", "Tide Calendar"]


def test_select_lore_limit(lore):
    selected = select_lore(lore, "", threshold=1, limit=2)

    assert [s.entry.name for s in selected] == ["Harbor Guild", "The Gilded Anchor"]


def test_select_lore_with_embedding(lore):
    selected = select_lore(lore, "ships sail at high tide", threshold=5, embedding=HashEmbedding(256))

    tide = next(s for s in selected if s.entry.name == "Tide Calendar")
    assert tide.score > 5


def test_render_lore_section(lore):
    selected = select_lore(lore, "the guild owns the docks", threshold=8)

    section = render_lore_section(selected, "Mara")

    assert section.splitlines() == [
        "=== WORLD LORE & CONTEXT ===",
        "The following lore entries are relevant to this conversation:",
        "",
        "[FACTION] Harbor Guild (Importance: 8/10)",
        "Controls the docks.",
        "Keywords: docks, guild [Active: docks, guild]",
        "",
        "Use this lore naturally when relevant, as Mara would know it.",
    ]


def test_render_lore_section_empty():
    assert render_lore_section([]) == ""
