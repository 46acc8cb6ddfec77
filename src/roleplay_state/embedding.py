"""Embedding backends used for lore and fact relevance.

Only relative similarity matters here: vectors are compared with
``cosine_similarity`` against the recent conversation, never stored.
"""

from typing import Any, Protocol
import hashlib
import math
import random


class EmbeddingBackend(Protocol):
    """Protocol for embedding backends."""

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts."""
        ...

    @property
    def dimensions(self) -> int:
        """Return the dimensionality of embeddings."""
        ...


class LocalEmbedding:
    """Local embedding using sentence-transformers.

    Vectors are unit-normalized so lore and fact scores stay in [-1, 1]
    whatever the model. Pass ``model`` to reuse an already loaded
    SentenceTransformer across sessions.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", model: Any = None):
        if model is None:
            from sentence_transformers import SentenceTransformer

            model = SentenceTransformer(model_name)
        self.model = model
        self._dimensions = model.get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        return self.model.encode(text, normalize_embeddings=True).tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self.model.encode(texts, normalize_embeddings=True).tolist()

    @property
    def dimensions(self) -> int:
        return self._dimensions


class OpenAIEmbedding:
    """OpenAI API embedding backend.

    Blank texts (an opening turn has no conversation yet) map to zero
    vectors without an API call. ``dimensions`` shortens text-embedding-3
    vectors on the server side.
    """

    _MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        client: Any = None,
    ):
        if client is None:
            from openai import OpenAI

            client = OpenAI()
        self.model = model
        self.client = client
        self._requested_dimensions = dimensions
        self._dimensions = dimensions or self._MODEL_DIMENSIONS.get(model, 1536)

    def _create(self, texts: list[str]) -> list[list[float]]:
        kwargs = {"input": texts, "model": self.model}
        if self._requested_dimensions:
            kwargs["dimensions"] = self._requested_dimensions
        response = self.client.embeddings.create(**kwargs)
        return [d.embedding for d in sorted(response.data, key=lambda d: d.index)]

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors = [[0.0] * self._dimensions for _ in texts]
        pending = [i for i, text in enumerate(texts) if text.strip()]
        if pending:
            for i, vector in zip(pending, self._create([texts[i] for i in pending])):
                vectors[i] = vector
        return vectors

    @property
    def dimensions(self) -> int:
        return self._dimensions


class HashEmbedding:
    """Deterministic, dependency-free embedding backend.

    Vectors are the sum of per-token pseudo-random vectors, so texts sharing
    vocabulary land closer together. Good enough for tests and for hosts
    that cannot load a model.
    """

    def __init__(self, dimensions: int = 256):
        self._dimensions = dimensions

    def _token_vector(self, token: str) -> list[float]:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        rng = random.Random(int.from_bytes(digest[:8], "big", signed=False))
        return [rng.uniform(-1.0, 1.0) for _ in range(self._dimensions)]

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dimensions
        for token in text.lower().split():
            token = token.strip(".,!?;:\"'()[]*")
            if not token:
                continue
            for i, value in enumerate(self._token_vector(token)):
                vector[i] += value
        return vector

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]

    @property
    def dimensions(self) -> int:
        return self._dimensions


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is all zeros."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def create_embedding_backend(
    backend: str,
    embedding_model: str = "all-MiniLM-L6-v2",
    openai_model: str = "text-embedding-3-small",
    dimensions: int = 256,
) -> EmbeddingBackend | None:
    """Build the configured backend, or None when embeddings are disabled."""
    if backend in ("none", "", None):
        return None
    if backend == "hash":
        return HashEmbedding(dimensions)
    if backend == "local":
        return LocalEmbedding(model_name=embedding_model)
    if backend == "openai":
        return OpenAIEmbedding(model=openai_model)
    raise ValueError(f"Invalid embedding backend: {backend}")
